"""Reconciliation run records, their error history, events, and phase snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from atomledger.domain.model.entity import Entity, utc_now
from atomledger.domain.model.enums import (
    AttestationType,
    ExceptionLane,
    RunEventKind,
    RunMode,
    RunPhase,
    RunStatus,
)

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime
    from uuid import UUID


@dataclass(frozen=True, slots=True, kw_only=True)
class RunOptions:
    """Per-run knobs supplied by the caller of ``start``."""

    require_review: bool = False
    quality_approve: int | None = None
    quality_revise: int | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "require_review": self.require_review,
            "quality_approve": self.quality_approve,
            "quality_revise": self.quality_revise,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> RunOptions:
        if not payload:
            return cls()
        return cls(
            require_review=bool(payload.get("require_review", False)),
            quality_approve=payload.get("quality_approve"),
            quality_revise=payload.get("quality_revise"),
        )


@dataclass(eq=False, kw_only=True)
class RunError(Entity):
    """Append-only record of something that went wrong during a phase."""

    sequence: int
    phase: RunPhase | None
    kind: str
    message: str
    critical: bool = False
    occurred_at: datetime = field(default_factory=utc_now)


@dataclass(eq=False, kw_only=True)
class ReconciliationRun(Entity):
    project_id: str
    mode: RunMode
    source: dict[str, Any]
    options: RunOptions = field(default_factory=RunOptions)
    status: RunStatus = RunStatus.QUEUED
    current_phase: RunPhase | None = None
    attestation: AttestationType = AttestationType.LOCAL
    exception_lane: ExceptionLane = ExceptionLane.NORMAL
    lane_justification: str | None = None
    manifest_id: UUID | None = None
    commit_hash: str | None = None
    inferred_atoms_count: int = 0
    inferred_molecules_count: int = 0
    pending_review: dict[str, Any] | None = None
    last_error: str | None = None
    recovered_from_id: UUID | None = None
    recovered_by_id: UUID | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None

    _errors: list[RunError] = field(default_factory=list[RunError], repr=False)

    @property
    def errors(self) -> tuple[RunError, ...]:
        return tuple(sorted(self._errors, key=lambda error: error.sequence))

    @property
    def is_recovered(self) -> bool:
        return self.recovered_by_id is not None

    @property
    def has_partial_results(self) -> bool:
        return self.inferred_atoms_count > 0 or self.inferred_molecules_count > 0

    def record_error(
        self,
        *,
        phase: RunPhase | None,
        kind: str,
        message: str,
        critical: bool = False,
        now: datetime | None = None,
    ) -> RunError:
        error = RunError(
            sequence=len(self._errors) + 1,
            phase=phase,
            kind=kind,
            message=message,
            critical=critical,
            occurred_at=now or utc_now(),
        )
        self._errors.append(error)
        self.last_error = message
        return error


@dataclass(eq=False, kw_only=True)
class RunEvent(Entity):
    """Ordered progress notification; carries enough state to resynchronise."""

    run_id: UUID
    sequence: int
    kind: RunEventKind
    status: RunStatus
    phase: RunPhase | None = None
    atoms_count: int = 0
    molecules_count: int = 0
    payload: dict[str, Any] = field(default_factory=dict[str, Any])
    emitted_at: datetime = field(default_factory=utc_now)


@dataclass(eq=False, kw_only=True)
class PhaseSnapshot(Entity):
    """Raw output of a completed phase, persisted before the next phase starts."""

    run_id: UUID
    phase: RunPhase
    manifest_id: UUID | None = None
    payload: dict[str, Any] = field(default_factory=dict[str, Any])
    created_at: datetime = field(default_factory=utc_now)
