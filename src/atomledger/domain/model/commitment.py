"""Commitments: immutable, human-authorised snapshots of intent atoms."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from atomledger.domain.errors import ImmutabilityViolation
from atomledger.domain.model.entity import Entity, utc_now
from atomledger.domain.model.enums import CheckSeverity, CommitmentStatus

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from datetime import datetime
    from uuid import UUID

    from atomledger.domain.model.atom import Atom


@dataclass(frozen=True, slots=True, kw_only=True)
class CanonicalAtomSnapshot:
    atom_uuid: str
    atom_id: str
    description: str
    category: str
    quality_score: float | None
    observable_outcomes: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()

    @classmethod
    def of(cls, atom: Atom) -> CanonicalAtomSnapshot:
        return cls(
            atom_uuid=str(atom.id),
            atom_id=atom.atom_id,
            description=atom.description,
            category=atom.category,
            quality_score=atom.quality_score,
            observable_outcomes=tuple(atom.observable_outcomes),
            tags=tuple(sorted(atom.tags)),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "atom_uuid": self.atom_uuid,
            "atom_id": self.atom_id,
            "description": self.description,
            "category": self.category,
            "quality_score": self.quality_score,
            "observable_outcomes": list(self.observable_outcomes),
            "tags": list(self.tags),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> CanonicalAtomSnapshot:
        return cls(
            atom_uuid=str(payload["atom_uuid"]),
            atom_id=str(payload["atom_id"]),
            description=str(payload["description"]),
            category=str(payload["category"]),
            quality_score=payload.get("quality_score"),
            observable_outcomes=tuple(payload.get("observable_outcomes", ())),
            tags=tuple(payload.get("tags", ())),
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class InvariantCheckResult:
    invariant_id: str
    name: str
    passed: bool
    severity: CheckSeverity
    message: str
    affected_atom_ids: tuple[str, ...] = ()
    suggestions: tuple[str, ...] = ()

    @property
    def is_blocking_failure(self) -> bool:
        return not self.passed and self.severity is CheckSeverity.ERROR

    @property
    def is_warning(self) -> bool:
        return not self.passed and self.severity is CheckSeverity.WARNING

    def to_payload(self) -> dict[str, Any]:
        return {
            "invariant_id": self.invariant_id,
            "name": self.name,
            "passed": self.passed,
            "severity": self.severity.value,
            "message": self.message,
            "affected_atom_ids": list(self.affected_atom_ids),
            "suggestions": list(self.suggestions),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> InvariantCheckResult:
        return cls(
            invariant_id=str(payload["invariant_id"]),
            name=str(payload["name"]),
            passed=bool(payload["passed"]),
            severity=CheckSeverity(payload["severity"]),
            message=str(payload["message"]),
            affected_atom_ids=tuple(payload.get("affected_atom_ids", ())),
            suggestions=tuple(payload.get("suggestions", ())),
        )


@dataclass(eq=False, kw_only=True)
class Commitment(Entity):
    commitment_id: str
    committed_by: str
    project_id: str | None = None
    atom_ids: list[UUID] = field(default_factory=list["UUID"])
    invariant_checks: tuple[InvariantCheckResult, ...] = ()
    override_justification: str | None = None
    supersedes: UUID | None = None
    superseded_by: UUID | None = None
    supersession_reason: str | None = None
    status: CommitmentStatus = CommitmentStatus.ACTIVE
    committed_at: datetime = field(default_factory=utc_now)
    version: int = field(default=0, init=False, repr=False)

    _canonical_json: tuple[CanonicalAtomSnapshot, ...] = field(
        default=(), init=False, repr=False
    )

    @property
    def canonical_json(self) -> tuple[CanonicalAtomSnapshot, ...]:
        return self._canonical_json

    @property
    def is_active(self) -> bool:
        return self.status is CommitmentStatus.ACTIVE

    def seal(self, atoms: Iterable[Atom]) -> None:
        """Freeze the canonical atom snapshot. Allowed exactly once."""

        if self._canonical_json:
            raise ImmutabilityViolation(f"Commitment {self.commitment_id} is already sealed")
        snapshots = tuple(CanonicalAtomSnapshot.of(atom) for atom in atoms)
        if not snapshots:
            raise ValueError("A commitment must snapshot at least one atom")
        self._canonical_json = snapshots

    def mark_superseded(self, *, by: UUID) -> None:
        if not self.is_active or self.superseded_by is not None:
            raise ImmutabilityViolation(
                f"Commitment {self.commitment_id} was already superseded"
            )
        self.status = CommitmentStatus.SUPERSEDED
        self.superseded_by = by
