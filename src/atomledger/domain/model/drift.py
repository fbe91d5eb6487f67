"""Drift debt items: tracked gaps between committed intent and observed evidence."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from atomledger.domain.errors import ValidationError
from atomledger.domain.model.entity import Entity, utc_now
from atomledger.domain.model.enums import (
    DriftSeverity,
    DriftStatus,
    DriftType,
    ExceptionLane,
)

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

type DriftKey = tuple[DriftType, str | None, str | None, str | None]

ACTIVE_DRIFT_STATUSES = frozenset({DriftStatus.OPEN, DriftStatus.ACKNOWLEDGED})
_SECONDS_PER_DAY = 86_400


@dataclass(eq=False, kw_only=True)
class DriftDebtItem(Entity):
    project_id: str | None
    drift_type: DriftType
    description: str
    severity: DriftSeverity
    due_at: datetime
    detected_by_run_id: UUID
    file_path: str | None = None
    test_name: str | None = None
    atom_id: str | None = None
    status: DriftStatus = DriftStatus.OPEN
    exception_lane: ExceptionLane = ExceptionLane.NORMAL
    lane_justification: str | None = None
    detected_at: datetime = field(default_factory=utc_now)
    last_confirmed_at: datetime = field(default_factory=utc_now)
    last_confirmed_by_run_id: UUID | None = None
    confirmation_count: int = 1
    age_days: int = 0
    resolved_at: datetime | None = None
    resolved_by_run_id: UUID | None = None
    acknowledged_by: str | None = None
    acknowledgement_comment: str | None = None
    waiver_justification: str | None = None

    @property
    def key(self) -> DriftKey:
        return (self.drift_type, self.file_path, self.test_name, self.atom_id)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_DRIFT_STATUSES

    def confirm(self, *, run_id: UUID, now: datetime) -> None:
        self.confirmation_count += 1
        self.last_confirmed_by_run_id = run_id
        self.last_confirmed_at = now
        self.age_days = age_in_days(self.detected_at, now)

    def escalate(self, severity: DriftSeverity) -> bool:
        """Raise severity; never lowers it. Returns whether anything changed."""

        if severity.rank <= self.severity.rank:
            return False
        self.severity = severity
        return True

    def resolve(self, *, run_id: UUID, now: datetime) -> None:
        self.status = DriftStatus.RESOLVED
        self.resolved_by_run_id = run_id
        self.resolved_at = now

    def acknowledge(self, *, by: str, comment: str | None = None) -> None:
        if self.status is not DriftStatus.OPEN:
            raise ValidationError(f"Drift item {self.id} is {self.status}, not open")
        if not by.strip():
            raise ValidationError("Acknowledgement requires a name")
        self.status = DriftStatus.ACKNOWLEDGED
        self.acknowledged_by = by
        self.acknowledgement_comment = comment

    def waive(self, *, justification: str) -> None:
        if not self.is_active:
            raise ValidationError(f"Drift item {self.id} is {self.status} and cannot be waived")
        if not justification.strip():
            raise ValidationError("Waiving drift requires a justification")
        self.status = DriftStatus.WAIVED
        self.waiver_justification = justification


def age_in_days(since: datetime, now: datetime) -> int:
    return max(0, math.floor((now - since).total_seconds() / _SECONDS_PER_DAY))
