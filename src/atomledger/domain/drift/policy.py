"""Deadlines, severity escalation, and convergence scoring for drift debt."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, Final

from atomledger.domain.errors import ValidationError
from atomledger.domain.model import DriftSeverity, DriftType, ExceptionLane, age_in_days

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from datetime import datetime

    from atomledger.domain.model import DriftDebtItem

DEFAULT_SEVERITY: Final[Mapping[DriftType, DriftSeverity]] = MappingProxyType(
    {
        DriftType.ORPHAN_TEST: DriftSeverity.MEDIUM,
        DriftType.COMMITMENT_BACKLOG: DriftSeverity.MEDIUM,
        DriftType.STALE_COUPLING: DriftSeverity.LOW,
        DriftType.UNCOVERED_CODE: DriftSeverity.LOW,
    }
)

# (lower bound inclusive, upper bound exclusive, label)
AGING_BUCKETS: Final[tuple[tuple[int, int | None, str], ...]] = (
    (0, 3, "0-3"),
    (3, 7, "3-7"),
    (7, 14, "7-14"),
    (14, None, "14+"),
)


class ConvergenceState(StrEnum):
    ON_TRACK = "on_track"
    AT_RISK = "at_risk"
    OVERDUE = "overdue"


@dataclass(frozen=True, slots=True)
class DriftPolicy:
    normal_days: int = 14
    hotfix_days: int = 3
    spike_days: int = 7
    high_severity_days: int = 7
    critical_severity_days: int = 14
    at_risk_fraction: float = 0.8
    overdue_ceiling: int = 0

    def __post_init__(self) -> None:
        if min(self.normal_days, self.hotfix_days, self.spike_days) <= 0:
            raise ValidationError("Drift convergence windows must be positive")
        if not 0.0 < self.at_risk_fraction <= 1.0:
            raise ValidationError("at_risk_fraction must be within (0, 1]")
        if self.high_severity_days > self.critical_severity_days:
            raise ValidationError("High severity must escalate before critical severity")

    def window_days(self, lane: ExceptionLane) -> int:
        match lane:
            case ExceptionLane.HOTFIX:
                return self.hotfix_days
            case ExceptionLane.SPIKE:
                return self.spike_days
            case _:
                return self.normal_days

    def due_at(self, detected_at: datetime, lane: ExceptionLane) -> datetime:
        return detected_at + timedelta(days=self.window_days(lane))

    def severity_for_age(self, base: DriftSeverity, age_days: int) -> DriftSeverity:
        if age_days >= self.critical_severity_days:
            return DriftSeverity.CRITICAL
        if age_days >= self.high_severity_days and base.rank < DriftSeverity.HIGH.rank:
            return DriftSeverity.HIGH
        return base

    def convergence_state(self, item: DriftDebtItem, now: datetime) -> ConvergenceState:
        if now > item.due_at:
            return ConvergenceState.OVERDUE
        window = (item.due_at - item.detected_at).total_seconds()
        elapsed = (now - item.detected_at).total_seconds()
        if window <= 0 or elapsed / window >= self.at_risk_fraction:
            return ConvergenceState.AT_RISK
        return ConvergenceState.ON_TRACK


@dataclass(frozen=True, slots=True, kw_only=True)
class ConvergenceReport:
    total_open: int
    on_track: int
    at_risk: int
    overdue: int
    score: int
    blocking: bool


def evaluate_convergence(
    items: Iterable[DriftDebtItem],
    *,
    policy: DriftPolicy,
    now: datetime,
) -> ConvergenceReport:
    """Score how close open drift is to converging.

    The score is 100 with nothing open; on-track items count fully, at-risk
    items count half, overdue items count nothing.
    """

    counts = dict.fromkeys(ConvergenceState, 0)
    for item in items:
        counts[policy.convergence_state(item, now)] += 1

    total = sum(counts.values())
    if total == 0:
        score = 100
    else:
        weighted = counts[ConvergenceState.ON_TRACK] + 0.5 * counts[ConvergenceState.AT_RISK]
        score = round(100 * weighted / total)

    return ConvergenceReport(
        total_open=total,
        on_track=counts[ConvergenceState.ON_TRACK],
        at_risk=counts[ConvergenceState.AT_RISK],
        overdue=counts[ConvergenceState.OVERDUE],
        score=score,
        blocking=counts[ConvergenceState.OVERDUE] > policy.overdue_ceiling,
    )


def aging_buckets(items: Iterable[DriftDebtItem], *, now: datetime) -> dict[str, int]:
    buckets = {label: 0 for _, _, label in AGING_BUCKETS}
    for item in items:
        age = age_in_days(item.detected_at, now)
        for lower, upper, label in AGING_BUCKETS:
            if age >= lower and (upper is None or age < upper):
                buckets[label] += 1
                break
    return buckets
