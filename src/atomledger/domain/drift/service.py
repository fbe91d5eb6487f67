"""Read side and manual triage of drift debt."""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from atomledger.domain.errors import NotFoundError
from atomledger.domain.model import ACTIVE_DRIFT_STATUSES, DriftSeverity, DriftType, utc_now

from .policy import DriftPolicy, aging_buckets, evaluate_convergence

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from atomledger.domain.model import DriftDebtItem
    from atomledger.domain.ports import UnitOfWorkFactory

log = getLogger(__name__)


@dataclass(frozen=True, slots=True, kw_only=True)
class DriftSummary:
    project_id: str | None
    total_open: int
    by_type: dict[DriftType, int]
    by_severity: dict[DriftSeverity, int]
    overdue_count: int
    at_risk_count: int
    convergence_score: int
    aging: dict[str, int]
    blocking: bool


@dataclass(frozen=True, slots=True, kw_only=True)
class CiPolicyResult:
    passed: bool
    blocked: bool
    reason: str
    overdue_count: int
    convergence_score: int


@dataclass(slots=True)
class DriftService:
    unit_of_work_factory: UnitOfWorkFactory
    policy: DriftPolicy = field(default_factory=DriftPolicy)
    clock: Callable[[], datetime] = field(default=utc_now)

    def list_open(self, project_id: str | None = None) -> list[DriftDebtItem]:
        with self.unit_of_work_factory() as uow:
            return uow.repositories.drift.list_by_status(
                ACTIVE_DRIFT_STATUSES, project_id=project_id
            )

    def get_summary(self, project_id: str | None = None) -> DriftSummary:
        items = self.list_open(project_id)
        now = self.clock()
        report = evaluate_convergence(items, policy=self.policy, now=now)
        by_type = Counter(item.drift_type for item in items)
        by_severity = Counter(item.severity for item in items)
        return DriftSummary(
            project_id=project_id,
            total_open=report.total_open,
            by_type={drift_type: by_type[drift_type] for drift_type in DriftType},
            by_severity={severity: by_severity[severity] for severity in DriftSeverity},
            overdue_count=report.overdue,
            at_risk_count=report.at_risk,
            convergence_score=report.score,
            aging=aging_buckets(items, now=now),
            blocking=report.blocking,
        )

    def check_ci_policy(self, project_id: str | None = None) -> CiPolicyResult:
        summary = self.get_summary(project_id)
        if summary.blocking:
            reason = (
                f"{summary.overdue_count} overdue drift item(s) exceed the allowed "
                f"{self.policy.overdue_ceiling}"
            )
            log.warning("CI policy blocks %s: %s", project_id or "all projects", reason)
        else:
            reason = "Drift is within policy"
        return CiPolicyResult(
            passed=not summary.blocking,
            blocked=summary.blocking,
            reason=reason,
            overdue_count=summary.overdue_count,
            convergence_score=summary.convergence_score,
        )

    def acknowledge(
        self,
        item_id: UUID,
        *,
        by: str,
        comment: str | None = None,
    ) -> DriftDebtItem:
        with self.unit_of_work_factory() as uow:
            item = uow.repositories.drift.get(item_id)
            if item is None:
                raise NotFoundError("Drift item", item_id)
            item.acknowledge(by=by, comment=comment)
            uow.commit()
        log.info("Drift item %s acknowledged by %s", item_id, by)
        return item

    def waive(self, item_id: UUID, *, justification: str) -> DriftDebtItem:
        with self.unit_of_work_factory() as uow:
            item = uow.repositories.drift.get(item_id)
            if item is None:
                raise NotFoundError("Drift item", item_id)
            item.waive(justification=justification)
            uow.commit()
        log.info("Drift item %s waived", item_id)
        return item
