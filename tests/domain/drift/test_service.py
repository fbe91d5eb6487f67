from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest

from atomledger.domain.drift import DriftPolicy, DriftService
from atomledger.domain.errors import NotFoundError, ValidationError
from atomledger.domain.model import DriftDebtItem, DriftSeverity, DriftStatus, DriftType

if TYPE_CHECKING:
    from collections.abc import Callable

    from atomledger.adapters.sqlalchemy.unit_of_work import SqlAlchemyUnitOfWork
    from tests.helpers.clock import FrozenClock


@pytest.fixture
def service(
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    clock: FrozenClock,
) -> DriftService:
    return DriftService(sqlite_unit_of_work, clock=clock)


def _store(
    uow_factory: Callable[[], SqlAlchemyUnitOfWork],
    clock: FrozenClock,
    *,
    days_ago: int,
    drift_type: DriftType = DriftType.ORPHAN_TEST,
    project_id: str = "shop",
    name: str | None = None,
) -> DriftDebtItem:
    detected = clock() - timedelta(days=days_ago)
    item = DriftDebtItem(
        project_id=project_id,
        drift_type=drift_type,
        description="gap",
        severity=DriftSeverity.MEDIUM,
        due_at=detected + timedelta(days=14),
        detected_by_run_id=uuid4(),
        test_name=name or f"test_{days_ago}",
        detected_at=detected,
        last_confirmed_at=detected,
    )
    with uow_factory() as uow:
        uow.repositories.drift.add(item)
        uow.commit()
    return item


def test_summary_groups_open_items(
    service: DriftService,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    clock: FrozenClock,
) -> None:
    _store(sqlite_unit_of_work, clock, days_ago=1)
    _store(sqlite_unit_of_work, clock, days_ago=5, drift_type=DriftType.STALE_COUPLING)
    _store(sqlite_unit_of_work, clock, days_ago=2, project_id="billing")

    summary = service.get_summary("shop")

    assert summary.total_open == 2
    assert summary.by_type[DriftType.ORPHAN_TEST] == 1
    assert summary.by_type[DriftType.STALE_COUPLING] == 1
    assert summary.by_type[DriftType.UNCOVERED_CODE] == 0
    assert summary.by_severity[DriftSeverity.MEDIUM] == 2
    assert summary.aging == {"0-3": 1, "3-7": 1, "7-14": 0, "14+": 0}
    assert summary.convergence_score == 100
    assert service.get_summary().total_open == 3


def test_ci_policy_passes_without_overdue_items(
    service: DriftService,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    clock: FrozenClock,
) -> None:
    _store(sqlite_unit_of_work, clock, days_ago=12)

    result = service.check_ci_policy("shop")

    assert result.passed
    assert not result.blocked
    assert result.convergence_score == 50


def test_ci_policy_blocks_on_overdue_items(
    service: DriftService,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    clock: FrozenClock,
) -> None:
    _store(sqlite_unit_of_work, clock, days_ago=20)

    result = service.check_ci_policy("shop")

    assert result.blocked
    assert result.overdue_count == 1
    assert "overdue" in result.reason


def test_ceiling_tolerates_configured_overdue_count(
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    clock: FrozenClock,
) -> None:
    _store(sqlite_unit_of_work, clock, days_ago=20)
    service = DriftService(sqlite_unit_of_work, policy=DriftPolicy(overdue_ceiling=1), clock=clock)

    assert service.check_ci_policy("shop").passed


def test_acknowledged_items_stay_open(
    service: DriftService,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    clock: FrozenClock,
) -> None:
    item = _store(sqlite_unit_of_work, clock, days_ago=1)

    acknowledged = service.acknowledge(item.id, by="dana", comment="Linking next sprint")

    assert acknowledged.status is DriftStatus.ACKNOWLEDGED
    assert [open_item.id for open_item in service.list_open("shop")] == [item.id]
    with pytest.raises(ValidationError):
        service.acknowledge(item.id, by="dana")


def test_waived_items_leave_the_open_list(
    service: DriftService,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    clock: FrozenClock,
) -> None:
    item = _store(sqlite_unit_of_work, clock, days_ago=1)

    waived = service.waive(item.id, justification="Generated fixture test")

    assert waived.status is DriftStatus.WAIVED
    assert waived.waiver_justification == "Generated fixture test"
    assert service.list_open("shop") == []


def test_unknown_items_are_not_found(service: DriftService) -> None:
    with pytest.raises(NotFoundError):
        service.acknowledge(uuid4(), by="dana")
    with pytest.raises(NotFoundError):
        service.waive(uuid4(), justification="n/a")
