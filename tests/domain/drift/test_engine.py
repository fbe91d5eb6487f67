from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from atomledger.domain.drift import DriftDebtEngine, observe
from atomledger.domain.model import (
    AttestationType,
    DriftSeverity,
    DriftStatus,
    DriftType,
    EvidenceChange,
    ExceptionLane,
    ReconciliationRun,
    RepoManifest,
    RunMode,
)
from tests.helpers.atoms import make_atom, store_atoms
from tests.helpers.evidence import make_inventory, make_test

if TYPE_CHECKING:
    from collections.abc import Callable

    from atomledger.adapters.sqlalchemy.unit_of_work import SqlAlchemyUnitOfWork
    from atomledger.domain.drift import DriftDetectionResult
    from atomledger.domain.model import DriftDebtItem, EvidenceInventory
    from tests.helpers.clock import FrozenClock


def _run(
    attestation: AttestationType = AttestationType.CI_ATTESTED,
    *,
    lane: ExceptionLane = ExceptionLane.NORMAL,
) -> ReconciliationRun:
    return ReconciliationRun(
        project_id="shop",
        mode=RunMode.FULL,
        source={},
        attestation=attestation,
        exception_lane=lane,
        lane_justification="Payment outage" if lane is not ExceptionLane.NORMAL else None,
    )


def _manifest(evidence: EvidenceInventory) -> RepoManifest:
    return RepoManifest(project_id="shop", commit_hash="abc123", evidence=evidence)


@pytest.fixture
def engine(clock: FrozenClock) -> DriftDebtEngine:
    return DriftDebtEngine(clock=clock)


@pytest.fixture
def detect(
    engine: DriftDebtEngine,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> Callable[..., DriftDetectionResult]:
    def run_detection(
        evidence: EvidenceInventory,
        run: ReconciliationRun | None = None,
    ) -> DriftDetectionResult:
        with sqlite_unit_of_work() as uow:
            result = engine.detect(uow, run=run or _run(), manifest=_manifest(evidence))
            uow.commit()
        return result

    return run_detection


def _items(uow_factory: Callable[[], SqlAlchemyUnitOfWork]) -> list[DriftDebtItem]:
    with uow_factory() as uow:
        return uow.repositories.drift.list_by_status(DriftStatus, project_id="shop")


def test_local_run_then_ci_run_opens_one_item(
    detect: Callable[..., DriftDetectionResult],
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> None:
    evidence = make_inventory([make_test("test_refund")])

    local = detect(evidence, _run(AttestationType.LOCAL))
    assert not local.attested
    assert _items(sqlite_unit_of_work) == []

    attested = detect(evidence)

    items = _items(sqlite_unit_of_work)
    assert attested.attested
    assert len(attested.created) == 1
    assert len(items) == 1
    assert items[0].drift_type is DriftType.ORPHAN_TEST
    assert items[0].status is DriftStatus.OPEN
    assert items[0].confirmation_count == 1


def test_repeated_observation_confirms_instead_of_duplicating(
    detect: Callable[..., DriftDetectionResult],
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    clock: FrozenClock,
) -> None:
    evidence = make_inventory([make_test("test_refund")])
    detect(evidence)
    clock.advance(days=8)

    result = detect(evidence)

    (item,) = _items(sqlite_unit_of_work)
    assert len(result.confirmed) == 1
    assert result.created == ()
    assert item.confirmation_count == 2
    assert item.age_days == 8
    assert item.severity is DriftSeverity.HIGH
    assert result.escalated == (item.id,)


def test_missing_observation_resolves_item(
    detect: Callable[..., DriftDetectionResult],
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> None:
    detect(make_inventory([make_test("test_refund")]))

    result = detect(make_inventory([make_test("test_refund", linked="IA-001")]))

    (item,) = _items(sqlite_unit_of_work)
    assert result.resolved == (item.id,)
    assert item.status is DriftStatus.RESOLVED
    assert item.resolved_by_run_id is not None


def test_waived_items_are_not_reopened(
    detect: Callable[..., DriftDetectionResult],
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> None:
    evidence = make_inventory([make_test("test_refund")])
    detect(evidence)
    with sqlite_unit_of_work() as uow:
        (item,) = uow.repositories.drift.list_by_status(DriftStatus, project_id="shop")
        item.waive(justification="Exploratory test, intentionally unlinked")
        uow.commit()

    result = detect(evidence)

    assert result.created == ()
    assert result.confirmed == ()
    assert [item.status for item in _items(sqlite_unit_of_work)] == [DriftStatus.WAIVED]


def test_committed_atoms_without_tests_become_backlog(
    detect: Callable[..., DriftDetectionResult],
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    clock: FrozenClock,
) -> None:
    linked, unlinked = store_atoms(sqlite_unit_of_work, make_atom("IA-001"), make_atom("IA-002"))
    with sqlite_unit_of_work() as uow:
        for atom_id in (linked.id, unlinked.id):
            atom = uow.repositories.atoms.get(atom_id)
            assert atom is not None
            atom.mark_committed(at=clock())
        uow.commit()

    detect(make_inventory([make_test("test_receipt", linked="IA-001")]))

    (item,) = _items(sqlite_unit_of_work)
    assert item.drift_type is DriftType.COMMITMENT_BACKLOG
    assert item.atom_id == "IA-002"


def test_stale_coupling_stays_open_while_link_remains(
    detect: Callable[..., DriftDetectionResult],
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> None:
    detect(
        make_inventory([make_test("test_receipt", linked="IA-001", change=EvidenceChange.MODIFIED)])
    )

    result = detect(make_inventory([make_test("test_receipt", linked="IA-001")]))

    (item,) = _items(sqlite_unit_of_work)
    assert item.drift_type is DriftType.STALE_COUPLING
    assert item.severity is DriftSeverity.LOW
    assert item.is_active
    assert result.resolved == ()


def test_uncovered_code_needs_coverage_data() -> None:
    tests = [make_test("test_receipt", linked="IA-001")]
    without = observe(_manifest(make_inventory(tests)), [])
    with_coverage = observe(
        _manifest(
            make_inventory(
                tests,
                source_files=("src/checkout.py", "src/refunds.py"),
                coverage={"src/checkout.py": 0.8},
            )
        ),
        [],
    )

    assert DriftType.UNCOVERED_CODE not in without
    assert [o.file_path for o in with_coverage[DriftType.UNCOVERED_CODE]] == ["src/refunds.py"]


def test_exception_lane_shortens_deadline(
    detect: Callable[..., DriftDetectionResult],
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    clock: FrozenClock,
) -> None:
    detect(make_inventory([make_test("test_refund")]), _run(lane=ExceptionLane.HOTFIX))

    (item,) = _items(sqlite_unit_of_work)
    assert (item.due_at - clock()).days == 3
    assert item.exception_lane is ExceptionLane.HOTFIX
    assert item.lane_justification == "Payment outage"


def test_deleted_tests_are_not_orphans() -> None:
    observations = observe(
        _manifest(make_inventory([make_test("test_gone", change=EvidenceChange.DELETED)])), []
    )

    assert observations[DriftType.ORPHAN_TEST] == []
