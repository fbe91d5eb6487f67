"""Tests for SQLAlchemy repositories."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from uuid import uuid4

from sqlalchemy.orm import Session  # noqa: TC002

from atomledger.adapters.sqlalchemy.repositories import (
    SqlAlchemyAtomRepository,
    SqlAlchemyCommitmentRepository,
    SqlAlchemyDriftDebtRepository,
    SqlAlchemyManifestRepository,
    SqlAlchemyPhaseSnapshotRepository,
    SqlAlchemyRunEventRepository,
    SqlAlchemyRunRepository,
)
from atomledger.domain.model import (
    ACTIVE_DRIFT_STATUSES,
    DriftDebtItem,
    DriftSeverity,
    DriftStatus,
    DriftType,
    EvidenceChange,
    PhaseSnapshot,
    ProposedByAgent,
    ReconciliationRun,
    RepoManifest,
    RunEvent,
    RunEventKind,
    RunMode,
    RunPhase,
    RunStatus,
)
from tests.helpers.atoms import make_atom
from tests.helpers.evidence import make_inventory, make_test

NOW = datetime(2026, 3, 2, 9, tzinfo=UTC)


def _run(session: Session, status: RunStatus = RunStatus.QUEUED) -> ReconciliationRun:
    run = ReconciliationRun(
        project_id="shop",
        mode=RunMode.FULL,
        source={"kind": "file-map", "files": 1},
        status=status,
    )
    SqlAlchemyRunRepository(session).add(run)
    session.commit()
    return run


def test_display_ids_continue_from_highest_issued(sqlite_session: Session) -> None:
    repository = SqlAlchemyAtomRepository(sqlite_session)
    assert repository.next_atom_id() == "IA-001"

    repository.add(make_atom("IA-002"))
    repository.add(make_atom("IA-010"))
    sqlite_session.commit()

    assert repository.next_atom_id() == "IA-011"
    assert SqlAlchemyCommitmentRepository(sqlite_session).next_commitment_id() == "COM-001"


def test_display_ids_count_rows_added_in_the_same_session(sqlite_session: Session) -> None:
    repository = SqlAlchemyAtomRepository(sqlite_session)

    repository.add(make_atom(repository.next_atom_id()))
    repository.add(make_atom(repository.next_atom_id()))

    assert repository.next_atom_id() == "IA-003"


def test_get_many_keeps_requested_order(sqlite_session: Session) -> None:
    repository = SqlAlchemyAtomRepository(sqlite_session)
    first, second = make_atom("IA-001"), make_atom("IA-002")
    repository.add(first)
    repository.add(second)
    sqlite_session.commit()

    found = repository.get_many([second.id, uuid4(), first.id])

    assert [atom.atom_id for atom in found] == ["IA-002", "IA-001"]
    assert repository.get_many([]) == []


def test_agent_origin_round_trips(sqlite_session: Session) -> None:
    repository = SqlAlchemyAtomRepository(sqlite_session)
    run_id = uuid4()
    atom = make_atom()
    atom.origin = ProposedByAgent(
        agent="reconciliation-agent", rationale="From test_receipt", confidence=0.7, run_id=run_id
    )
    repository.add(atom)
    sqlite_session.commit()
    sqlite_session.expunge_all()

    stored = repository.find_by_atom_id("IA-001")

    assert stored is not None
    assert stored.origin == atom.origin


def test_manifest_evidence_round_trips(sqlite_session: Session) -> None:
    repository = SqlAlchemyManifestRepository(sqlite_session)
    evidence = make_inventory(
        [
            make_test("test_total", linked="IA-001"),
            make_test("test_refund", change=EvidenceChange.ADDED),
        ],
        coverage={"src/checkout.py": 0.5},
    )
    manifest = RepoManifest(project_id="shop", commit_hash="abc123", evidence=evidence)
    manifest.mark_complete(now=NOW)
    repository.add(manifest)
    sqlite_session.commit()
    sqlite_session.expunge_all()

    stored = repository.find_by_commit("shop", "abc123")

    assert stored is not None
    assert stored.is_complete
    assert stored.evidence == evidence
    assert stored.completed_at == NOW
    assert repository.find_by_commit("shop", "def456") is None


def test_run_errors_are_persisted_in_order(sqlite_session: Session) -> None:
    run = _run(sqlite_session, RunStatus.RUNNING)
    run.record_error(phase=RunPhase.INFER_ATOMS, kind="TransientInferenceError", message="slow")
    run.record_error(phase=RunPhase.LOAD_MANIFEST, kind="RuntimeError", message="gone")
    sqlite_session.commit()
    sqlite_session.expunge_all()

    stored = SqlAlchemyRunRepository(sqlite_session).get(run.id)

    assert stored is not None
    assert [error.message for error in stored.errors] == ["slow", "gone"]
    assert stored.last_error == "gone"
    assert stored.errors[0].phase is RunPhase.INFER_ATOMS


def test_runs_are_listed_by_status(sqlite_session: Session) -> None:
    failed = _run(sqlite_session, RunStatus.FAILED)
    _run(sqlite_session, RunStatus.COMPLETED)

    listed = SqlAlchemyRunRepository(sqlite_session).list_by_status([RunStatus.FAILED])

    assert [run.id for run in listed] == [failed.id]


def test_run_events_are_sequenced_per_run(sqlite_session: Session) -> None:
    run = _run(sqlite_session)
    repository = SqlAlchemyRunEventRepository(sqlite_session)
    assert repository.last_sequence(run.id) == 0

    for sequence in (1, 2, 3):
        repository.add(
            RunEvent(
                run_id=run.id,
                sequence=sequence,
                kind=RunEventKind.PROGRESS,
                status=RunStatus.RUNNING,
                payload={"step": sequence},
            )
        )
    sqlite_session.commit()

    assert repository.last_sequence(run.id) == 3
    assert [event.payload for event in repository.list_for_run(run.id, after=1)] == [
        {"step": 2},
        {"step": 3},
    ]


def test_snapshots_are_listed_in_creation_order(sqlite_session: Session) -> None:
    run = _run(sqlite_session)
    repository = SqlAlchemyPhaseSnapshotRepository(sqlite_session)
    repository.add(
        PhaseSnapshot(
            run_id=run.id,
            phase=RunPhase.CLASSIFY,
            payload={"orphan": []},
            created_at=NOW + timedelta(seconds=1),
        )
    )
    repository.add(
        PhaseSnapshot(run_id=run.id, phase=RunPhase.LOAD_MANIFEST, payload={}, created_at=NOW)
    )
    sqlite_session.commit()

    phases = [snapshot.phase for snapshot in repository.list_for_run(run.id)]

    assert phases == [RunPhase.LOAD_MANIFEST, RunPhase.CLASSIFY]


def test_drift_lookup_matches_missing_key_parts(sqlite_session: Session) -> None:
    repository = SqlAlchemyDriftDebtRepository(sqlite_session)
    backlog = DriftDebtItem(
        project_id="shop",
        drift_type=DriftType.COMMITMENT_BACKLOG,
        description="IA-002 has no test",
        severity=DriftSeverity.MEDIUM,
        due_at=NOW + timedelta(days=14),
        detected_by_run_id=uuid4(),
        atom_id="IA-002",
        detected_at=NOW,
    )
    repository.add(backlog)
    sqlite_session.commit()

    found = repository.find_by_key(
        (DriftType.COMMITMENT_BACKLOG, None, None, "IA-002"),
        project_id="shop",
        statuses=ACTIVE_DRIFT_STATUSES,
    )
    missing = repository.find_by_key(
        (DriftType.COMMITMENT_BACKLOG, None, None, "IA-002"),
        project_id="shop",
        statuses=[DriftStatus.RESOLVED],
    )

    assert found is backlog
    assert missing is None
