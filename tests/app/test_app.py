from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from atomledger.app import build_app
from atomledger.config import ReconciliationSettings
from atomledger.domain.model import AtomStatus, CommitmentStatus, RunEventKind, RunStatus
from tests.helpers.evidence import FakeManifestBuilder, make_inventory, orphan_tests, source_for
from tests.helpers.inference import (
    ScriptedInferenceService,
    atom_payload,
    molecule_payload,
    success,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from atomledger.adapters.sqlalchemy.unit_of_work import SqlAlchemyUnitOfWork
    from atomledger.domain.model import RunEvent
    from tests.helpers.clock import FrozenClock


@dataclass
class RecordingPublisher:
    events: list[RunEvent] = field(default_factory=list)

    def publish(self, event: RunEvent) -> None:
        self.events.append(event)


class ExplodingPublisher:
    def publish(self, event: RunEvent) -> None:
        raise RuntimeError(f"subscriber gone before event {event.sequence}")


def test_reconcile_then_commit_end_to_end(
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    clock: FrozenClock,
) -> None:
    tests = orphan_tests(3)
    builder = FakeManifestBuilder()
    builder.add("abc123", make_inventory(tests))
    service = ScriptedInferenceService(
        atom_outcomes=[success(atoms=[atom_payload(test) for test in tests[:2]])],
        molecule_outcomes=[success(molecules=[molecule_payload(["atom-1", "atom-2"])])],
    )
    publisher = RecordingPublisher()
    app = build_app(
        manifest_builder=builder,
        inference_service=service,
        unit_of_work_factory=sqlite_unit_of_work,
        settings=ReconciliationSettings(),
        publishers=[ExplodingPublisher(), publisher],
        clock=clock,
    )

    async def scenario():
        run_id = await app.start_run("shop", source_for())
        return await app.wait_for_run(run_id)

    status = asyncio.run(scenario())

    assert status.status is RunStatus.COMPLETED
    assert status.atoms_count == 2
    assert app.get_run_status(status.run_id) == status
    assert publisher.events[-1].kind is RunEventKind.COMPLETED
    assert [event.sequence for event in app.replay_events(status.run_id)] == [
        event.sequence for event in publisher.events
    ]
    assert app.list_recoverable() == []

    with sqlite_unit_of_work() as uow:
        drafts = uow.repositories.atoms.list_by_status(AtomStatus.DRAFT, project_id="shop")
    atom_ids = [atom.id for atom in drafts]

    preview = app.preview_commit(atom_ids, "dana")
    assert preview.can_commit

    commitment = app.commit(atom_ids, "dana", expected_versions=preview.atom_versions)

    assert commitment.commitment_id == "COM-001"
    assert commitment.status is CommitmentStatus.ACTIVE
    assert set(commitment.atom_ids) == set(atom_ids)
    with sqlite_unit_of_work() as uow:
        committed = uow.repositories.atoms.list_by_status(AtomStatus.COMMITTED, project_id="shop")
    assert sorted(atom.atom_id for atom in committed) == ["IA-001", "IA-002"]

    summary = app.get_drift_summary("shop")
    assert summary.total_open == 0
    assert app.check_ci_policy("shop").passed
