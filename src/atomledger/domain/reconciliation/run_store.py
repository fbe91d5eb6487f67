"""Owner of every run record.

All run reads and writes go through a ``RunStore`` and name the run explicitly.
Each call is its own unit of work and commits before returning, so a phase's
output is durable before the next phase begins.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, Any

from atomledger.domain.errors import NotFoundError
from atomledger.domain.model import PhaseSnapshot, RunPhase, RunStatus, utc_now

from .state_machine import transition

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime
    from uuid import UUID

    from atomledger.domain.model import ReconciliationRun
    from atomledger.domain.ports import LedgerUnitOfWork, UnitOfWorkFactory

log = getLogger(__name__)


@dataclass(slots=True)
class RunStore:
    unit_of_work_factory: UnitOfWorkFactory
    clock: Callable[[], datetime] = field(default=utc_now)

    def create(self, run: ReconciliationRun) -> ReconciliationRun:
        with self.unit_of_work_factory() as uow:
            uow.repositories.runs.add(run)
            uow.commit()
        log.info("Created run %s for project %s (%s)", run.id, run.project_id, run.mode)
        return run

    def get(self, run_id: UUID) -> ReconciliationRun:
        with self.unit_of_work_factory() as uow:
            return self._require(uow, run_id)

    def list_by_status(self, statuses: Iterable[RunStatus]) -> list[ReconciliationRun]:
        with self.unit_of_work_factory() as uow:
            return uow.repositories.runs.list_by_status(statuses)

    def update(
        self,
        run_id: UUID,
        change: Callable[[ReconciliationRun], None],
    ) -> ReconciliationRun:
        with self.unit_of_work_factory() as uow:
            run = self._require(uow, run_id)
            change(run)
            run.updated_at = self.clock()
            uow.commit()
            return run

    def transition(
        self,
        run_id: UUID,
        status: RunStatus,
        *,
        phase: RunPhase | None = None,
    ) -> ReconciliationRun:
        def apply(run: ReconciliationRun) -> None:
            transition(run, status, now=self.clock())
            if phase is not None:
                run.current_phase = phase

        run = self.update(run_id, apply)
        log.info("Run %s is now %s (phase=%s)", run_id, run.status, run.current_phase)
        return run

    def enter_phase(self, run_id: UUID, phase: RunPhase) -> ReconciliationRun:
        def apply(run: ReconciliationRun) -> None:
            run.current_phase = phase

        return self.update(run_id, apply)

    def record_error(
        self,
        run_id: UUID,
        *,
        phase: RunPhase | None,
        error: BaseException | str,
        critical: bool,
    ) -> ReconciliationRun:
        kind = "message" if isinstance(error, str) else type(error).__name__
        message = error if isinstance(error, str) else (str(error) or kind)

        def apply(run: ReconciliationRun) -> None:
            run.record_error(
                phase=phase,
                kind=kind,
                message=message,
                critical=critical,
                now=self.clock(),
            )

        return self.update(run_id, apply)

    def save_snapshot(
        self,
        run_id: UUID,
        phase: RunPhase,
        payload: dict[str, Any],
        *,
        manifest_id: UUID | None = None,
    ) -> PhaseSnapshot:
        snapshot = PhaseSnapshot(
            run_id=run_id,
            phase=phase,
            manifest_id=manifest_id,
            payload=payload,
            created_at=self.clock(),
        )
        with self.unit_of_work_factory() as uow:
            uow.repositories.snapshots.add(snapshot)
            uow.commit()
        return snapshot

    def load_snapshots(self, run_id: UUID) -> dict[RunPhase, PhaseSnapshot]:
        """Latest snapshot per phase, in phase order."""

        with self.unit_of_work_factory() as uow:
            snapshots = uow.repositories.snapshots.list_for_run(run_id)
        latest: dict[RunPhase, PhaseSnapshot] = {}
        for snapshot in sorted(snapshots, key=lambda item: item.created_at):
            latest[snapshot.phase] = snapshot
        return {phase: latest[phase] for phase in RunPhase if phase in latest}

    def copy_snapshots(self, source_run_id: UUID, target_run_id: UUID) -> list[RunPhase]:
        copied: list[RunPhase] = []
        for phase, snapshot in self.load_snapshots(source_run_id).items():
            self.save_snapshot(
                target_run_id,
                phase,
                dict(snapshot.payload),
                manifest_id=snapshot.manifest_id,
            )
            copied.append(phase)
        return copied

    @staticmethod
    def _require(uow: LedgerUnitOfWork, run_id: UUID) -> ReconciliationRun:
        run = uow.repositories.runs.get(run_id)
        if run is None:
            raise NotFoundError("Run", run_id)
        return run
