"""Application composition root and entry points."""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from atomledger.adapters.inference import HttpInferenceService, InferenceAdapter
from atomledger.adapters.sqlalchemy.unit_of_work import SqlAlchemyUnitOfWork, startup
from atomledger.config import configure_logging, get_reconciliation_settings
from atomledger.domain.drift import DriftDebtEngine, DriftPolicy, DriftService
from atomledger.domain.ledger import CommitmentLedger, InvariantSuite
from atomledger.domain.model import utc_now
from atomledger.domain.reconciliation import (
    ManifestProvider,
    MoleculeThresholds,
    QualityThresholds,
    ReconciliationOrchestrator,
    RunEventLog,
    RunStore,
    run_request,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence
    from datetime import datetime
    from uuid import UUID

    from atomledger.config import ReconciliationSettings
    from atomledger.domain.drift import CiPolicyResult, DriftSummary
    from atomledger.domain.ledger import CommitmentPreview
    from atomledger.domain.model import Commitment, RunEvent
    from atomledger.domain.ports import (
        EventPublisher,
        InferenceService,
        ManifestBuilder,
        ManifestSource,
        UnitOfWorkFactory,
    )
    from atomledger.domain.reconciliation import (
        RecoverableRun,
        RecoveryResult,
        ReviewDecision,
        RunStatusView,
    )

log = getLogger(__name__)


@dataclass(slots=True)
class AtomLedgerApp:
    """Entry points for runs, commitments, and drift, wired to one store."""

    orchestrator: ReconciliationOrchestrator
    events: RunEventLog
    ledger: CommitmentLedger
    drift: DriftService

    # Reconciliation ----------------------------------------------------------

    async def start_run(
        self,
        project_id: str,
        source: ManifestSource,
        **options: object,
    ) -> UUID:
        """Queue a run; see ``run_request`` for the accepted options."""

        return await self.orchestrator.start(run_request(project_id, source, **options))

    def get_run_status(self, run_id: UUID) -> RunStatusView:
        return self.orchestrator.get_status(run_id)

    async def wait_for_run(self, run_id: UUID) -> RunStatusView:
        return await self.orchestrator.wait(run_id)

    async def submit_review(
        self,
        run_id: UUID,
        decisions: Sequence[ReviewDecision],
    ) -> RunStatusView:
        return await self.orchestrator.submit_review(run_id, decisions)

    async def cancel_run(self, run_id: UUID) -> RunStatusView:
        return await self.orchestrator.cancel(run_id)

    def list_recoverable(self) -> list[RecoverableRun]:
        return self.orchestrator.list_recoverable()

    async def recover(self, run_id: UUID) -> RecoveryResult:
        return await self.orchestrator.recover(run_id)

    def replay_events(self, run_id: UUID, *, after: int = 0) -> list[RunEvent]:
        return self.events.replay(run_id, after=after)

    # Commitments -------------------------------------------------------------

    def preview_commit(self, atom_ids: Sequence[UUID], committed_by: str) -> CommitmentPreview:
        return self.ledger.preview(atom_ids, committed_by)

    def commit(
        self,
        atom_ids: Sequence[UUID],
        committed_by: str,
        *,
        override_justification: str | None = None,
        expected_versions: Mapping[UUID, int] | None = None,
    ) -> Commitment:
        return self.ledger.commit(
            atom_ids,
            committed_by,
            override_justification=override_justification,
            expected_versions=expected_versions,
        )

    def supersede(
        self,
        commitment_id: UUID,
        atom_ids: Sequence[UUID],
        *,
        reason: str,
        committed_by: str,
        override_justification: str | None = None,
        expected_version: int | None = None,
    ) -> Commitment:
        return self.ledger.supersede(
            commitment_id,
            atom_ids,
            reason=reason,
            committed_by=committed_by,
            override_justification=override_justification,
            expected_version=expected_version,
        )

    # Drift -------------------------------------------------------------------

    def get_drift_summary(self, project_id: str | None = None) -> DriftSummary:
        return self.drift.get_summary(project_id)

    def check_ci_policy(self, project_id: str | None = None) -> CiPolicyResult:
        return self.drift.check_ci_policy(project_id)


def build_app(
    *,
    manifest_builder: ManifestBuilder,
    inference_service: InferenceService | None = None,
    unit_of_work_factory: UnitOfWorkFactory = SqlAlchemyUnitOfWork,
    settings: ReconciliationSettings | None = None,
    publishers: Sequence[EventPublisher] = (),
    clock: Callable[[], datetime] = utc_now,
) -> AtomLedgerApp:
    """Wire services together. Storage must already be started."""

    resolved = settings or get_reconciliation_settings()
    policy = DriftPolicy(overdue_ceiling=resolved.drift_overdue_ceiling)
    inference = InferenceAdapter(
        service=inference_service or HttpInferenceService(),
        attempts=resolved.inference_attempts,
        backoff_factor=resolved.inference_backoff_factor,
        max_backoff=resolved.inference_max_backoff,
        batch_size=resolved.inference_batch_size,
    )
    events = RunEventLog(unit_of_work_factory, publishers=publishers, clock=clock)
    orchestrator = ReconciliationOrchestrator(
        store=RunStore(unit_of_work_factory, clock=clock),
        events=events,
        manifests=ManifestProvider(manifest_builder, unit_of_work_factory),
        inference=inference,
        unit_of_work_factory=unit_of_work_factory,
        drift=DriftDebtEngine(policy=policy, clock=clock),
        quality=QualityThresholds(
            approve=resolved.quality_approve,
            revise=resolved.quality_revise,
        ),
        molecules=MoleculeThresholds(
            min_completeness=resolved.molecule_min_completeness,
            min_fit=resolved.molecule_min_fit,
            min_atoms_for_coherence=resolved.molecule_min_atoms,
            max_categories=resolved.molecule_max_categories,
        ),
        clock=clock,
    )
    return AtomLedgerApp(
        orchestrator=orchestrator,
        events=events,
        ledger=CommitmentLedger(unit_of_work_factory, invariants=InvariantSuite(), clock=clock),
        drift=DriftService(unit_of_work_factory, policy=policy, clock=clock),
    )


def bootstrap(
    *,
    manifest_builder: ManifestBuilder,
    inference_service: InferenceService | None = None,
    database_uri: str | None = None,
    publishers: Sequence[EventPublisher] = (),
) -> AtomLedgerApp:
    """Load ``.env``, configure logging, start storage, and build the app."""

    load_dotenv()
    configure_logging()
    startup(database_uri=database_uri)
    app = build_app(
        manifest_builder=manifest_builder,
        inference_service=inference_service,
        publishers=publishers,
    )
    log.info("Atom ledger ready")
    return app
