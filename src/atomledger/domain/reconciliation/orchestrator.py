"""Reconciliation run orchestration.

Each run executes as its own ``asyncio`` task. Phases of one run are
serialised by a per-run lock; different runs proceed concurrently. Every phase
stores its output as a snapshot and commits it before the next phase starts,
which is what makes review resumption and recovery possible without
re-running completed work.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import partial
from logging import getLogger
from typing import TYPE_CHECKING, Any

from atomledger.domain.errors import (
    HierarchyCycleError,
    InvalidTransitionError,
    ValidationError,
)
from atomledger.domain.model import (
    Atom,
    AtomStatus,
    AttestationType,
    ExceptionLane,
    Molecule,
    ProposedByAgent,
    ReconciliationRun,
    ReviewVerdict,
    RunEventKind,
    RunMode,
    RunOptions,
    RunPhase,
    RunStatus,
    assign_parent,
    utc_now,
)
from atomledger.domain.ports import AtomInferenceResult, describe_source

from .classifier import classify
from .molecule_verifier import MoleculeThresholds, verify_molecules
from .phases import (
    PhaseOutputs,
    inference_payload,
    manifest_payload,
    molecules_payload,
    review_payload,
    verification_payload,
)
from .quality import QualityThresholds, evaluate_atoms
from .review import (
    ReviewDecision,
    approved_atom_ids,
    build_interrupt_payload,
    narrow_to_clarifications,
    needs_review,
    rejected_molecule_ids,
    validate_decisions,
)
from .state_machine import CRITICAL_PHASES, phases_after

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime
    from uuid import UUID

    from atomledger.domain.drift import DriftDebtEngine
    from atomledger.domain.model import RunError
    from atomledger.domain.ports import (
        AtomInferencePort,
        ManifestSource,
        UnitOfWorkFactory,
    )

    from .events import RunEventLog
    from .manifests import ManifestProvider
    from .run_store import RunStore

log = getLogger(__name__)

AGENT_NAME = "reconciliation-agent"
RECOVERABLE_STATUSES = frozenset({RunStatus.FAILED, RunStatus.INTERRUPTED})


@dataclass(frozen=True, slots=True, kw_only=True)
class RunRequest:
    project_id: str
    source: ManifestSource
    mode: RunMode = RunMode.FULL
    attestation: AttestationType = AttestationType.LOCAL
    exception_lane: ExceptionLane = ExceptionLane.NORMAL
    lane_justification: str | None = None
    options: RunOptions = field(default_factory=RunOptions)

    def validate(self) -> None:
        if not self.project_id.strip():
            raise ValidationError("project_id is required")
        if not isinstance(self.mode, RunMode):
            raise ValidationError(f"Unknown run mode: {self.mode!r}")
        if not isinstance(self.attestation, AttestationType):
            raise ValidationError(f"Unknown attestation: {self.attestation!r}")
        if not isinstance(self.exception_lane, ExceptionLane):
            raise ValidationError(f"Unknown exception lane: {self.exception_lane!r}")
        if self.exception_lane is not ExceptionLane.NORMAL and not (
            self.lane_justification and self.lane_justification.strip()
        ):
            raise ValidationError(f"{self.exception_lane} runs require a justification")
        try:
            describe_source(self.source)
        except TypeError as exc:
            raise ValidationError(str(exc)) from exc
        if self.options.quality_approve is not None or self.options.quality_revise is not None:
            _thresholds_for(self.options, QualityThresholds())


@dataclass(frozen=True, slots=True, kw_only=True)
class RunStatusView:
    run_id: UUID
    project_id: str
    status: RunStatus
    phase: RunPhase | None
    atoms_count: int
    molecules_count: int
    errors: tuple[RunError, ...] = ()
    last_error: str | None = None
    pending_review: dict[str, Any] | None = None
    recovered_from_id: UUID | None = None
    recovered_by_id: UUID | None = None

    @classmethod
    def of(cls, run: ReconciliationRun) -> RunStatusView:
        return cls(
            run_id=run.id,
            project_id=run.project_id,
            status=run.status,
            phase=run.current_phase,
            atoms_count=run.inferred_atoms_count,
            molecules_count=run.inferred_molecules_count,
            errors=run.errors,
            last_error=run.last_error,
            pending_review=run.pending_review,
            recovered_from_id=run.recovered_from_id,
            recovered_by_id=run.recovered_by_id,
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class RecoverableRun:
    run_id: UUID
    project_id: str
    status: RunStatus
    phase: RunPhase | None
    atoms_count: int
    molecules_count: int
    last_error: str | None
    updated_at: datetime


@dataclass(frozen=True, slots=True, kw_only=True)
class RecoveryResult:
    run_id: UUID
    recovered: bool
    new_run_id: UUID | None = None
    atom_count: int = 0
    molecule_count: int = 0
    resumed_from_phase: RunPhase | None = None
    message: str = ""


class _PhaseFailed(Exception):  # noqa: N818
    def __init__(self, phase: RunPhase, cause: BaseException) -> None:
        super().__init__(f"Phase {phase} failed: {cause}")
        self.phase = phase
        self.cause = cause


def _thresholds_for(options: RunOptions, defaults: QualityThresholds) -> QualityThresholds:
    approve = options.quality_approve
    revise = options.quality_revise
    return QualityThresholds(
        approve=defaults.approve if approve is None else approve,
        revise=defaults.revise if revise is None else revise,
    )


class ReconciliationOrchestrator:
    def __init__(
        self,
        *,
        store: RunStore,
        events: RunEventLog,
        manifests: ManifestProvider,
        inference: AtomInferencePort,
        unit_of_work_factory: UnitOfWorkFactory,
        drift: DriftDebtEngine,
        quality: QualityThresholds | None = None,
        molecules: MoleculeThresholds | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._events = events
        self._manifests = manifests
        self._inference = inference
        self._unit_of_work_factory = unit_of_work_factory
        self._drift = drift
        self._quality = quality or QualityThresholds()
        self._molecule_thresholds = molecules or MoleculeThresholds()
        self._clock = clock
        self._sources: dict[UUID, ManifestSource] = {}
        self._tasks: dict[UUID, asyncio.Task[None]] = {}
        self._locks: dict[UUID, asyncio.Lock] = {}

    # Public operations -------------------------------------------------------

    async def start(self, request: RunRequest) -> UUID:
        """Validate and queue a run; phases execute in a background task."""

        request.validate()
        run = ReconciliationRun(
            project_id=request.project_id,
            mode=request.mode,
            source=describe_source(request.source),
            options=request.options,
            attestation=request.attestation,
            exception_lane=request.exception_lane,
            lane_justification=request.lane_justification,
            created_at=self._clock(),
            updated_at=self._clock(),
        )
        self._store.create(run)
        self._sources[run.id] = request.source
        self._spawn(run.id)
        return run.id

    def get_status(self, run_id: UUID) -> RunStatusView:
        return RunStatusView.of(self._store.get(run_id))

    async def wait(self, run_id: UUID) -> RunStatusView:
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.wait([task])
        return self.get_status(run_id)

    async def submit_review(
        self,
        run_id: UUID,
        decisions: Sequence[ReviewDecision],
    ) -> RunStatusView:
        """Apply reviewer verdicts to an interrupted run.

        Any ``clarify`` verdict keeps the run interrupted, narrowed to the items
        in question. Otherwise the run resumes straight into ``apply``.
        """

        run = self._store.get(run_id)
        if run.status is not RunStatus.INTERRUPTED:
            raise InvalidTransitionError(run_id, run.status.value, RunStatus.RUNNING.value)
        pending = run.pending_review or {}
        validate_decisions(pending, decisions)

        earlier = [ReviewDecision.from_payload(item) for item in pending.get("decisions", [])]
        settled = [
            decision for decision in decisions if decision.verdict is not ReviewVerdict.CLARIFY
        ]
        combined = [*earlier, *settled]

        if len(settled) != len(decisions):
            narrowed = narrow_to_clarifications(pending, decisions)
            narrowed["decisions"] = [decision.to_payload() for decision in combined]

            def keep_waiting(target: ReconciliationRun) -> None:
                target.pending_review = narrowed

            run = self._store.update(run_id, keep_waiting)
            self._events.append(run, RunEventKind.INTERRUPTED, payload=narrowed)
            log.info(
                "Run %s awaits clarification on %s item(s)",
                run_id,
                len(decisions) - len(settled),
            )
            return RunStatusView.of(run)

        self._store.save_snapshot(run_id, RunPhase.AWAIT_REVIEW, review_payload(combined))

        def clear_pending(target: ReconciliationRun) -> None:
            target.pending_review = None

        self._store.update(run_id, clear_pending)
        self._store.transition(run_id, RunStatus.RUNNING)
        self._spawn(run_id)
        return self.get_status(run_id)

    async def cancel(self, run_id: UUID) -> RunStatusView:
        run = self._store.get(run_id)
        if run.status.is_terminal:
            raise InvalidTransitionError(run_id, run.status.value, RunStatus.CANCELLED.value)

        task = self._tasks.get(run_id)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])

        if not self._store.get(run_id).status.is_terminal:
            self._mark_cancelled(run_id)
        return self.get_status(run_id)

    def list_recoverable(self) -> list[RecoverableRun]:
        runs = [
            run
            for run in self._store.list_by_status(RECOVERABLE_STATUSES)
            if run.has_partial_results and not run.is_recovered
        ]
        runs.sort(key=lambda run: run.updated_at, reverse=True)
        return [
            RecoverableRun(
                run_id=run.id,
                project_id=run.project_id,
                status=run.status,
                phase=run.current_phase,
                atoms_count=run.inferred_atoms_count,
                molecules_count=run.inferred_molecules_count,
                last_error=run.last_error,
                updated_at=run.updated_at,
            )
            for run in runs
        ]

    async def recover(self, run_id: UUID) -> RecoveryResult:
        """Resume a failed run as a derived run, or rehydrate an interrupted one."""

        run = self._store.get(run_id)
        outputs = PhaseOutputs.from_snapshots(self._store.load_snapshots(run_id))

        if run.status is RunStatus.INTERRUPTED:
            if run.pending_review is None and outputs.pending_review is not None:
                restored = outputs.pending_review

                def restore(target: ReconciliationRun) -> None:
                    target.pending_review = restored

                run = self._store.update(run_id, restore)
            return RecoveryResult(
                run_id=run_id,
                recovered=True,
                atom_count=run.inferred_atoms_count,
                molecule_count=run.inferred_molecules_count,
                resumed_from_phase=RunPhase.AWAIT_REVIEW,
                message="Run is awaiting review; submit decisions to continue",
            )

        if run.status is not RunStatus.FAILED or run.is_recovered:
            current = "recovered" if run.is_recovered else run.status.value
            raise InvalidTransitionError(run_id, current, "recovered")
        if outputs.last_completed is None:
            raise ValidationError(f"Run {run_id} has no completed phases to recover from")

        derived = ReconciliationRun(
            project_id=run.project_id,
            mode=run.mode,
            source=dict(run.source),
            options=run.options,
            attestation=run.attestation,
            exception_lane=run.exception_lane,
            lane_justification=run.lane_justification,
            manifest_id=run.manifest_id,
            commit_hash=run.commit_hash,
            inferred_atoms_count=run.inferred_atoms_count,
            inferred_molecules_count=run.inferred_molecules_count,
            recovered_from_id=run.id,
            created_at=self._clock(),
            updated_at=self._clock(),
        )
        def claim(target: ReconciliationRun) -> None:
            if target.is_recovered:
                raise InvalidTransitionError(run_id, "recovered", "recovered")
            target.recovered_by_id = derived.id

        self._store.update(run_id, claim)
        self._store.create(derived)
        self._store.copy_snapshots(run_id, derived.id)
        self._spawn(derived.id)

        log.info(
            "Recovering run %s as %s after phase %s",
            run_id,
            derived.id,
            outputs.last_completed,
        )
        return RecoveryResult(
            run_id=run_id,
            recovered=True,
            new_run_id=derived.id,
            atom_count=run.inferred_atoms_count,
            molecule_count=run.inferred_molecules_count,
            resumed_from_phase=outputs.last_completed,
            message=f"Resuming after {outputs.last_completed}",
        )

    # Task management ---------------------------------------------------------

    def _spawn(self, run_id: UUID) -> None:
        task = asyncio.get_running_loop().create_task(
            self._execute(run_id), name=f"reconciliation-{run_id}"
        )
        self._tasks[run_id] = task
        task.add_done_callback(partial(self._task_done, run_id))

    def _task_done(self, run_id: UUID, task: asyncio.Task[None]) -> None:
        if self._tasks.get(run_id) is task:
            del self._tasks[run_id]
        lock = self._locks.get(run_id)
        if lock is not None and not lock.locked():
            del self._locks[run_id]
        # a later resume never reloads the manifest
        self._sources.pop(run_id, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("Reconciliation task %s crashed", task.get_name(), exc_info=exc)

    def _lock(self, run_id: UUID) -> asyncio.Lock:
        return self._locks.setdefault(run_id, asyncio.Lock())

    async def _execute(self, run_id: UUID) -> None:
        async with self._lock(run_id):
            outputs = PhaseOutputs.from_snapshots(self._store.load_snapshots(run_id))
            if self._store.get(run_id).status is not RunStatus.RUNNING:
                self._store.transition(run_id, RunStatus.RUNNING)
            try:
                for phase in phases_after(outputs.last_completed):
                    if phase is RunPhase.AWAIT_REVIEW:
                        if outputs.review_required and not outputs.reviewed:
                            self._interrupt(run_id, outputs)
                            return
                        continue
                    await self._run_phase(run_id, phase, outputs)
            except asyncio.CancelledError:
                self._mark_cancelled(run_id)
                raise
            except _PhaseFailed as failure:
                self._fail(run_id, failure)
                return

            run = self._store.transition(run_id, RunStatus.COMPLETED)
            self._events.append(
                run,
                RunEventKind.COMPLETED,
                payload=outputs.payloads.get(RunPhase.APPLY, {}),
            )

    async def _run_phase(self, run_id: UUID, phase: RunPhase, outputs: PhaseOutputs) -> None:
        run = self._store.enter_phase(run_id, phase)
        self._events.append(run, RunEventKind.PHASE_STARTED, payload={"phase": phase.value})
        try:
            payload = await self._handle(run, phase, outputs)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if phase in CRITICAL_PHASES:
                raise _PhaseFailed(phase, exc) from exc
            log.warning("Phase %s of run %s degraded: %s", phase, run_id, exc)
            self._store.record_error(run_id, phase=phase, error=exc, critical=False)
            payload = self._empty_output(phase)

        self._store.save_snapshot(run_id, phase, payload, manifest_id=run.manifest_id)
        outputs.absorb(phase, payload)
        run = self._record_counts(run_id, phase, outputs)
        self._events.append(run, RunEventKind.PROGRESS, payload={"phase": phase.value})

    async def _handle(
        self,
        run: ReconciliationRun,
        phase: RunPhase,
        outputs: PhaseOutputs,
    ) -> dict[str, Any]:
        match phase:
            case RunPhase.LOAD_MANIFEST:
                return await self._load_manifest(run)
            case RunPhase.CLASSIFY:
                return self._classify(run, outputs)
            case RunPhase.INFER_ATOMS:
                return await self._infer_atoms(outputs)
            case RunPhase.SYNTHESIZE_MOLECULES:
                return await self._synthesize_molecules(outputs)
            case RunPhase.VERIFY_QUALITY:
                return self._verify_quality(run, outputs)
            case RunPhase.APPLY:
                return self._apply(run.id, outputs)
            case _:
                raise ValueError(f"Phase {phase} has no handler")

    @staticmethod
    def _empty_output(phase: RunPhase) -> dict[str, Any]:
        if phase is RunPhase.INFER_ATOMS:
            return inference_payload(AtomInferenceResult(), degraded=True)
        return molecules_payload((), degraded=True)

    # Phases ------------------------------------------------------------------

    async def _load_manifest(self, run: ReconciliationRun) -> dict[str, Any]:
        source = self._sources.get(run.id)
        if source is None:
            raise ValidationError(f"Run {run.id} has no manifest source to scan")
        manifest = await self._manifests.get_or_build(run.project_id, source)

        def attach(target: ReconciliationRun) -> None:
            target.manifest_id = manifest.id
            target.commit_hash = manifest.commit_hash

        self._store.update(run.id, attach)
        run.manifest_id = manifest.id
        return manifest_payload(manifest)

    def _classify(self, run: ReconciliationRun, outputs: PhaseOutputs) -> dict[str, Any]:
        manifest = self._manifests.get(outputs.manifest_id)
        classification = classify(
            manifest.evidence,
            mode=run.mode,
            known_atom_ids=self._known_atom_ids(run.project_id),
        )
        log.info(
            "Run %s classified %s test(s): %s annotated, %s orphan",
            run.id,
            classification.considered,
            len(classification.annotated),
            len(classification.orphan),
        )
        return classification.to_payload()

    async def _infer_atoms(self, outputs: PhaseOutputs) -> dict[str, Any]:
        orphans = outputs.classification.orphan
        if not orphans:
            return inference_payload(AtomInferenceResult())
        manifest = self._manifests.get(outputs.manifest_id)
        result = await self._inference.infer_atoms(orphans, evidence=manifest.evidence)
        return inference_payload(result)

    async def _synthesize_molecules(self, outputs: PhaseOutputs) -> dict[str, Any]:
        atoms = outputs.atoms
        if not atoms:
            return molecules_payload(())
        return molecules_payload(await self._inference.synthesize_molecules(atoms))

    def _verify_quality(self, run: ReconciliationRun, outputs: PhaseOutputs) -> dict[str, Any]:
        thresholds = _thresholds_for(run.options, self._quality)
        atoms = outputs.atoms
        atom_results = evaluate_atoms(atoms, thresholds)
        batch = verify_molecules(outputs.molecules, atoms, self._molecule_thresholds)
        review_required = bool(atoms) and needs_review(
            atom_results, requested=run.options.require_review
        )
        pending = (
            build_interrupt_payload(
                atoms=atoms,
                atom_results=atom_results,
                molecules=batch.output_molecules,
                thresholds=thresholds,
                requested=run.options.require_review,
            )
            if review_required
            else None
        )
        return verification_payload(
            atom_results=atom_results,
            batch=batch,
            review_required=review_required,
            pending_review=pending,
        )

    def _apply(self, run_id: UUID, outputs: PhaseOutputs) -> dict[str, Any]:
        """Persist approved atoms and surviving molecules, then update drift, atomically."""

        decisions = outputs.decisions
        approved = approved_atom_ids(outputs.atom_results, decisions)
        rejected_molecules = rejected_molecule_ids(decisions)
        scores = {result.temp_id: result.score for result in outputs.atom_results}
        manifest = self._manifests.get(outputs.manifest_id)
        now = self._clock()
        hierarchy_issues: list[HierarchyCycleError] = []

        with self._unit_of_work_factory() as uow:
            repositories = uow.repositories
            run = repositories.runs.get(run_id)
            if run is None:
                raise ValidationError(f"Run {run_id} disappeared during apply")

            atoms: dict[str, Atom] = {}
            for candidate in outputs.atoms:
                if candidate.temp_id not in approved:
                    continue
                atom = Atom(
                    atom_id=repositories.atoms.next_atom_id(),
                    description=candidate.description,
                    category=candidate.category,
                    origin=ProposedByAgent(
                        agent=AGENT_NAME,
                        rationale=candidate.reasoning,
                        confidence=candidate.confidence,
                        run_id=run_id,
                    ),
                    observable_outcomes=list(candidate.observable_outcomes),
                    quality_score=scores.get(candidate.temp_id),
                    confidence=candidate.confidence,
                    project_id=run.project_id,
                    source_test_file=candidate.source_test.file_path,
                    source_test_name=candidate.source_test.test_name,
                    created_at=now,
                )
                repositories.atoms.add(atom)
                atoms[candidate.temp_id] = atom

            molecules: dict[str, Molecule] = {}
            output_molecules = outputs.verification.output_molecules
            for candidate in output_molecules:
                members = [
                    atoms[temp_id].id for temp_id in candidate.atom_temp_ids if temp_id in atoms
                ]
                if candidate.temp_id in rejected_molecules or not members:
                    continue
                molecule = Molecule(
                    molecule_id=repositories.molecules.next_molecule_id(),
                    name=candidate.name,
                    description=candidate.description,
                    atom_ids=members,
                    lens_type=candidate.lens_type,
                    confidence=candidate.confidence,
                    degraded=candidate.is_degraded,
                    project_id=run.project_id,
                    source_run_id=run_id,
                    created_at=now,
                )
                repositories.molecules.add(molecule)
                molecules[candidate.temp_id] = molecule

            by_id = {molecule.id: molecule for molecule in molecules.values()}
            for candidate in output_molecules:
                child = molecules.get(candidate.temp_id)
                parent = molecules.get(candidate.parent_temp_id or "")
                if child is None or parent is None:
                    continue
                try:
                    assign_parent(child, parent, molecules_by_id=by_id)
                except HierarchyCycleError as exc:
                    hierarchy_issues.append(exc)

            drift = self._drift.detect(uow, run=run, manifest=manifest)
            uow.commit()

        for issue in hierarchy_issues:
            log.warning("Run %s skipped a molecule parent link: %s", run_id, issue)
            self._store.record_error(run_id, phase=RunPhase.APPLY, error=issue, critical=False)

        log.info(
            "Run %s applied %s atom(s) and %s molecule(s)",
            run_id,
            len(atoms),
            len(molecules),
        )
        return {
            "atom_ids": [atom.atom_id for atom in atoms.values()],
            "molecule_ids": [molecule.molecule_id for molecule in molecules.values()],
            "drift": drift.to_payload(),
        }

    # State changes -----------------------------------------------------------

    def _known_atom_ids(self, project_id: str) -> set[str]:
        with self._unit_of_work_factory() as uow:
            return {
                atom.atom_id
                for status in AtomStatus
                for atom in uow.repositories.atoms.list_by_status(status, project_id=project_id)
            }

    def _record_counts(
        self, run_id: UUID, phase: RunPhase, outputs: PhaseOutputs
    ) -> ReconciliationRun:
        def count(target: ReconciliationRun) -> None:
            if phase is RunPhase.INFER_ATOMS:
                target.inferred_atoms_count = len(outputs.atoms)
            elif phase is RunPhase.SYNTHESIZE_MOLECULES:
                target.inferred_molecules_count = len(outputs.molecules)

        return self._store.update(run_id, count)

    def _interrupt(self, run_id: UUID, outputs: PhaseOutputs) -> None:
        pending = outputs.pending_review or {}

        def await_review(target: ReconciliationRun) -> None:
            target.current_phase = RunPhase.AWAIT_REVIEW
            target.pending_review = pending

        self._store.update(run_id, await_review)
        run = self._store.transition(run_id, RunStatus.INTERRUPTED)
        self._events.append(run, RunEventKind.INTERRUPTED, payload=pending)

    def _fail(self, run_id: UUID, failure: _PhaseFailed) -> None:
        log.error("Run %s failed in %s: %s", run_id, failure.phase, failure.cause)
        self._store.record_error(run_id, phase=failure.phase, error=failure.cause, critical=True)
        run = self._store.transition(run_id, RunStatus.FAILED)
        self._events.append(
            run,
            RunEventKind.FAILED,
            payload={"phase": failure.phase.value, "error": run.last_error},
        )

    def _mark_cancelled(self, run_id: UUID) -> None:
        run = self._store.transition(run_id, RunStatus.CANCELLED)
        self._events.append(run, RunEventKind.CANCELLED)
        log.info("Run %s cancelled in phase %s", run_id, run.current_phase)


def run_request(
    project_id: str,
    source: ManifestSource,
    **options: Any,
) -> RunRequest:
    """Build a ``RunRequest`` from loose keyword arguments, coercing enum values."""

    try:
        return RunRequest(
            project_id=project_id,
            source=source,
            mode=RunMode(options.pop("mode", RunMode.FULL)),
            attestation=AttestationType(options.pop("attestation", AttestationType.LOCAL)),
            exception_lane=ExceptionLane(options.pop("exception_lane", ExceptionLane.NORMAL)),
            lane_justification=options.pop("lane_justification", None),
            options=RunOptions.from_payload(options),
        )
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
