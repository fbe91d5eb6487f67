"""Drift detection against a CI-attested manifest.

Only ``ci-attested`` runs change drift state. A local run gets an advisory,
write-free result. Each attested run compares what it observes against the
active items of the same project: new discrepancies open items, repeated ones
are confirmed and aged, and ones no longer observed are resolved.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from atomledger.domain.model import (
    ACTIVE_DRIFT_STATUSES,
    AtomStatus,
    AttestationType,
    DriftDebtItem,
    DriftStatus,
    DriftType,
    EvidenceChange,
    utc_now,
)

from .policy import DEFAULT_SEVERITY, DriftPolicy

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime
    from uuid import UUID

    from atomledger.domain.model import DriftKey, ReconciliationRun, RepoManifest
    from atomledger.domain.ports import LedgerUnitOfWork

log = getLogger(__name__)

_TRACKED_STATUSES = frozenset({*ACTIVE_DRIFT_STATUSES, DriftStatus.WAIVED})


@dataclass(frozen=True, slots=True, kw_only=True)
class DriftObservation:
    drift_type: DriftType
    description: str
    file_path: str | None = None
    test_name: str | None = None
    atom_id: str | None = None

    @property
    def key(self) -> DriftKey:
        return (self.drift_type, self.file_path, self.test_name, self.atom_id)


@dataclass(frozen=True, slots=True, kw_only=True)
class DriftDetectionResult:
    attested: bool
    created: tuple[UUID, ...] = ()
    confirmed: tuple[UUID, ...] = ()
    resolved: tuple[UUID, ...] = ()
    escalated: tuple[UUID, ...] = ()
    evaluated_types: tuple[DriftType, ...] = ()
    message: str = ""

    def to_payload(self) -> dict[str, object]:
        return {
            "attested": self.attested,
            "created": [str(item) for item in self.created],
            "confirmed": [str(item) for item in self.confirmed],
            "resolved": [str(item) for item in self.resolved],
            "escalated": [str(item) for item in self.escalated],
            "evaluated_types": [item.value for item in self.evaluated_types],
            "message": self.message,
        }


def observe(
    manifest: RepoManifest,
    committed_atom_ids: Iterable[str],
) -> dict[DriftType, list[DriftObservation]]:
    """Collect current discrepancies per drift type.

    Uncovered code is only evaluated when the manifest reported coverage.
    """

    evidence = manifest.evidence
    present_tests = [test for test in evidence.tests if test.change is not EvidenceChange.DELETED]
    linked = {test.linked_atom_id for test in present_tests if test.linked_atom_id}

    observations: dict[DriftType, list[DriftObservation]] = {
        DriftType.ORPHAN_TEST: [
            DriftObservation(
                drift_type=DriftType.ORPHAN_TEST,
                description=f"Test {test.test_name} is not linked to any intent atom",
                file_path=test.file_path,
                test_name=test.test_name,
            )
            for test in present_tests
            if not test.is_annotated
        ],
        DriftType.COMMITMENT_BACKLOG: [
            DriftObservation(
                drift_type=DriftType.COMMITMENT_BACKLOG,
                description=f"Committed atom {atom_id} has no linked test evidence",
                atom_id=atom_id,
            )
            for atom_id in sorted(set(committed_atom_ids) - linked)
        ],
        DriftType.STALE_COUPLING: [
            DriftObservation(
                drift_type=DriftType.STALE_COUPLING,
                description=(
                    f"Test {test.test_name} changed since it was linked to {test.linked_atom_id}"
                ),
                file_path=test.file_path,
                test_name=test.test_name,
                atom_id=test.linked_atom_id,
            )
            for test in present_tests
            if test.is_annotated and test.change is EvidenceChange.MODIFIED
        ],
    }
    if evidence.coverage:
        observations[DriftType.UNCOVERED_CODE] = [
            DriftObservation(
                drift_type=DriftType.UNCOVERED_CODE,
                description=f"Source file {path} is not exercised by any test",
                file_path=path,
            )
            for path in evidence.source_files
            if evidence.coverage.get(path, 0.0) <= 0.0
        ]
    return observations


def _still_coupled(manifest: RepoManifest) -> set[DriftKey]:
    """Stale-coupling keys that stay open until the link or the test disappears."""

    return {
        (DriftType.STALE_COUPLING, test.file_path, test.test_name, test.linked_atom_id)
        for test in manifest.evidence.tests
        if test.is_annotated and test.change is not EvidenceChange.DELETED
    }


@dataclass(slots=True)
class DriftDebtEngine:
    policy: DriftPolicy = field(default_factory=DriftPolicy)
    clock: Callable[[], datetime] = field(default=utc_now)

    def detect(
        self,
        uow: LedgerUnitOfWork,
        *,
        run: ReconciliationRun,
        manifest: RepoManifest,
    ) -> DriftDetectionResult:
        """Update drift debt inside ``uow``; the caller commits."""

        if run.attestation is not AttestationType.CI_ATTESTED:
            log.info("Run %s is %s; drift detection is advisory only", run.id, run.attestation)
            return DriftDetectionResult(
                attested=False,
                message="Local runs do not change drift debt",
            )

        now = self.clock()
        repositories = uow.repositories
        committed = [
            atom.atom_id
            for atom in repositories.atoms.list_by_status(
                AtomStatus.COMMITTED, project_id=run.project_id
            )
        ]
        observations = observe(manifest, committed)
        tracked = {
            item.key: item
            for item in repositories.drift.list_by_status(
                _TRACKED_STATUSES, project_id=run.project_id
            )
        }
        kept_open = _still_coupled(manifest)

        created: list[UUID] = []
        confirmed: list[UUID] = []
        resolved: list[UUID] = []
        escalated: list[UUID] = []

        for drift_type, current in observations.items():
            observed_keys = {observation.key for observation in current}
            for observation in current:
                item = tracked.get(observation.key)
                if item is None:
                    item = self._open(observation, run=run, now=now)
                    repositories.drift.add(item)
                    tracked[item.key] = item
                    created.append(item.id)
                    continue
                if item.status is DriftStatus.WAIVED:
                    continue
                item.confirm(run_id=run.id, now=now)
                confirmed.append(item.id)
                if item.escalate(self.policy.severity_for_age(item.severity, item.age_days)):
                    escalated.append(item.id)

            for key, item in tracked.items():
                if key[0] is not drift_type or key in observed_keys or not item.is_active:
                    continue
                if key in kept_open:
                    continue
                item.resolve(run_id=run.id, now=now)
                resolved.append(item.id)

        log.info(
            "Drift for run %s: %s new, %s confirmed, %s resolved, %s escalated",
            run.id,
            len(created),
            len(confirmed),
            len(resolved),
            len(escalated),
        )
        return DriftDetectionResult(
            attested=True,
            created=tuple(created),
            confirmed=tuple(confirmed),
            resolved=tuple(resolved),
            escalated=tuple(escalated),
            evaluated_types=tuple(observations),
        )

    def _open(
        self,
        observation: DriftObservation,
        *,
        run: ReconciliationRun,
        now: datetime,
    ) -> DriftDebtItem:
        return DriftDebtItem(
            project_id=run.project_id,
            drift_type=observation.drift_type,
            description=observation.description,
            severity=DEFAULT_SEVERITY[observation.drift_type],
            due_at=self.policy.due_at(now, run.exception_lane),
            detected_by_run_id=run.id,
            last_confirmed_by_run_id=run.id,
            file_path=observation.file_path,
            test_name=observation.test_name,
            atom_id=observation.atom_id,
            exception_lane=run.exception_lane,
            lane_justification=run.lane_justification,
            detected_at=now,
            last_confirmed_at=now,
        )
