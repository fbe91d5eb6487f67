"""Public domain model surface."""

from __future__ import annotations

from atomledger.domain.model.atom import (
    MAX_MOLECULE_DEPTH,
    Atom,
    AtomOrigin,
    CreatedByHuman,
    Molecule,
    ProposedByAgent,
    assign_parent,
    origin_from_payload,
    origin_to_payload,
)
from atomledger.domain.model.commitment import (
    CanonicalAtomSnapshot,
    Commitment,
    InvariantCheckResult,
)
from atomledger.domain.model.drift import (
    ACTIVE_DRIFT_STATUSES,
    DriftDebtItem,
    DriftKey,
    age_in_days,
)
from atomledger.domain.model.entity import Entity, new_id, utc_now
from atomledger.domain.model.enums import (
    AtomStatus,
    AttestationType,
    CheckSeverity,
    CommitmentStatus,
    DriftSeverity,
    DriftStatus,
    DriftType,
    EvidenceChange,
    ExceptionLane,
    ManifestStatus,
    MoleculeAction,
    QualityDecision,
    ReviewVerdict,
    RunEventKind,
    RunMode,
    RunPhase,
    RunStatus,
)
from atomledger.domain.model.inference import (
    DEGRADED_MOLECULE_NAME,
    EvidenceRef,
    InferredAtom,
    InferredMolecule,
    SourceTestRef,
)
from atomledger.domain.model.manifest import (
    EvidenceInventory,
    EvidenceKey,
    RepoManifest,
    SourceExport,
    TestEvidence,
)
from atomledger.domain.model.run import (
    PhaseSnapshot,
    ReconciliationRun,
    RunError,
    RunEvent,
    RunOptions,
)

__all__ = [  # noqa: RUF022
    # atoms and molecules
    "MAX_MOLECULE_DEPTH",
    "Atom",
    "AtomOrigin",
    "CreatedByHuman",
    "Molecule",
    "ProposedByAgent",
    "assign_parent",
    "origin_from_payload",
    "origin_to_payload",
    # commitments
    "CanonicalAtomSnapshot",
    "Commitment",
    "InvariantCheckResult",
    # drift
    "ACTIVE_DRIFT_STATUSES",
    "DriftDebtItem",
    "DriftKey",
    "age_in_days",
    # identity
    "Entity",
    "new_id",
    "utc_now",
    # enums
    "AtomStatus",
    "AttestationType",
    "CheckSeverity",
    "CommitmentStatus",
    "DriftSeverity",
    "DriftStatus",
    "DriftType",
    "EvidenceChange",
    "ExceptionLane",
    "ManifestStatus",
    "MoleculeAction",
    "QualityDecision",
    "ReviewVerdict",
    "RunEventKind",
    "RunMode",
    "RunPhase",
    "RunStatus",
    # inference candidates
    "DEGRADED_MOLECULE_NAME",
    "EvidenceRef",
    "InferredAtom",
    "InferredMolecule",
    "SourceTestRef",
    # manifests
    "EvidenceInventory",
    "EvidenceKey",
    "RepoManifest",
    "SourceExport",
    "TestEvidence",
    # runs
    "PhaseSnapshot",
    "ReconciliationRun",
    "RunError",
    "RunEvent",
    "RunOptions",
]
