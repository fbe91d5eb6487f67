"""Domain ports: the seams adapters plug into."""

from __future__ import annotations

from .inference import (
    AtomInferencePort,
    AtomInferenceResult,
    CandidateRejection,
    InferenceFailure,
    InferenceFailureKind,
    InferenceOutcome,
    InferenceService,
    InferenceSuccess,
)
from .manifest import (
    FileMapSource,
    FilesystemSource,
    ManifestBuilder,
    ManifestData,
    ManifestSource,
    RemoteRepositorySource,
    describe_source,
)
from .notification import EventPublisher
from .persistence import (
    AtomRepository,
    CommitmentRepository,
    DriftDebtRepository,
    ManifestRepository,
    MoleculeRepository,
    PhaseSnapshotRepository,
    Repository,
    RunEventRepository,
    RunRepository,
)
from .unit_of_work import (
    LedgerRepositories,
    LedgerUnitOfWork,
    RepositoryCollection,
    UnitOfWork,
    UnitOfWorkFactory,
)

__all__ = [
    "AtomInferencePort",
    "AtomInferenceResult",
    "AtomRepository",
    "CandidateRejection",
    "CommitmentRepository",
    "DriftDebtRepository",
    "EventPublisher",
    "FileMapSource",
    "FilesystemSource",
    "InferenceFailure",
    "InferenceFailureKind",
    "InferenceOutcome",
    "InferenceService",
    "InferenceSuccess",
    "LedgerRepositories",
    "LedgerUnitOfWork",
    "ManifestBuilder",
    "ManifestData",
    "ManifestRepository",
    "ManifestSource",
    "MoleculeRepository",
    "PhaseSnapshotRepository",
    "RemoteRepositorySource",
    "Repository",
    "RepositoryCollection",
    "RunEventRepository",
    "RunRepository",
    "UnitOfWork",
    "UnitOfWorkFactory",
    "describe_source",
]
