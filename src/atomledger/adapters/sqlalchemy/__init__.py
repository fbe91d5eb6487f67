"""SQLAlchemy adapter package for the atom ledger."""

from __future__ import annotations

from .mappings import SQLITE_IMMUTABILITY_TRIGGERS, mapper_registry, start_mappers
from .repositories import (
    SqlAlchemyAtomRepository,
    SqlAlchemyCommitmentRepository,
    SqlAlchemyDriftDebtRepository,
    SqlAlchemyManifestRepository,
    SqlAlchemyMoleculeRepository,
    SqlAlchemyPhaseSnapshotRepository,
    SqlAlchemyRunEventRepository,
    SqlAlchemyRunRepository,
)
from .unit_of_work import SqlAlchemyUnitOfWork, StartupError, shutdown, startup

__all__ = [
    "SQLITE_IMMUTABILITY_TRIGGERS",
    "SqlAlchemyAtomRepository",
    "SqlAlchemyCommitmentRepository",
    "SqlAlchemyDriftDebtRepository",
    "SqlAlchemyManifestRepository",
    "SqlAlchemyMoleculeRepository",
    "SqlAlchemyPhaseSnapshotRepository",
    "SqlAlchemyRunEventRepository",
    "SqlAlchemyRunRepository",
    "SqlAlchemyUnitOfWork",
    "StartupError",
    "mapper_registry",
    "shutdown",
    "start_mappers",
    "startup",
]
