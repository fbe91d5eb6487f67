"""Unit-of-work abstractions for coordinating repositories."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from types import TracebackType

    from atomledger.domain.ports.persistence import (
        AtomRepository,
        CommitmentRepository,
        DriftDebtRepository,
        ManifestRepository,
        MoleculeRepository,
        PhaseSnapshotRepository,
        RunEventRepository,
        RunRepository,
    )


@runtime_checkable
class RepositoryCollection(Protocol):
    """Marker protocol for groups of repositories managed together."""


@runtime_checkable
class UnitOfWork[TRepositories: RepositoryCollection](Protocol):
    """Generic unit-of-work boundary around a repository collection.

    ``commit`` raises ``ConcurrencyConflict`` when an optimistic version check
    or a uniqueness race is lost, and ``ImmutabilityViolation`` when the store
    refuses to change committed state.
    """

    @property
    def repositories(self) -> TRepositories: ...

    def __enter__(self) -> UnitOfWork[TRepositories]: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> bool: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


@dataclass(slots=True)
class LedgerRepositories(RepositoryCollection):
    """Every repository the reconciliation, ledger, and drift services touch."""

    manifests: ManifestRepository
    runs: RunRepository
    run_events: RunEventRepository
    snapshots: PhaseSnapshotRepository
    atoms: AtomRepository
    molecules: MoleculeRepository
    commitments: CommitmentRepository
    drift: DriftDebtRepository


type LedgerUnitOfWork = UnitOfWork[LedgerRepositories]
type UnitOfWorkFactory = Callable[[], LedgerUnitOfWork]
