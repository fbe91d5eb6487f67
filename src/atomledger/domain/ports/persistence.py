"""Ports for persisting domain aggregates."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from atomledger.domain.model import (
    Atom,
    Commitment,
    DriftDebtItem,
    Molecule,
    PhaseSnapshot,
    ReconciliationRun,
    RepoManifest,
    RunEvent,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from uuid import UUID

    from atomledger.domain.model import AtomStatus, DriftKey, DriftStatus, RunStatus


@runtime_checkable
class Repository[TEntity](Protocol):
    """Minimal repository contract for a persistent aggregate store."""

    def add(self, entity: TEntity) -> None: ...

    def get(self, entity_id: UUID) -> TEntity | None: ...


@runtime_checkable
class ManifestRepository(Repository[RepoManifest], Protocol):
    def find_by_commit(self, project_id: str, commit_hash: str) -> RepoManifest | None: ...


@runtime_checkable
class RunRepository(Repository[ReconciliationRun], Protocol):
    def list_by_status(self, statuses: Iterable[RunStatus]) -> list[ReconciliationRun]: ...


@runtime_checkable
class RunEventRepository(Protocol):
    def add(self, event: RunEvent) -> None: ...

    def last_sequence(self, run_id: UUID) -> int: ...

    def list_for_run(self, run_id: UUID, *, after: int = 0) -> list[RunEvent]: ...


@runtime_checkable
class PhaseSnapshotRepository(Protocol):
    def add(self, snapshot: PhaseSnapshot) -> None: ...

    def list_for_run(self, run_id: UUID) -> list[PhaseSnapshot]: ...


@runtime_checkable
class AtomRepository(Repository[Atom], Protocol):
    def get_many(self, atom_ids: Sequence[UUID]) -> list[Atom]: ...

    def find_by_atom_id(self, atom_id: str) -> Atom | None: ...

    def list_by_status(self, status: AtomStatus, *, project_id: str | None = None) -> list[Atom]: ...

    def next_atom_id(self) -> str: ...

    def delete(self, atom: Atom) -> None: ...


@runtime_checkable
class MoleculeRepository(Repository[Molecule], Protocol):
    def next_molecule_id(self) -> str: ...

    def list_for_project(self, project_id: str | None) -> list[Molecule]: ...


@runtime_checkable
class CommitmentRepository(Repository[Commitment], Protocol):
    def next_commitment_id(self) -> str: ...

    def list_for_project(self, project_id: str | None) -> list[Commitment]: ...

    def delete(self, commitment: Commitment) -> None: ...


@runtime_checkable
class DriftDebtRepository(Repository[DriftDebtItem], Protocol):
    def list_by_status(
        self,
        statuses: Iterable[DriftStatus],
        *,
        project_id: str | None = None,
    ) -> list[DriftDebtItem]: ...

    def find_by_key(
        self,
        key: DriftKey,
        *,
        project_id: str | None,
        statuses: Iterable[DriftStatus],
    ) -> DriftDebtItem | None: ...
