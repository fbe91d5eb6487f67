"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select

from atomledger.adapters.sqlalchemy.mappings import (
    atom_table,
    commitment_table,
    drift_debt_table,
    molecule_table,
    phase_snapshot_table,
    reconciliation_run_table,
    repo_manifest_table,
    run_event_table,
)
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

    from sqlalchemy import Column, Select
    from sqlalchemy.orm import Session

    from atomledger.domain.model import AtomStatus, DriftKey, DriftStatus, RunStatus


def _next_display_id(session: Session, column: Column[str], prefix: str) -> str:
    """Return ``PREFIX-NNN`` one past the highest number already issued."""

    # core selects skip autoflush; pending rows must be visible to the max
    session.flush()
    pattern = re.compile(rf"^{re.escape(prefix)}-(\d+)$")
    stmt = select(column).where(column.like(f"{prefix}-%"))
    highest = 0
    for value in session.execute(stmt).scalars():
        match = pattern.match(value)
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{prefix}-{highest + 1:03d}"


def _for_project(stmt: Select[Any], column: Column[str], project_id: str | None) -> Select[Any]:
    if project_id is None:
        return stmt
    return stmt.where(column == project_id)


class SqlAlchemyManifestRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: RepoManifest) -> None:
        self.session.add(entity)

    def get(self, entity_id: UUID) -> RepoManifest | None:
        return self.session.get(RepoManifest, entity_id)

    def find_by_commit(self, project_id: str, commit_hash: str) -> RepoManifest | None:
        stmt = (
            select(RepoManifest)
            .where(repo_manifest_table.c.project_id == project_id)
            .where(repo_manifest_table.c.commit_hash == commit_hash)
        )
        return self.session.execute(stmt).scalar_one_or_none()


class SqlAlchemyRunRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: ReconciliationRun) -> None:
        self.session.add(entity)

    def get(self, entity_id: UUID) -> ReconciliationRun | None:
        return self.session.get(ReconciliationRun, entity_id)

    def list_by_status(self, statuses: Iterable[RunStatus]) -> list[ReconciliationRun]:
        stmt = (
            select(ReconciliationRun)
            .where(reconciliation_run_table.c.status.in_(list(statuses)))
            .order_by(reconciliation_run_table.c.created_at.desc())
        )
        return list(self.session.execute(stmt).scalars())


class SqlAlchemyRunEventRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, event: RunEvent) -> None:
        self.session.add(event)

    def last_sequence(self, run_id: UUID) -> int:
        self.session.flush()
        stmt = select(func.max(run_event_table.c.sequence)).where(
            run_event_table.c.run_id == run_id
        )
        return self.session.execute(stmt).scalar_one_or_none() or 0

    def list_for_run(self, run_id: UUID, *, after: int = 0) -> list[RunEvent]:
        stmt = (
            select(RunEvent)
            .where(run_event_table.c.run_id == run_id)
            .where(run_event_table.c.sequence > after)
            .order_by(run_event_table.c.sequence)
        )
        return list(self.session.execute(stmt).scalars())


class SqlAlchemyPhaseSnapshotRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, snapshot: PhaseSnapshot) -> None:
        self.session.add(snapshot)

    def list_for_run(self, run_id: UUID) -> list[PhaseSnapshot]:
        stmt = (
            select(PhaseSnapshot)
            .where(phase_snapshot_table.c.run_id == run_id)
            .order_by(phase_snapshot_table.c.created_at)
        )
        return list(self.session.execute(stmt).scalars())


class SqlAlchemyAtomRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: Atom) -> None:
        self.session.add(entity)

    def get(self, entity_id: UUID) -> Atom | None:
        return self.session.get(Atom, entity_id)

    def get_many(self, atom_ids: Sequence[UUID]) -> list[Atom]:
        if not atom_ids:
            return []
        stmt = select(Atom).where(atom_table.c.id.in_(list(atom_ids)))
        by_id = {atom.id: atom for atom in self.session.execute(stmt).scalars()}
        return [by_id[atom_id] for atom_id in atom_ids if atom_id in by_id]

    def find_by_atom_id(self, atom_id: str) -> Atom | None:
        stmt = select(Atom).where(atom_table.c.atom_id == atom_id)
        return self.session.execute(stmt).scalar_one_or_none()

    def list_by_status(self, status: AtomStatus, *, project_id: str | None = None) -> list[Atom]:
        stmt = select(Atom).where(atom_table.c.status == status).order_by(atom_table.c.atom_id)
        return list(
            self.session.execute(_for_project(stmt, atom_table.c.project_id, project_id)).scalars()
        )

    def next_atom_id(self) -> str:
        return _next_display_id(self.session, atom_table.c.atom_id, "IA")

    def delete(self, atom: Atom) -> None:
        self.session.delete(atom)


class SqlAlchemyMoleculeRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: Molecule) -> None:
        self.session.add(entity)

    def get(self, entity_id: UUID) -> Molecule | None:
        return self.session.get(Molecule, entity_id)

    def next_molecule_id(self) -> str:
        return _next_display_id(self.session, molecule_table.c.molecule_id, "MOL")

    def list_for_project(self, project_id: str | None) -> list[Molecule]:
        stmt = select(Molecule).order_by(molecule_table.c.molecule_id)
        return list(
            self.session.execute(
                _for_project(stmt, molecule_table.c.project_id, project_id)
            ).scalars()
        )


class SqlAlchemyCommitmentRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: Commitment) -> None:
        self.session.add(entity)

    def get(self, entity_id: UUID) -> Commitment | None:
        return self.session.get(Commitment, entity_id)

    def next_commitment_id(self) -> str:
        return _next_display_id(self.session, commitment_table.c.commitment_id, "COM")

    def list_for_project(self, project_id: str | None) -> list[Commitment]:
        stmt = select(Commitment).order_by(commitment_table.c.committed_at)
        return list(
            self.session.execute(
                _for_project(stmt, commitment_table.c.project_id, project_id)
            ).scalars()
        )

    def delete(self, commitment: Commitment) -> None:
        self.session.delete(commitment)


class SqlAlchemyDriftDebtRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: DriftDebtItem) -> None:
        self.session.add(entity)

    def get(self, entity_id: UUID) -> DriftDebtItem | None:
        return self.session.get(DriftDebtItem, entity_id)

    def list_by_status(
        self,
        statuses: Iterable[DriftStatus],
        *,
        project_id: str | None = None,
    ) -> list[DriftDebtItem]:
        stmt = (
            select(DriftDebtItem)
            .where(drift_debt_table.c.status.in_(list(statuses)))
            .order_by(drift_debt_table.c.detected_at)
        )
        return list(
            self.session.execute(
                _for_project(stmt, drift_debt_table.c.project_id, project_id)
            ).scalars()
        )

    def find_by_key(
        self,
        key: DriftKey,
        *,
        project_id: str | None,
        statuses: Iterable[DriftStatus],
    ) -> DriftDebtItem | None:
        drift_type, file_path, test_name, atom_id = key
        table = drift_debt_table
        stmt = (
            select(DriftDebtItem)
            .where(table.c.drift_type == drift_type)
            # comparing to None renders IS NULL
            .where(table.c.file_path == file_path)
            .where(table.c.test_name == test_name)
            .where(table.c.atom_id == atom_id)
            .where(table.c.status.in_(list(statuses)))
            .where(table.c.project_id == project_id)
            .order_by(table.c.detected_at.desc())
            .limit(1)
        )
        return self.session.execute(stmt).scalars().first()
