from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy import inspect, text
from sqlalchemy.exc import DBAPIError

from atomledger.adapters.sqlalchemy import start_mappers
from atomledger.adapters.sqlalchemy.unit_of_work import SqlAlchemyUnitOfWork
from atomledger.domain.errors import ImmutabilityViolation
from atomledger.domain.ledger import CommitmentLedger
from atomledger.domain.model import AtomStatus
from tests.helpers.atoms import make_atom, store_atoms

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.engine import Engine


def test_start_mappers_is_idempotent() -> None:
    # First invocation happens in the sqlite_engine fixture; calling again should be harmless.
    start_mappers()
    start_mappers()


def test_migrations_create_ledger_tables(sqlite_engine: Engine) -> None:
    table_names = set(inspect(sqlite_engine).get_table_names())

    for required in ("atom", "molecule", "commitment", "drift_debt", "reconciliation_run"):
        assert required in table_names


@pytest.fixture
def committed(
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> tuple[str, str]:
    (atom,) = store_atoms(sqlite_unit_of_work, make_atom())
    commitment = CommitmentLedger(sqlite_unit_of_work).commit([atom.id], "dana")
    return atom.atom_id, commitment.commitment_id


@pytest.mark.parametrize(
    "statement",
    [
        "UPDATE commitment SET committed_by = 'mallory' WHERE commitment_id = :commitment_id",
        "UPDATE commitment SET canonical_json = '[]' WHERE commitment_id = :commitment_id",
        "DELETE FROM commitment WHERE commitment_id = :commitment_id",
        "UPDATE atom SET description = 'changed' WHERE atom_id = :atom_id",
        "UPDATE atom SET status = 'draft' WHERE atom_id = :atom_id",
        "DELETE FROM atom WHERE atom_id = :atom_id",
    ],
)
def test_database_refuses_raw_changes_to_committed_rows(
    sqlite_engine: Engine,
    committed: tuple[str, str],
    statement: str,
) -> None:
    atom_id, commitment_id = committed

    with sqlite_engine.connect() as connection, pytest.raises(DBAPIError, match="immutable"):
        connection.execute(text(statement), {"atom_id": atom_id, "commitment_id": commitment_id})


def test_orm_refuses_editing_committed_atoms(
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    committed: tuple[str, str],
) -> None:
    atom_id, _ = committed

    with sqlite_unit_of_work() as uow, pytest.raises(ImmutabilityViolation):
        atom = uow.repositories.atoms.find_by_atom_id(atom_id)
        assert atom is not None
        atom.description = "Customer receives nothing"
        uow.commit()

    with sqlite_unit_of_work() as uow:
        atom = uow.repositories.atoms.find_by_atom_id(atom_id)
        assert atom is not None
        assert atom.status is AtomStatus.COMMITTED
        assert atom.description != "Customer receives nothing"


def test_orm_refuses_deleting_commitments(
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    committed: tuple[str, str],
) -> None:
    _, commitment_id = committed

    with sqlite_unit_of_work() as uow:
        (commitment,) = uow.repositories.commitments.list_for_project("shop")
        assert commitment.commitment_id == commitment_id
        uow.repositories.commitments.delete(commitment)
        with pytest.raises(ImmutabilityViolation):
            uow.commit()


def test_draft_atoms_stay_editable(
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> None:
    (atom,) = store_atoms(sqlite_unit_of_work, make_atom())

    with sqlite_unit_of_work() as uow:
        draft = uow.repositories.atoms.get(atom.id)
        assert draft is not None
        draft.description = "Customer receives an itemised email receipt"
        uow.commit()

    with sqlite_unit_of_work() as uow:
        stored = uow.repositories.atoms.get(atom.id)
        assert stored is not None
        assert stored.description == "Customer receives an itemised email receipt"
        assert stored.version == atom.version + 1
