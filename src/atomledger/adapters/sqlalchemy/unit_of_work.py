"""SQLAlchemy-backed unit of work for the ledger repositories."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Literal

from sqlalchemy import create_engine, event
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from atomledger.adapters.sqlalchemy.mappings import start_mappers
from atomledger.adapters.sqlalchemy.migrations import upgrade_head
from atomledger.adapters.sqlalchemy.repositories import (
    SqlAlchemyAtomRepository,
    SqlAlchemyCommitmentRepository,
    SqlAlchemyDriftDebtRepository,
    SqlAlchemyManifestRepository,
    SqlAlchemyMoleculeRepository,
    SqlAlchemyPhaseSnapshotRepository,
    SqlAlchemyRunEventRepository,
    SqlAlchemyRunRepository,
)
from atomledger.config.storage import get_database_config
from atomledger.domain.errors import ConcurrencyConflict, ImmutabilityViolation
from atomledger.domain.ports.unit_of_work import LedgerRepositories, RepositoryCollection

if TYPE_CHECKING:
    from types import TracebackType

    from sqlalchemy.engine import Engine

log = getLogger(__name__)

_IMMUTABLE_MARKER = "immutable:"


class StartupError(RuntimeError):
    """Raised when a SQLAlchemy unit of work is used before initialisation."""


@dataclass(slots=True)
class _AdapterState:
    _engine: Engine | None = None
    _session_factory: sessionmaker[Session] | None = None

    @property
    def engine(self) -> Engine | None:
        return self._engine

    @engine.setter
    def engine(self, value: Engine | None) -> None:
        self._session_factory = None
        self._engine = value

    @property
    def session_factory(self) -> sessionmaker[Session]:
        if self._engine is None:
            raise StartupError(
                "SQLAlchemy adapter not initialised. Call atomledger.adapters.sqlalchemy."
                "unit_of_work.startup() before requesting a unit of work."
            )
        if self._session_factory is None:
            self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        return self._session_factory


_STATE = _AdapterState()


def _enable_sqlite_foreign_keys(engine: Engine) -> None:
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:  # noqa: ANN001  # pyright: ignore[reportUnusedFunction]
        _ = connection_record
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def startup(
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    force: bool = False,
) -> None:
    """Initialise the SQLAlchemy engine, metadata, and session factory."""

    if _STATE.engine is not None and not force:
        raise StartupError(
            "SQLAlchemy adapter already initialised. Pass force=True to reconfigure."
        )

    if engine is None:
        config = get_database_config()
        engine = create_engine(database_uri or config.uri, echo=config.echo, future=True)
        _enable_sqlite_foreign_keys(engine)
    start_mappers()
    upgrade_head(engine=engine)

    _STATE.engine = engine
    log.info("Storage ready at %s", engine.url.render_as_string(hide_password=True))


def configured_engine() -> Engine | None:
    """Return the engine currently managed by the adapter (if any)."""

    return _STATE.engine


def is_started() -> bool:
    return _STATE.engine is not None


def shutdown() -> None:
    """Dispose the managed engine and reset state (primarily for tests)."""

    if _STATE.engine is not None:
        _STATE.engine.dispose()
    _STATE.engine = None


def translate_commit_error(exc: Exception) -> Exception:
    """Map a storage failure raised at commit to the domain error it represents."""

    if isinstance(exc, StaleDataError):
        return ConcurrencyConflict(f"Concurrent modification detected: {exc}")
    if isinstance(exc, IntegrityError):
        if _IMMUTABLE_MARKER in str(exc.orig):
            return ImmutabilityViolation(str(exc.orig))
        return ConcurrencyConflict(f"Conflicting write: {exc.orig}")
    return exc


class BaseSqlAlchemyUnitOfWork[TRepositories: RepositoryCollection](ABC):
    """Generic SQLAlchemy unit of work with pluggable repository collections."""

    def __init__(self) -> None:
        self.session_factory: sessionmaker[Session] = _STATE.session_factory
        self._session: Session | None = None

    @abstractmethod
    def _build_repositories(self, session: Session) -> TRepositories: ...

    def __enter__(self) -> BaseSqlAlchemyUnitOfWork[TRepositories]:
        self.session = self.session_factory()
        self._repositories = self._build_repositories(self.session)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        if exc_type is not None:
            self.rollback()
        self.session.close()
        self.session = None
        return False

    def commit(self) -> None:
        try:
            self.session.commit()
        except (StaleDataError, IntegrityError) as exc:
            self.session.rollback()
            translated = translate_commit_error(exc)
            log.warning("Commit refused: %s", translated)
            raise translated from exc

    def rollback(self) -> None:
        self.session.rollback()

    @property
    def repositories(self) -> TRepositories:
        if self._session is None:
            raise StartupError("Unit of work session not initialised")
        return self._repositories

    @property
    def session(self) -> Session:
        if self._session is None:
            raise StartupError("Unit of work session not initialised")
        return self._session

    @session.setter
    def session(self, session: Session | None) -> None:
        if self._session is not None and session is not None:
            raise StartupError("Unit of work session already initialised")
        self._session = session


class SqlAlchemyUnitOfWork(BaseSqlAlchemyUnitOfWork[LedgerRepositories]):
    """Unit of work spanning runs, atoms, commitments, and drift."""

    def _build_repositories(self, session: Session) -> LedgerRepositories:
        return LedgerRepositories(
            manifests=SqlAlchemyManifestRepository(session),
            runs=SqlAlchemyRunRepository(session),
            run_events=SqlAlchemyRunEventRepository(session),
            snapshots=SqlAlchemyPhaseSnapshotRepository(session),
            atoms=SqlAlchemyAtomRepository(session),
            molecules=SqlAlchemyMoleculeRepository(session),
            commitments=SqlAlchemyCommitmentRepository(session),
            drift=SqlAlchemyDriftDebtRepository(session),
        )


if TYPE_CHECKING:
    from atomledger.domain.ports.unit_of_work import LedgerUnitOfWork

    _uow_check: LedgerUnitOfWork = SqlAlchemyUnitOfWork()
