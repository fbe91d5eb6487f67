"""SQLAlchemy mapping metadata for the atom ledger domain model."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import UTC, datetime
from enum import StrEnum
from functools import cache
from typing import TYPE_CHECKING, Any, Final, cast

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Dialect,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
    event,
    inspect,
    orm,
)
from sqlalchemy.orm import configure_mappers, relationship

from atomledger.domain.errors import ImmutabilityViolation
from atomledger.domain.model import (
    Atom,
    AtomOrigin,
    AtomStatus,
    AttestationType,
    CanonicalAtomSnapshot,
    Commitment,
    CommitmentStatus,
    DriftDebtItem,
    DriftSeverity,
    DriftStatus,
    DriftType,
    EvidenceInventory,
    ExceptionLane,
    InvariantCheckResult,
    ManifestStatus,
    Molecule,
    PhaseSnapshot,
    ReconciliationRun,
    RepoManifest,
    RunError,
    RunEvent,
    RunEventKind,
    RunMode,
    RunOptions,
    RunPhase,
    RunStatus,
    origin_from_payload,
    origin_to_payload,
)

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection
    from sqlalchemy.orm import Mapper

log = logging.getLogger(__name__)

UUIDColumnType = Uuid[uuid.UUID]


def canonical_dumps(value: object) -> str:
    """Stable JSON text: sorted keys, no insignificant whitespace."""

    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


class JSONText(TypeDecorator[Any]):
    """Plain JSON document stored as canonical text."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Dialect) -> str | None:
        _ = dialect
        if value is None:
            return None
        return canonical_dumps(self.dump(value))

    def process_result_value(self, value: str | None, dialect: Dialect) -> Any:
        _ = dialect
        if value is None:
            return None
        return self.load(json.loads(value))

    def dump(self, value: Any) -> Any:
        return value

    def load(self, payload: Any) -> Any:
        return payload


class UUIDListType(JSONText):
    cache_ok = True

    def dump(self, value: Any) -> Any:
        return [str(item) for item in value]

    def load(self, payload: Any) -> Any:
        return [uuid.UUID(item) for item in cast("list[str]", payload)]


class EvidenceInventoryType(JSONText):
    cache_ok = True

    def dump(self, value: Any) -> Any:
        return cast("EvidenceInventory", value).to_payload()

    def load(self, payload: Any) -> Any:
        return EvidenceInventory.from_payload(payload)


class RunOptionsType(JSONText):
    cache_ok = True

    def dump(self, value: Any) -> Any:
        return cast("RunOptions", value).to_payload()

    def load(self, payload: Any) -> Any:
        return RunOptions.from_payload(payload)


class AtomOriginType(JSONText):
    cache_ok = True

    def dump(self, value: Any) -> Any:
        return origin_to_payload(cast("AtomOrigin", value))

    def load(self, payload: Any) -> Any:
        return origin_from_payload(payload)


class CanonicalSnapshotType(JSONText):
    """Serialised atom snapshots of a commitment; the text is the hashable record."""

    cache_ok = True

    def dump(self, value: Any) -> Any:
        return [item.to_payload() for item in cast("tuple[CanonicalAtomSnapshot, ...]", value)]

    def load(self, payload: Any) -> Any:
        return tuple(CanonicalAtomSnapshot.from_payload(item) for item in payload)


class InvariantChecksType(JSONText):
    cache_ok = True

    def dump(self, value: Any) -> Any:
        return [item.to_payload() for item in cast("tuple[InvariantCheckResult, ...]", value)]

    def load(self, payload: Any) -> Any:
        return tuple(InvariantCheckResult.from_payload(item) for item in payload)


def _enum_values(enum_cls: type[StrEnum]) -> list[str]:
    return [member.value for member in enum_cls]


def _enum(enum_cls: type[StrEnum]) -> Enum:
    return Enum(
        enum_cls,
        native_enum=False,
        values_callable=_enum_values,
        length=32,
        validate_strings=True,
    )


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Manifests and runs ----------------------------------------------------------

repo_manifest_table = Table(
    "repo_manifest",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("project_id", String, nullable=False),
    Column("commit_hash", String, nullable=False),
    Column("base_commit_hash", String, nullable=True),
    Column("status", _enum(ManifestStatus), nullable=False),
    Column("structure", JSONText, nullable=False),
    Column("evidence", EvidenceInventoryType, nullable=False),
    Column("domain_concepts", JSONText, nullable=False),
    Column("health", JSONText, nullable=False),
    Column("error", Text, nullable=True),
    Column("created_at", UTCDateTime, nullable=False),
    Column("completed_at", UTCDateTime, nullable=True),
    UniqueConstraint("project_id", "commit_hash"),
)

reconciliation_run_table = Table(
    "reconciliation_run",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("project_id", String, nullable=False),
    Column("mode", _enum(RunMode), nullable=False),
    Column("source", JSONText, nullable=False),
    Column("options", RunOptionsType, nullable=False),
    Column("status", _enum(RunStatus), nullable=False),
    Column("current_phase", _enum(RunPhase), nullable=True),
    Column("attestation", _enum(AttestationType), nullable=False),
    Column("exception_lane", _enum(ExceptionLane), nullable=False),
    Column("lane_justification", Text, nullable=True),
    Column(
        "manifest_id",
        UUIDColumnType,
        ForeignKey("repo_manifest.id", ondelete="SET NULL"),
        nullable=True,
    ),
    Column("commit_hash", String, nullable=True),
    Column("inferred_atoms_count", Integer, nullable=False, default=0),
    Column("inferred_molecules_count", Integer, nullable=False, default=0),
    Column("pending_review", JSONText, nullable=True),
    Column("last_error", Text, nullable=True),
    Column("recovered_from_id", UUIDColumnType, nullable=True),
    Column("recovered_by_id", UUIDColumnType, nullable=True),
    Column("created_at", UTCDateTime, nullable=False),
    Column("updated_at", UTCDateTime, nullable=False),
    Column("completed_at", UTCDateTime, nullable=True),
    Index("ix_reconciliation_run_status", "status"),
)

run_error_table = Table(
    "run_error",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column(
        "run_id",
        UUIDColumnType,
        ForeignKey("reconciliation_run.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("sequence", Integer, nullable=False),
    Column("phase", _enum(RunPhase), nullable=True),
    Column("kind", String, nullable=False),
    Column("message", Text, nullable=False),
    Column("critical", Boolean, nullable=False, default=False),
    Column("occurred_at", UTCDateTime, nullable=False),
    UniqueConstraint("run_id", "sequence"),
)

run_event_table = Table(
    "run_event",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column(
        "run_id",
        UUIDColumnType,
        ForeignKey("reconciliation_run.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("sequence", Integer, nullable=False),
    Column("kind", _enum(RunEventKind), nullable=False),
    Column("status", _enum(RunStatus), nullable=False),
    Column("phase", _enum(RunPhase), nullable=True),
    Column("atoms_count", Integer, nullable=False, default=0),
    Column("molecules_count", Integer, nullable=False, default=0),
    Column("payload", JSONText, nullable=False),
    Column("emitted_at", UTCDateTime, nullable=False),
    UniqueConstraint("run_id", "sequence"),
)

phase_snapshot_table = Table(
    "phase_snapshot",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column(
        "run_id",
        UUIDColumnType,
        ForeignKey("reconciliation_run.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("phase", _enum(RunPhase), nullable=False),
    Column("manifest_id", UUIDColumnType, nullable=True),
    Column("payload", JSONText, nullable=False),
    Column("created_at", UTCDateTime, nullable=False),
    Index("ix_phase_snapshot_run_id", "run_id"),
)

# Atoms, molecules, commitments -------------------------------------------------

atom_table = Table(
    "atom",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("atom_id", String, nullable=False, unique=True),
    Column("description", Text, nullable=False),
    Column("category", String, nullable=False),
    Column("origin", AtomOriginType, nullable=False),
    Column("observable_outcomes", JSONText, nullable=False),
    Column("quality_score", Float, nullable=True),
    Column("confidence", Float, nullable=True),
    Column("status", _enum(AtomStatus), nullable=False),
    Column("project_id", String, nullable=True),
    Column("source_test_file", String, nullable=True),
    Column("source_test_name", String, nullable=True),
    Column("tags", JSONText, nullable=False),
    Column("created_at", UTCDateTime, nullable=False),
    Column("committed_at", UTCDateTime, nullable=True),
    Column("version", Integer, nullable=False),
    Index("ix_atom_project_status", "project_id", "status"),
)

molecule_table = Table(
    "molecule",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("molecule_id", String, nullable=False, unique=True),
    Column("name", String, nullable=False),
    Column("description", Text, nullable=False),
    Column("atom_ids", UUIDListType, nullable=False),
    Column("lens_type", String, nullable=False),
    Column("confidence", Float, nullable=False),
    Column("degraded", Boolean, nullable=False, default=False),
    Column("project_id", String, nullable=True),
    Column("source_run_id", UUIDColumnType, nullable=True),
    Column("created_at", UTCDateTime, nullable=False),
    Column(
        "parent_id",
        UUIDColumnType,
        ForeignKey("molecule.id", ondelete="SET NULL"),
        key="_parent_id",
        nullable=True,
    ),
)

commitment_table = Table(
    "commitment",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("commitment_id", String, nullable=False, unique=True),
    Column("committed_by", String, nullable=False),
    Column("project_id", String, nullable=True),
    Column("atom_ids", UUIDListType, nullable=False),
    Column("canonical_json", CanonicalSnapshotType, key="_canonical_json", nullable=False),
    Column("invariant_checks", InvariantChecksType, nullable=False),
    Column("override_justification", Text, nullable=True),
    Column("supersedes", UUIDColumnType, ForeignKey("commitment.id"), nullable=True),
    Column("superseded_by", UUIDColumnType, nullable=True),
    Column("supersession_reason", Text, nullable=True),
    Column("status", _enum(CommitmentStatus), nullable=False),
    Column("committed_at", UTCDateTime, nullable=False),
    Column("version", Integer, nullable=False),
)

# Drift -------------------------------------------------------------------------

drift_debt_table = Table(
    "drift_debt",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("project_id", String, nullable=True),
    Column("drift_type", _enum(DriftType), nullable=False),
    Column("description", Text, nullable=False),
    Column("severity", _enum(DriftSeverity), nullable=False),
    Column("due_at", UTCDateTime, nullable=False),
    Column("detected_by_run_id", UUIDColumnType, nullable=False),
    Column("file_path", String, nullable=True),
    Column("test_name", String, nullable=True),
    Column("atom_id", String, nullable=True),
    Column("status", _enum(DriftStatus), nullable=False),
    Column("exception_lane", _enum(ExceptionLane), nullable=False),
    Column("lane_justification", Text, nullable=True),
    Column("detected_at", UTCDateTime, nullable=False),
    Column("last_confirmed_at", UTCDateTime, nullable=False),
    Column("last_confirmed_by_run_id", UUIDColumnType, nullable=True),
    Column("confirmation_count", Integer, nullable=False, default=1),
    Column("age_days", Integer, nullable=False, default=0),
    Column("resolved_at", UTCDateTime, nullable=True),
    Column("resolved_by_run_id", UUIDColumnType, nullable=True),
    Column("acknowledged_by", String, nullable=True),
    Column("acknowledgement_comment", Text, nullable=True),
    Column("waiver_justification", Text, nullable=True),
    Index("ix_drift_debt_project_status", "project_id", "status"),
)

# Storage-level immutability (SQLite) -------------------------------------------

_LOCKED_ATOM = "OLD.status IN ('committed', 'superseded')"

SQLITE_IMMUTABILITY_TRIGGERS: Final[dict[str, str]] = {
    "trg_commitment_no_delete": """
        CREATE TRIGGER trg_commitment_no_delete
        BEFORE DELETE ON commitment
        BEGIN
            SELECT RAISE(ABORT, 'immutable: commitments cannot be deleted');
        END
    """,
    "trg_commitment_frozen": """
        CREATE TRIGGER trg_commitment_frozen
        BEFORE UPDATE ON commitment
        WHEN NEW.canonical_json IS NOT OLD.canonical_json
            OR NEW.commitment_id IS NOT OLD.commitment_id
            OR NEW.committed_by IS NOT OLD.committed_by
            OR NEW.committed_at IS NOT OLD.committed_at
            OR NEW.atom_ids IS NOT OLD.atom_ids
            OR NEW.invariant_checks IS NOT OLD.invariant_checks
            OR (OLD.superseded_by IS NOT NULL AND NEW.superseded_by IS NOT OLD.superseded_by)
        BEGIN
            SELECT RAISE(ABORT, 'immutable: committed snapshot cannot change');
        END
    """,
    "trg_atom_locked_no_delete": f"""
        CREATE TRIGGER trg_atom_locked_no_delete
        BEFORE DELETE ON atom
        WHEN {_LOCKED_ATOM}
        BEGIN
            SELECT RAISE(ABORT, 'immutable: committed atoms cannot be deleted');
        END
    """,
    "trg_atom_locked_frozen": f"""
        CREATE TRIGGER trg_atom_locked_frozen
        BEFORE UPDATE ON atom
        WHEN {_LOCKED_ATOM} AND (
            NEW.atom_id IS NOT OLD.atom_id
            OR NEW.description IS NOT OLD.description
            OR NEW.category IS NOT OLD.category
            OR NEW.observable_outcomes IS NOT OLD.observable_outcomes
            OR NEW.quality_score IS NOT OLD.quality_score
            OR NEW.tags IS NOT OLD.tags
            OR NEW.status = 'draft'
            OR (OLD.status = 'superseded' AND NEW.status IS NOT OLD.status)
        )
        BEGIN
            SELECT RAISE(ABORT, 'immutable: committed atom content cannot change');
        END
    """,
}


# ORM-level guards --------------------------------------------------------------

_MUTABLE_COMMITMENT_FIELDS: Final[frozenset[str]] = frozenset(
    {"status", "superseded_by", "version"}
)
_MUTABLE_LOCKED_ATOM_FIELDS: Final[frozenset[str]] = frozenset({"status", "version"})


def _changed_fields(target: object) -> set[str]:
    state = inspect(target)
    return {attr.key for attr in state.attrs if attr.history.has_changes()}


def _loaded_value(target: object, key: str) -> object:
    history = inspect(target).attrs[key].history
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return getattr(target, key)


def _guard_commitment_update(mapper: Mapper[Any], connection: Connection, target: Any) -> None:
    _ = (mapper, connection)
    commitment = cast("Commitment", target)
    changed = _changed_fields(commitment) - _MUTABLE_COMMITMENT_FIELDS
    if changed:
        raise ImmutabilityViolation(
            f"Commitment {commitment.commitment_id} is immutable; refused change to "
            f"{', '.join(sorted(changed))}"
        )
    if _loaded_value(commitment, "status") is CommitmentStatus.SUPERSEDED:
        raise ImmutabilityViolation(
            f"Commitment {commitment.commitment_id} was already superseded"
        )


def _guard_commitment_delete(mapper: Mapper[Any], connection: Connection, target: Any) -> None:
    _ = (mapper, connection)
    raise ImmutabilityViolation(
        f"Commitment {cast('Commitment', target).commitment_id} cannot be deleted"
    )


def _guard_atom_update(mapper: Mapper[Any], connection: Connection, target: Any) -> None:
    _ = (mapper, connection)
    atom = cast("Atom", target)
    previous = _loaded_value(atom, "status")
    if previous is AtomStatus.DRAFT:
        return
    changed = _changed_fields(atom) - _MUTABLE_LOCKED_ATOM_FIELDS
    if atom.status is AtomStatus.DRAFT or (
        previous is AtomStatus.SUPERSEDED and atom.status is not AtomStatus.SUPERSEDED
    ):
        changed.add("status")
    if changed:
        raise ImmutabilityViolation(
            f"Atom {atom.atom_id} is {previous}; refused change to {', '.join(sorted(changed))}"
        )


def _guard_atom_delete(mapper: Mapper[Any], connection: Connection, target: Any) -> None:
    _ = (mapper, connection)
    atom = cast("Atom", target)
    if _loaded_value(atom, "status") is not AtomStatus.DRAFT:
        raise ImmutabilityViolation(f"Atom {atom.atom_id} is committed and cannot be deleted")


@cache
def start_mappers() -> orm.registry:
    """Configure imperative mappings between domain classes and tables."""

    mapper_registry.map_imperatively(RepoManifest, repo_manifest_table)

    mapper_registry.map_imperatively(RunError, run_error_table)

    mapper_registry.map_imperatively(
        ReconciliationRun,
        reconciliation_run_table,
        properties={
            "_errors": relationship(
                RunError,
                cascade="all, delete-orphan",
                lazy="selectin",
                order_by=run_error_table.c.sequence,
            ),
        },
    )

    mapper_registry.map_imperatively(RunEvent, run_event_table)
    mapper_registry.map_imperatively(PhaseSnapshot, phase_snapshot_table)

    mapper_registry.map_imperatively(
        Atom,
        atom_table,
        version_id_col=atom_table.c.version,
    )

    mapper_registry.map_imperatively(Molecule, molecule_table)

    mapper_registry.map_imperatively(
        Commitment,
        commitment_table,
        version_id_col=commitment_table.c.version,
    )

    mapper_registry.map_imperatively(DriftDebtItem, drift_debt_table)

    event.listen(Commitment, "before_update", _guard_commitment_update)
    event.listen(Commitment, "before_delete", _guard_commitment_delete)
    event.listen(Atom, "before_update", _guard_atom_update)
    event.listen(Atom, "before_delete", _guard_atom_delete)

    configure_mappers()
    log.debug("Mapped %s tables", len(mapper_registry.metadata.tables))
    return mapper_registry
