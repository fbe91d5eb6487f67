"""initial ledger schema

Revision ID: 0001
Revises:
Create Date: 2026-09-28

Runs, manifests, phase snapshots, atoms, molecules, commitments, and drift debt.
On SQLite the immutability triggers for commitments and committed atoms are
installed as well.
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

from atomledger.adapters.sqlalchemy.mappings import SQLITE_IMMUTABILITY_TRIGGERS

revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_ENUM = sa.String(32)
_UUID = sa.Uuid()
_TS = sa.DateTime(timezone=True)


def upgrade() -> None:
    op.create_table(
        "repo_manifest",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("project_id", sa.String(), nullable=False),
        sa.Column("commit_hash", sa.String(), nullable=False),
        sa.Column("base_commit_hash", sa.String(), nullable=True),
        sa.Column("status", _ENUM, nullable=False),
        sa.Column("structure", sa.Text(), nullable=False),
        sa.Column("evidence", sa.Text(), nullable=False),
        sa.Column("domain_concepts", sa.Text(), nullable=False),
        sa.Column("health", sa.Text(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", _TS, nullable=False),
        sa.Column("completed_at", _TS, nullable=True),
        sa.UniqueConstraint("project_id", "commit_hash", name="uq_repo_manifest_commit"),
    )

    op.create_table(
        "reconciliation_run",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("project_id", sa.String(), nullable=False),
        sa.Column("mode", _ENUM, nullable=False),
        sa.Column("source", sa.Text(), nullable=False),
        sa.Column("options", sa.Text(), nullable=False),
        sa.Column("status", _ENUM, nullable=False),
        sa.Column("current_phase", _ENUM, nullable=True),
        sa.Column("attestation", _ENUM, nullable=False),
        sa.Column("exception_lane", _ENUM, nullable=False),
        sa.Column("lane_justification", sa.Text(), nullable=True),
        sa.Column("manifest_id", _UUID, nullable=True),
        sa.Column("commit_hash", sa.String(), nullable=True),
        sa.Column("inferred_atoms_count", sa.Integer(), nullable=False),
        sa.Column("inferred_molecules_count", sa.Integer(), nullable=False),
        sa.Column("pending_review", sa.Text(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("recovered_from_id", _UUID, nullable=True),
        sa.Column("recovered_by_id", _UUID, nullable=True),
        sa.Column("created_at", _TS, nullable=False),
        sa.Column("updated_at", _TS, nullable=False),
        sa.Column("completed_at", _TS, nullable=True),
        sa.ForeignKeyConstraint(["manifest_id"], ["repo_manifest.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_reconciliation_run_status", "reconciliation_run", ["status"])

    op.create_table(
        "run_error",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("run_id", _UUID, nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("phase", _ENUM, nullable=True),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("critical", sa.Boolean(), nullable=False),
        sa.Column("occurred_at", _TS, nullable=False),
        sa.ForeignKeyConstraint(["run_id"], ["reconciliation_run.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("run_id", "sequence", name="uq_run_error_sequence"),
    )

    op.create_table(
        "run_event",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("run_id", _UUID, nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("kind", _ENUM, nullable=False),
        sa.Column("status", _ENUM, nullable=False),
        sa.Column("phase", _ENUM, nullable=True),
        sa.Column("atoms_count", sa.Integer(), nullable=False),
        sa.Column("molecules_count", sa.Integer(), nullable=False),
        sa.Column("payload", sa.Text(), nullable=False),
        sa.Column("emitted_at", _TS, nullable=False),
        sa.ForeignKeyConstraint(["run_id"], ["reconciliation_run.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("run_id", "sequence", name="uq_run_event_sequence"),
    )

    op.create_table(
        "phase_snapshot",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("run_id", _UUID, nullable=False),
        sa.Column("phase", _ENUM, nullable=False),
        sa.Column("manifest_id", _UUID, nullable=True),
        sa.Column("payload", sa.Text(), nullable=False),
        sa.Column("created_at", _TS, nullable=False),
        sa.ForeignKeyConstraint(["run_id"], ["reconciliation_run.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_phase_snapshot_run_id", "phase_snapshot", ["run_id"])

    op.create_table(
        "atom",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("atom_id", sa.String(), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("origin", sa.Text(), nullable=False),
        sa.Column("observable_outcomes", sa.Text(), nullable=False),
        sa.Column("quality_score", sa.Float(), nullable=True),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("status", _ENUM, nullable=False),
        sa.Column("project_id", sa.String(), nullable=True),
        sa.Column("source_test_file", sa.String(), nullable=True),
        sa.Column("source_test_name", sa.String(), nullable=True),
        sa.Column("tags", sa.Text(), nullable=False),
        sa.Column("created_at", _TS, nullable=False),
        sa.Column("committed_at", _TS, nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
    )
    op.create_index("ix_atom_project_status", "atom", ["project_id", "status"])

    op.create_table(
        "molecule",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("molecule_id", sa.String(), nullable=False, unique=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("atom_ids", sa.Text(), nullable=False),
        sa.Column("lens_type", sa.String(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("degraded", sa.Boolean(), nullable=False),
        sa.Column("project_id", sa.String(), nullable=True),
        sa.Column("source_run_id", _UUID, nullable=True),
        sa.Column("created_at", _TS, nullable=False),
        sa.Column("parent_id", _UUID, nullable=True),
        sa.ForeignKeyConstraint(["parent_id"], ["molecule.id"], ondelete="SET NULL"),
    )

    op.create_table(
        "commitment",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("commitment_id", sa.String(), nullable=False, unique=True),
        sa.Column("committed_by", sa.String(), nullable=False),
        sa.Column("project_id", sa.String(), nullable=True),
        sa.Column("atom_ids", sa.Text(), nullable=False),
        sa.Column("canonical_json", sa.Text(), nullable=False),
        sa.Column("invariant_checks", sa.Text(), nullable=False),
        sa.Column("override_justification", sa.Text(), nullable=True),
        sa.Column("supersedes", _UUID, nullable=True),
        sa.Column("superseded_by", _UUID, nullable=True),
        sa.Column("supersession_reason", sa.Text(), nullable=True),
        sa.Column("status", _ENUM, nullable=False),
        sa.Column("committed_at", _TS, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["supersedes"], ["commitment.id"]),
    )

    op.create_table(
        "drift_debt",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("project_id", sa.String(), nullable=True),
        sa.Column("drift_type", _ENUM, nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("severity", _ENUM, nullable=False),
        sa.Column("due_at", _TS, nullable=False),
        sa.Column("detected_by_run_id", _UUID, nullable=False),
        sa.Column("file_path", sa.String(), nullable=True),
        sa.Column("test_name", sa.String(), nullable=True),
        sa.Column("atom_id", sa.String(), nullable=True),
        sa.Column("status", _ENUM, nullable=False),
        sa.Column("exception_lane", _ENUM, nullable=False),
        sa.Column("lane_justification", sa.Text(), nullable=True),
        sa.Column("detected_at", _TS, nullable=False),
        sa.Column("last_confirmed_at", _TS, nullable=False),
        sa.Column("last_confirmed_by_run_id", _UUID, nullable=True),
        sa.Column("confirmation_count", sa.Integer(), nullable=False),
        sa.Column("age_days", sa.Integer(), nullable=False),
        sa.Column("resolved_at", _TS, nullable=True),
        sa.Column("resolved_by_run_id", _UUID, nullable=True),
        sa.Column("acknowledged_by", sa.String(), nullable=True),
        sa.Column("acknowledgement_comment", sa.Text(), nullable=True),
        sa.Column("waiver_justification", sa.Text(), nullable=True),
    )
    op.create_index("ix_drift_debt_project_status", "drift_debt", ["project_id", "status"])

    if op.get_bind().dialect.name == "sqlite":
        for ddl in SQLITE_IMMUTABILITY_TRIGGERS.values():
            op.execute(ddl)


def downgrade() -> None:
    if op.get_bind().dialect.name == "sqlite":
        for name in SQLITE_IMMUTABILITY_TRIGGERS:
            op.execute(f"DROP TRIGGER IF EXISTS {name}")
    op.drop_index("ix_drift_debt_project_status", table_name="drift_debt")
    op.drop_table("drift_debt")
    op.drop_table("commitment")
    op.drop_table("molecule")
    op.drop_index("ix_atom_project_status", table_name="atom")
    op.drop_table("atom")
    op.drop_index("ix_phase_snapshot_run_id", table_name="phase_snapshot")
    op.drop_table("phase_snapshot")
    op.drop_table("run_event")
    op.drop_table("run_error")
    op.drop_index("ix_reconciliation_run_status", table_name="reconciliation_run")
    op.drop_table("reconciliation_run")
    op.drop_table("repo_manifest")
