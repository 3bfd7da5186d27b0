"""Create conflicts, conflict_audit_log and tenant_resolution_policies.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

conflict_type = sa.Enum(
    "product_data", "price_minor", "price_major", "stock_minor", "stock_major", name="conflicttype"
)
severity = sa.Enum("low", "medium", "high", name="severity")
conflict_status = sa.Enum("pending", "resolved", "ignored", name="conflictstatus")
audit_action = sa.Enum("resolved", "auto_resolved", "ignored", name="conflictauditaction")


def upgrade() -> None:
    op.create_table(
        "conflicts",
        sa.Column("id", sa.UUID(), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(100), nullable=False),
        sa.Column("field_group", sa.String(32), nullable=False),
        sa.Column("conflict_type", conflict_type, nullable=False),
        sa.Column("severity", severity, nullable=False),
        sa.Column("status", conflict_status, nullable=False, server_default="pending"),
        sa.Column("local_snapshot", postgresql.JSONB(), nullable=False),
        sa.Column("remote_snapshot", postgresql.JSONB(), nullable=False),
        sa.Column("field_deltas", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("resolution", postgresql.JSONB(), nullable=True),
        sa.Column("resolution_strategy", sa.String(32), nullable=True),
        sa.Column("resolved_by", sa.String(255), nullable=True),
        sa.Column("ignored_reason", sa.Text(), nullable=True),
        sa.Column("detected_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ignored_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_conflicts_tenant_status", "conflicts", ["tenant_id", "status"])
    op.create_index("ix_conflicts_type_severity", "conflicts", ["conflict_type", "severity"])
    op.create_index("ix_conflicts_entity", "conflicts", ["entity_type", "entity_id"])
    op.create_index("ix_conflicts_status_detected_at", "conflicts", ["status", "detected_at"])
    op.create_index(
        "uq_conflicts_pending_key",
        "conflicts",
        ["tenant_id", "entity_type", "entity_id", "field_group"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "conflict_audit_log",
        sa.Column("id", sa.UUID(), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column(
            "conflict_id",
            sa.UUID(),
            sa.ForeignKey("conflicts.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("action", audit_action, nullable=False),
        sa.Column("actor", sa.String(255), nullable=False, server_default="system"),
        sa.Column("strategy", sa.String(32), nullable=True),
        sa.Column("chosen_source", sa.String(16), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("rationale", sa.Text(), nullable=True),
        sa.Column("before_value", postgresql.JSONB(), nullable=True),
        sa.Column("after_value", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_conflict_audit_log_conflict_id", "conflict_audit_log", ["conflict_id"])
    op.create_index("ix_conflict_audit_log_tenant_created", "conflict_audit_log", ["tenant_id", "created_at"])

    op.create_table(
        "tenant_resolution_policies",
        sa.Column("tenant_id", sa.String(64), primary_key=True),
        sa.Column("policy", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("tenant_resolution_policies")
    op.drop_table("conflict_audit_log")
    op.drop_table("conflicts")
    op.execute("DROP TYPE IF EXISTS conflictauditaction")
    op.execute("DROP TYPE IF EXISTS conflictstatus")
    op.execute("DROP TYPE IF EXISTS severity")
    op.execute("DROP TYPE IF EXISTS conflicttype")
