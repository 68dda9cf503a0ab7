"""create change log table"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def _snapshot_type() -> sa.types.TypeEngine:
    return sa.JSON(none_as_null=True).with_variant(
        postgresql.JSONB(none_as_null=True), "postgresql"
    )


def upgrade() -> None:
    """Create the change log table and its actor/recency indexes."""
    op.create_table(
        "change_log",
        sa.Column(
            "id",
            sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
            primary_key=True,
            autoincrement=True,
            nullable=False,
        ),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("operation_kind", sa.String(length=16), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=255), nullable=False),
        sa.Column("prior_state", _snapshot_type(), nullable=True),
        sa.Column("new_state", _snapshot_type(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "rolled_back",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("rolled_back_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "operation_kind IN ('insert', 'update', 'delete')",
            name="ck_change_log_operation_kind",
        ),
        sa.CheckConstraint(
            "(operation_kind = 'insert' AND prior_state IS NULL AND new_state IS NOT NULL)"
            " OR (operation_kind = 'update' AND prior_state IS NOT NULL"
            " AND new_state IS NOT NULL)"
            " OR (operation_kind = 'delete' AND prior_state IS NOT NULL"
            " AND new_state IS NULL)",
            name="ck_change_log_state_shape",
        ),
    )
    op.create_index(
        "ix_change_log_actor_created",
        "change_log",
        ["actor_id", "created_at", "id"],
    )
    op.create_index(
        "ix_change_log_actor_rolled_back",
        "change_log",
        ["actor_id", "rolled_back"],
    )


def downgrade() -> None:
    """Drop the change log table and its indexes."""
    op.drop_index("ix_change_log_actor_rolled_back", table_name="change_log")
    op.drop_index("ix_change_log_actor_created", table_name="change_log")
    op.drop_table("change_log")
