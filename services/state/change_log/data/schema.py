"""SQLAlchemy table definitions owned by the Change Log Service."""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    false,
)
from sqlalchemy.dialects.postgresql import JSONB

metadata = MetaData()

_SNAPSHOT = JSON(none_as_null=True).with_variant(
    JSONB(none_as_null=True), "postgresql"
)

change_log = Table(
    "change_log",
    metadata,
    Column(
        "id",
        BigInteger().with_variant(Integer(), "sqlite"),
        primary_key=True,
        autoincrement=True,
    ),
    Column("actor_id", String(255), nullable=False),
    Column("operation_kind", String(16), nullable=False),
    Column("entity_type", String(64), nullable=False),
    Column("entity_id", String(255), nullable=False),
    Column("prior_state", _SNAPSHOT, nullable=True),
    Column("new_state", _SNAPSHOT, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("rolled_back", Boolean, nullable=False, server_default=false()),
    Column("rolled_back_at", DateTime(timezone=True), nullable=True),
    CheckConstraint(
        "operation_kind IN ('insert', 'update', 'delete')",
        name="ck_change_log_operation_kind",
    ),
    CheckConstraint(
        "(operation_kind = 'insert' AND prior_state IS NULL AND new_state IS NOT NULL)"
        " OR (operation_kind = 'update' AND prior_state IS NOT NULL"
        " AND new_state IS NOT NULL)"
        " OR (operation_kind = 'delete' AND prior_state IS NOT NULL"
        " AND new_state IS NULL)",
        name="ck_change_log_state_shape",
    ),
    Index("ix_change_log_actor_created", "actor_id", "created_at", "id"),
    Index("ix_change_log_actor_rolled_back", "actor_id", "rolled_back"),
)
