"""Tracked entity catalog for the issue-tracker host application.

These tables mirror the host's tracker schema. Only the entity types
registered in ``build_tracker_guard`` can be recorded or undone.
"""

from __future__ import annotations

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    func,
)

from services.state.change_log.schema_guard import EntitySpec, SchemaGuard

tracker_metadata = MetaData()

projects = Table(
    "projects",
    tracker_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("description", Text, nullable=True),
    Column("status", String(50), nullable=True, server_default="active"),
    Column("priority", String(10), nullable=True, server_default="P2"),
    Column("visibility", String(20), nullable=True, server_default="team"),
    Column("owner_id", Integer, nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
)

milestones = Table(
    "milestones",
    tracker_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "project_id",
        Integer,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("name", String(100), nullable=False),
    Column("description", Text, nullable=True),
    Column("due_date", Date, nullable=True),
    Column("status", String(50), nullable=True, server_default="active"),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
)

issues = Table(
    "issues",
    tracker_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "project_id",
        Integer,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "milestone_id",
        Integer,
        ForeignKey("milestones.id", ondelete="SET NULL"),
        nullable=True,
    ),
    Column("title", String(200), nullable=False),
    Column("description", Text, nullable=True),
    Column("status", String(50), nullable=True, server_default="backlog"),
    Column("priority", Integer, nullable=True, server_default="3"),
    Column("assignee_id", Integer, nullable=True),
    Column("reporter_id", Integer, nullable=True),
    Column("due_date", Date, nullable=True),
    Column("estimate_hours", Numeric(10, 2), nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
    CheckConstraint("priority >= 1 AND priority <= 5", name="ck_issues_priority"),
)

comments = Table(
    "comments",
    tracker_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "issue_id",
        Integer,
        ForeignKey("issues.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("user_id", Integer, nullable=True),
    Column("content", Text, nullable=False),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
)

attachments = Table(
    "attachments",
    tracker_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "issue_id",
        Integer,
        ForeignKey("issues.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("filename", String(255), nullable=False),
    Column("file_url", Text, nullable=False),
    Column("file_size", Integer, nullable=True),
    Column("mime_type", String(100), nullable=True),
    Column("uploaded_by", Integer, nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
)

labels = Table(
    "labels",
    tracker_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "project_id",
        Integer,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("name", String(50), nullable=False),
    Column("color", String(7), nullable=True, server_default="#6b7280"),
    Column("description", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
)


def build_tracker_guard() -> SchemaGuard:
    """Return the whitelist of undoable tracker entity types.

    Child foreign keys cascade on delete, so undoing a parent insert also
    removes child rows recorded by other actors. Their later undos then stop
    as conflicts on the missing row. ``verify_expected_state`` does not guard
    against this because it only compares the parent row.
    """
    return SchemaGuard(
        [
            EntitySpec.from_table("projects", projects),
            EntitySpec.from_table("milestones", milestones),
            EntitySpec.from_table("issues", issues),
            EntitySpec.from_table("comments", comments),
            EntitySpec.from_table("attachments", attachments),
            EntitySpec.from_table("labels", labels),
        ]
    )
