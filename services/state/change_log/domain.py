"""Domain contracts for change log entries, snapshots and undo results."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr

from packages.rewind_shared.errors import ErrorCategory


class OperationKind(StrEnum):
    """Mutating operation kinds captured in the log."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class ValueTag(StrEnum):
    """Type tags that let snapshot values survive a JSON round trip."""

    NULL = "null"
    BOOL = "bool"
    INT = "int"
    FLOAT = "float"
    DECIMAL = "decimal"
    TEXT = "text"
    DATE = "date"
    DATETIME = "datetime"


class TaggedValue(BaseModel):
    """One snapshot field value with its type tag.

    ``bool`` and ``int`` values are kept native; every other non-null value is
    carried as its canonical text form.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    tag: ValueTag
    value: StrictBool | StrictInt | StrictStr | None = None


class Snapshot(BaseModel):
    """Restorable field map for one entity, tagged with its entity type."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    entity_type: str = Field(min_length=1)
    fields: dict[str, TaggedValue] = Field(default_factory=dict)

    @property
    def field_names(self) -> frozenset[str]:
        return frozenset(self.fields)


class LogEntryDraft(BaseModel):
    """Log entry content before the store assigns its identifier."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    actor_id: str
    operation_kind: OperationKind
    entity_type: str
    entity_id: str
    prior_state: Snapshot | None = None
    new_state: Snapshot | None = None
    created_at: datetime


class LogEntry(BaseModel):
    """One persisted change log entry."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: int
    actor_id: str
    operation_kind: OperationKind
    entity_type: str
    entity_id: str
    prior_state: Snapshot | None = None
    new_state: Snapshot | None = None
    created_at: datetime
    rolled_back: bool = False
    rolled_back_at: datetime | None = None


class ConflictReport(BaseModel):
    """Why an undo run stopped, and at which entry.

    ``operation_kind`` is absent when the stored entry is too damaged to
    name one. ``category`` is ``dependency`` when the store itself failed.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    entry_id: int
    operation_kind: OperationKind | None
    entity_type: str
    entity_id: str
    code: str
    reason: str
    category: ErrorCategory = ErrorCategory.CONFLICT


class UndoResult(BaseModel):
    """Outcome of one undo run for an actor."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    actor_id: str
    requested: int
    consumed: list[LogEntry] = Field(default_factory=list)
    skipped_entry_ids: list[int] = Field(default_factory=list)
    conflict: ConflictReport | None = None

    @property
    def completed(self) -> bool:
        """Return ``True`` when the run was not stopped by a conflict."""
        return self.conflict is None


class HealthStatus(BaseModel):
    """Change Log Service and owned substrate readiness status payload."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    service_ready: bool
    substrate_ready: bool
    detail: str


def snapshot_to_document(snapshot: Snapshot) -> dict[str, Any]:
    """Return the JSON document persisted for one snapshot."""
    return snapshot.model_dump(mode="json")


def snapshot_from_document(document: Mapping[str, Any]) -> Snapshot:
    """Parse one persisted snapshot document without whitelist checks."""
    return Snapshot.model_validate(dict(document))
