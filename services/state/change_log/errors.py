"""Domain exception taxonomy for change recording and undo.

Every exception carries a shared ``ErrorCategory`` and a stable code so the
service boundary can convert it into an ``ErrorDetail`` without inspecting
messages.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

from packages.rewind_shared.errors import ErrorCategory, ErrorDetail

if TYPE_CHECKING:
    from services.state.change_log.domain import LogEntry

INVALID_LOG_SHAPE = "INVALID_LOG_SHAPE"
INVALID_UNDO_COUNT = "INVALID_UNDO_COUNT"
UNKNOWN_IDENTIFIER = "UNKNOWN_IDENTIFIER"
ALREADY_ROLLED_BACK = "ALREADY_ROLLED_BACK"
UNDO_CONFLICT = "UNDO_CONFLICT"


class ChangeLogError(Exception):
    """Base class for expected change log failures."""

    category: ErrorCategory = ErrorCategory.INTERNAL
    code: str = "CHANGE_LOG_ERROR"

    def __init__(self, message: str, *, metadata: Mapping[str, object] | None = None):
        super().__init__(message)
        self.message = message
        self.metadata = {
            str(key): str(value)
            for key, value in (metadata or {}).items()
            if value is not None
        }

    def to_error_detail(self) -> ErrorDetail:
        """Convert to the shared structured error shape."""
        return ErrorDetail(
            code=self.code,
            message=self.message,
            category=self.category,
            retryable=False,
            metadata=dict(self.metadata),
        )


class InvalidLogShapeError(ChangeLogError):
    """A log entry's fields do not match its operation kind."""

    category = ErrorCategory.VALIDATION
    code = INVALID_LOG_SHAPE


class InvalidUndoCountError(ChangeLogError):
    """Requested undo count falls outside ``1..max_undo_count``."""

    category = ErrorCategory.VALIDATION
    code = INVALID_UNDO_COUNT

    def __init__(self, count: object, *, max_count: int) -> None:
        super().__init__(
            f"undo count must be between 1 and {max_count}",
            metadata={"count": count, "max_count": max_count},
        )
        self.count = count
        self.max_count = max_count


class UnknownEntityError(ChangeLogError):
    """An entity type is not in the identifier whitelist."""

    category = ErrorCategory.NOT_FOUND
    code = UNKNOWN_IDENTIFIER

    def __init__(self, entity_type: str, *, message: str | None = None, **metadata: object):
        super().__init__(
            message or f"unknown entity type: {entity_type}",
            metadata={"entity_type": entity_type, **metadata},
        )
        self.entity_type = entity_type


class UnknownFieldError(UnknownEntityError):
    """A field name is not whitelisted for its entity type."""

    def __init__(self, entity_type: str, field_names: Iterable[str]) -> None:
        names = tuple(sorted(field_names))
        super().__init__(
            entity_type,
            message=f"unknown fields for {entity_type}: {', '.join(names)}",
            fields=",".join(names),
        )
        self.field_names = names


class AlreadyRolledBackError(ChangeLogError):
    """The entry was already consumed, usually by a concurrent undo."""

    category = ErrorCategory.CONFLICT
    code = ALREADY_ROLLED_BACK

    def __init__(self, entry_id: int) -> None:
        super().__init__(
            f"log entry {entry_id} is already rolled back",
            metadata={"entry_id": entry_id},
        )
        self.entry_id = entry_id


class ConflictError(ChangeLogError):
    """Current entity state does not admit the inverse operation."""

    category = ErrorCategory.CONFLICT
    code = UNDO_CONFLICT

    def __init__(
        self,
        reason: str,
        *,
        entity_type: str,
        entity_id: object,
        entry_id: int | None = None,
        operation_kind: str | None = None,
    ) -> None:
        super().__init__(
            reason,
            metadata={
                "entry_id": entry_id,
                "operation_kind": operation_kind,
                "entity_type": entity_type,
                "entity_id": entity_id,
            },
        )
        self.reason = reason
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.entry_id = entry_id
        self.operation_kind = operation_kind


class UnreadableEntryError(InvalidLogShapeError):
    """A stored log row cannot be parsed back into a ``LogEntry``.

    ``readable`` holds the entries read before this one in the same query,
    newest first, so an undo run can still process them.
    """

    def __init__(
        self,
        entry_id: int,
        *,
        reason: str,
        entity_type: str,
        entity_id: str,
        operation_kind: str,
    ) -> None:
        super().__init__(
            f"log entry {entry_id} is unreadable: {reason}",
            metadata={
                "entry_id": entry_id,
                "operation_kind": operation_kind,
                "entity_type": entity_type,
                "entity_id": entity_id,
            },
        )
        self.entry_id = entry_id
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.operation_kind = operation_kind
        self.readable: list[LogEntry] = []
