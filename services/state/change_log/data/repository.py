"""SQL repository for change log entries.

Module-level functions operate on a caller-owned session so recording can
join the same transaction as the host mutation. ``SqlChangeLogRepository``
wraps them for callers that need a managed session.
"""

from __future__ import annotations

from contextlib import closing
from datetime import UTC, datetime
from typing import Any, Callable, Mapping, TypeVar

from pydantic import ValidationError
from sqlalchemy import insert, select, update
from sqlalchemy.orm import Session

from services.state.change_log.domain import (
    LogEntry,
    LogEntryDraft,
    OperationKind,
    snapshot_from_document,
    snapshot_to_document,
)
from services.state.change_log.errors import AlreadyRolledBackError, UnreadableEntryError
from services.state.change_log.interfaces import ChangeLogRepository

from .schema import change_log

T = TypeVar("T")


class SqlChangeLogRepository(ChangeLogRepository):
    """SQL repository over the service-owned ``change_log`` table."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def append(self, session: Session, draft: LogEntryDraft) -> int:
        return append_entry(session, draft)

    def select_undoable(
        self, session: Session, *, actor_id: str, count: int
    ) -> list[LogEntry]:
        return select_undoable_entries(session, actor_id=actor_id, count=count)

    def mark_rolled_back(
        self, session: Session, *, entry_id: int, at: datetime
    ) -> None:
        mark_entry_rolled_back(session, entry_id=entry_id, at=at)

    def list_by_actor(self, *, actor_id: str, limit: int) -> list[LogEntry]:
        def handler(session: Session) -> list[LogEntry]:
            stmt = (
                select(change_log)
                .where(change_log.c.actor_id == actor_id)
                .order_by(change_log.c.created_at.desc(), change_log.c.id.desc())
                .limit(limit)
            )
            return [_to_entry(row) for row in session.execute(stmt).mappings()]

        return self._execute(handler)

    def list_recent(self, *, limit: int) -> list[LogEntry]:
        def handler(session: Session) -> list[LogEntry]:
            stmt = (
                select(change_log)
                .order_by(change_log.c.created_at.desc(), change_log.c.id.desc())
                .limit(limit)
            )
            return [_to_entry(row) for row in session.execute(stmt).mappings()]

        return self._execute(handler)

    def get(self, *, entry_id: int) -> LogEntry | None:
        def handler(session: Session) -> LogEntry | None:
            return get_entry(session, entry_id=entry_id)

        return self._execute(handler)

    def _execute(self, handler: Callable[[Session], T]) -> T:
        """Execute repository work inside a managed session."""
        with closing(self._session_factory()) as session:
            try:
                result = handler(session)
                session.commit()
            except Exception:
                session.rollback()
                raise
        return result


def append_entry(session: Session, draft: LogEntryDraft) -> int:
    """Insert one entry using an existing session and return its id."""
    result = session.execute(
        insert(change_log).values(
            actor_id=draft.actor_id,
            operation_kind=draft.operation_kind.value,
            entity_type=draft.entity_type,
            entity_id=draft.entity_id,
            prior_state=_document_or_none(draft.prior_state),
            new_state=_document_or_none(draft.new_state),
            created_at=_to_utc(draft.created_at),
            rolled_back=False,
        )
    )
    return int(result.inserted_primary_key[0])


def select_undoable_entries(
    session: Session, *, actor_id: str, count: int
) -> list[LogEntry]:
    """Return the newest ``count`` active entries for one actor."""
    stmt = (
        select(change_log)
        .where(
            change_log.c.actor_id == actor_id,
            change_log.c.rolled_back.is_(False),
        )
        .order_by(change_log.c.created_at.desc(), change_log.c.id.desc())
        .limit(count)
    )
    entries: list[LogEntry] = []
    for row in session.execute(stmt).mappings():
        try:
            entries.append(_to_entry(row))
        except UnreadableEntryError as exc:
            exc.readable = entries
            raise
    return entries


def mark_entry_rolled_back(session: Session, *, entry_id: int, at: datetime) -> None:
    """Conditionally flip ``rolled_back``; zero matched rows means lost race."""
    result = session.execute(
        update(change_log)
        .where(
            change_log.c.id == entry_id,
            change_log.c.rolled_back.is_(False),
        )
        .values(rolled_back=True, rolled_back_at=_to_utc(at))
    )
    if int(result.rowcount or 0) != 1:
        raise AlreadyRolledBackError(entry_id)


def get_entry(session: Session, *, entry_id: int) -> LogEntry | None:
    """Read one entry by id using an existing session."""
    row = (
        session.execute(select(change_log).where(change_log.c.id == entry_id))
        .mappings()
        .one_or_none()
    )
    return None if row is None else _to_entry(row)


def _document_or_none(snapshot: Any) -> dict[str, Any] | None:
    return None if snapshot is None else snapshot_to_document(snapshot)


def _to_entry(row: Mapping[str, Any]) -> LogEntry:
    """Map one SQL row to a strict domain log entry.

    Raises ``UnreadableEntryError`` naming the row when a stored value no
    longer parses.
    """
    try:
        return _parse_entry(row)
    except (TypeError, ValueError) as exc:
        raise UnreadableEntryError(
            int(row["id"]),
            reason=_unreadable_reason(exc),
            entity_type=str(row["entity_type"]),
            entity_id=str(row["entity_id"]),
            operation_kind=str(row["operation_kind"]),
        ) from exc


def _parse_entry(row: Mapping[str, Any]) -> LogEntry:
    prior = row["prior_state"]
    new = row["new_state"]
    return LogEntry(
        id=int(row["id"]),
        actor_id=str(row["actor_id"]),
        operation_kind=OperationKind(row["operation_kind"]),
        entity_type=str(row["entity_type"]),
        entity_id=str(row["entity_id"]),
        prior_state=None if prior is None else snapshot_from_document(prior),
        new_state=None if new is None else snapshot_from_document(new),
        created_at=_row_dt(row, "created_at"),
        rolled_back=bool(row["rolled_back"]),
        rolled_back_at=(
            None if row.get("rolled_back_at") is None else _row_dt(row, "rolled_back_at")
        ),
    )


def _unreadable_reason(exc: Exception) -> str:
    if not isinstance(exc, ValidationError):
        return str(exc) or type(exc).__name__
    first = exc.errors()[0]
    message = str(first.get("msg", "invalid value"))
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {message}" if location else message


def _row_dt(row: Mapping[str, Any], column: str) -> datetime:
    """Read and normalize one timezone-aware datetime field from SQL row."""
    value = row.get(column)
    if not isinstance(value, datetime):
        raise ValueError(f"expected datetime column for {column}")
    return _to_utc(value)


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
