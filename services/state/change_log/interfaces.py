"""Protocol interfaces used by the Change Log Service."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from sqlalchemy.orm import Session

from services.state.change_log.domain import LogEntry, LogEntryDraft


class ChangeLogRepository(Protocol):
    """Append-only ordered store of change log entries.

    Methods taking a ``session`` join the caller's transaction and never
    commit. The others manage their own short read transaction.
    """

    def append(self, session: Session, draft: LogEntryDraft) -> int:
        """Persist one entry and return its assigned id."""

    def select_undoable(
        self, session: Session, *, actor_id: str, count: int
    ) -> list[LogEntry]:
        """Return up to ``count`` active entries for an actor, newest first."""

    def mark_rolled_back(
        self, session: Session, *, entry_id: int, at: datetime
    ) -> None:
        """Flip one entry to rolled back or raise ``AlreadyRolledBackError``."""

    def list_by_actor(self, *, actor_id: str, limit: int) -> list[LogEntry]:
        """Return an actor's full history, newest first."""

    def list_recent(self, *, limit: int) -> list[LogEntry]:
        """Return the newest entries across all actors."""

    def get(self, *, entry_id: int) -> LogEntry | None:
        """Read one entry by id."""
