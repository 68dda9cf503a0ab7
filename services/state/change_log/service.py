"""Authoritative in-process Python API for the Change Log Service."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from sqlalchemy.orm import Session

from packages.rewind_shared.config import RewindSettings
from packages.rewind_shared.envelope import Envelope, EnvelopeMeta
from services.state.change_log.domain import (
    HealthStatus,
    LogEntry,
    OperationKind,
    Snapshot,
    UndoResult,
)
from services.state.change_log.mutations import TrackedMutations
from services.state.change_log.schema_guard import SchemaGuard


class ChangeLogService(ABC):
    """Public API for recording changes, reading history and undoing them."""

    @abstractmethod
    def record(
        self,
        *,
        meta: EnvelopeMeta,
        actor_id: str,
        kind: OperationKind | str,
        entity_type: str,
        entity_id: str | int,
        prior_state: Snapshot | Mapping[str, Any] | None = None,
        new_state: Snapshot | Mapping[str, Any] | None = None,
    ) -> Envelope[LogEntry]:
        """Record one change in a transaction of its own."""

    @abstractmethod
    def history(
        self, *, meta: EnvelopeMeta, actor_id: str, limit: int | None = None
    ) -> Envelope[list[LogEntry]]:
        """Return one actor's history, newest first, rolled-back entries included."""

    @abstractmethod
    def recent(
        self, *, meta: EnvelopeMeta, limit: int | None = None
    ) -> Envelope[list[LogEntry]]:
        """Return the newest entries across all actors."""

    @abstractmethod
    def undo(
        self, *, meta: EnvelopeMeta, actor_id: str, count: int
    ) -> Envelope[UndoResult]:
        """Undo the actor's ``count`` newest active entries."""

    @abstractmethod
    def health(self, *, meta: EnvelopeMeta) -> Envelope[HealthStatus]:
        """Return service and owned substrate readiness status."""

    @abstractmethod
    def tracked(self, session: Session, *, actor_id: str) -> TrackedMutations:
        """Return a recorder handle bound to the caller's session."""


def build_change_log_service(
    *,
    settings: RewindSettings,
    guard: SchemaGuard | None = None,
) -> ChangeLogService:
    """Build the default Change Log implementation from typed settings.

    ``guard`` defaults to the issue-tracker entity catalog.
    """
    from services.state.change_log.catalog import build_tracker_guard
    from services.state.change_log.implementation import DefaultChangeLogService

    return DefaultChangeLogService.from_settings(
        settings, guard=guard if guard is not None else build_tracker_guard()
    )
