"""Change Log Service: record mutations and undo an actor's latest changes."""

from services.state.change_log.component import SERVICE_COMPONENT_ID
from services.state.change_log.domain import (
    ConflictReport,
    HealthStatus,
    LogEntry,
    OperationKind,
    Snapshot,
    UndoResult,
)
from services.state.change_log.service import (
    ChangeLogService,
    build_change_log_service,
)

__all__ = [
    "SERVICE_COMPONENT_ID",
    "ChangeLogService",
    "ConflictReport",
    "HealthStatus",
    "LogEntry",
    "OperationKind",
    "Snapshot",
    "UndoResult",
    "build_change_log_service",
]
