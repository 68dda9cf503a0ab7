"""Data-layer exports for the Change Log Service."""

from services.state.change_log.data.repository import (
    SqlChangeLogRepository,
    append_entry,
    get_entry,
    mark_entry_rolled_back,
    select_undoable_entries,
)
from services.state.change_log.data.runtime import ChangeLogRuntime
from services.state.change_log.data.schema import change_log, metadata

__all__ = [
    "ChangeLogRuntime",
    "SqlChangeLogRepository",
    "append_entry",
    "change_log",
    "get_entry",
    "mark_entry_rolled_back",
    "metadata",
    "select_undoable_entries",
]
