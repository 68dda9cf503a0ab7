"""Pydantic settings for Change Log Service behavior."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator

from packages.rewind_shared.config import RewindSettings, resolve_component_settings
from services.state.change_log.component import SERVICE_COMPONENT_ID


class ChangeLogSettings(BaseModel):
    """Change Log Service runtime behavior settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_undo_count: int = Field(default=10, gt=0)
    clamp_excess_undo_count: bool = True
    history_default_limit: int = Field(default=50, gt=0)
    history_max_limit: int = Field(default=500, gt=0)
    verify_expected_state: bool = False

    @model_validator(mode="after")
    def _validate_history_limits(self) -> "ChangeLogSettings":
        """Keep the default history page within the hard maximum."""
        if self.history_default_limit > self.history_max_limit:
            raise ValueError("history_default_limit must be <= history_max_limit")
        return self


def resolve_change_log_settings(settings: RewindSettings) -> ChangeLogSettings:
    """Resolve settings from ``components.service.change_log``."""
    return resolve_component_settings(
        settings=settings,
        component_id=SERVICE_COMPONENT_ID,
        model=ChangeLogSettings,
    )
