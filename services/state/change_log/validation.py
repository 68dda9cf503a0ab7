"""Pydantic request-validation models for the Change Log Service API."""

from __future__ import annotations

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StrictStr,
    ValidationInfo,
    field_validator,
)

from services.state.change_log.domain import OperationKind


class _ValidationModel(BaseModel):
    """Base request model with strict shape semantics."""

    model_config = ConfigDict(frozen=True, extra="forbid")


class ActorRequest(_ValidationModel):
    """Validated request shape for operations scoped to one actor."""

    actor_id: str

    @field_validator("actor_id")
    @classmethod
    def _require_text(cls, value: str, info: ValidationInfo) -> str:
        """Require non-blank identifiers and strip surrounding whitespace."""
        normalized = value.strip()
        if normalized == "":
            raise ValueError(f"{info.field_name} is required")
        return normalized


class RecordRequest(ActorRequest):
    """Validated standalone record request."""

    kind: OperationKind
    entity_type: str
    entity_id: StrictStr | StrictInt

    @field_validator("entity_type")
    @classmethod
    def _require_entity_type(cls, value: str, info: ValidationInfo) -> str:
        normalized = value.strip()
        if normalized == "":
            raise ValueError(f"{info.field_name} is required")
        return normalized

    @field_validator("entity_id")
    @classmethod
    def _require_entity_id(cls, value: str | int, info: ValidationInfo) -> str | int:
        if isinstance(value, str) and value.strip() == "":
            raise ValueError(f"{info.field_name} is required")
        return value


class HistoryRequest(ActorRequest):
    """Validated per-actor history request."""

    limit: StrictInt = Field(gt=0)


class RecentRequest(_ValidationModel):
    """Validated global recent-feed request."""

    limit: StrictInt = Field(gt=0)


class UndoRequest(ActorRequest):
    """Validated undo request; the upper bound is applied by the service."""

    count: StrictInt = Field(ge=1)
