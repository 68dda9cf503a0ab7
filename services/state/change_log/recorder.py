"""Change recorder: one immutable log entry per mutating operation."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, Callable

from sqlalchemy.orm import Session

from packages.rewind_shared.logging import fields, get_logger, log_context
from services.state.change_log.domain import (
    LogEntry,
    LogEntryDraft,
    OperationKind,
    Snapshot,
)
from services.state.change_log.errors import InvalidLogShapeError
from services.state.change_log.interfaces import ChangeLogRepository
from services.state.change_log.schema_guard import SchemaGuard
from services.state.change_log.snapshot import SnapshotCodec

_LOGGER = get_logger(__name__)

Clock = Callable[[], datetime]
StateInput = Snapshot | Mapping[str, Any] | None


def utc_clock() -> datetime:
    return datetime.now(UTC)


class ChangeRecorder:
    """Validate and append log entries inside the caller's transaction."""

    def __init__(
        self,
        *,
        guard: SchemaGuard,
        codec: SnapshotCodec,
        repository: ChangeLogRepository,
        clock: Clock = utc_clock,
    ) -> None:
        self._guard = guard
        self._codec = codec
        self._repository = repository
        self._clock = clock

    def record(
        self,
        session: Session,
        *,
        actor_id: str,
        kind: OperationKind | str,
        entity_type: str,
        entity_id: object,
        prior_state: StateInput = None,
        new_state: StateInput = None,
    ) -> LogEntry:
        """Append one entry describing a mutation already applied in ``session``.

        States may be given as ``Snapshot`` objects or as plain field maps;
        plain maps are checked strictly against the whitelist before encoding.
        The session is flushed but never committed here.
        """
        if actor_id is None or str(actor_id).strip() == "":
            raise InvalidLogShapeError("actor_id is required")
        operation_kind = _coerce_kind(kind)
        self._guard.entity(entity_type)
        coerced_id = self._guard.coerce_entity_id(entity_type, entity_id)

        prior = self._snapshot(entity_type, prior_state, label="prior_state")
        new = self._snapshot(entity_type, new_state, label="new_state")
        _check_shape(operation_kind, prior=prior, new=new)

        draft = LogEntryDraft(
            actor_id=str(actor_id).strip(),
            operation_kind=operation_kind,
            entity_type=entity_type,
            entity_id=str(coerced_id),
            prior_state=prior,
            new_state=new,
            created_at=normalize_utc(self._clock()),
        )
        entry_id = self._repository.append(session, draft)
        entry = LogEntry(id=entry_id, **draft.model_dump())
        with log_context(
            {
                fields.ACTOR_ID: entry.actor_id,
                fields.ENTRY_ID: entry.id,
                fields.OPERATION_KIND: entry.operation_kind.value,
                fields.ENTITY_TYPE: entry.entity_type,
                fields.ENTITY_ID: entry.entity_id,
            }
        ):
            _LOGGER.debug("Recorded change log entry")
        return entry

    def _snapshot(
        self, entity_type: str, state: StateInput, *, label: str
    ) -> Snapshot | None:
        if state is None:
            return None
        if isinstance(state, Snapshot):
            if state.entity_type != entity_type:
                raise InvalidLogShapeError(
                    f"{label} is tagged {state.entity_type}, expected {entity_type}",
                    metadata={"entity_type": entity_type},
                )
            self._guard.require_fields(entity_type, state.fields)
            return state
        self._guard.require_fields(entity_type, state.keys())
        return self._codec.encode(entity_type, state)


def _coerce_kind(kind: OperationKind | str) -> OperationKind:
    try:
        return OperationKind(kind)
    except ValueError:
        raise InvalidLogShapeError(
            f"unsupported operation kind: {kind}", metadata={"kind": kind}
        ) from None


def _check_shape(
    kind: OperationKind, *, prior: Snapshot | None, new: Snapshot | None
) -> None:
    """Enforce state presence per operation kind."""
    needs_prior = kind in (OperationKind.UPDATE, OperationKind.DELETE)
    needs_new = kind in (OperationKind.INSERT, OperationKind.UPDATE)
    if needs_prior != (prior is not None):
        verb = "requires" if needs_prior else "must not carry"
        raise InvalidLogShapeError(
            f"{kind} {verb} prior_state", metadata={"kind": kind.value}
        )
    if needs_new != (new is not None):
        verb = "requires" if needs_new else "must not carry"
        raise InvalidLogShapeError(
            f"{kind} {verb} new_state", metadata={"kind": kind.value}
        )


def normalize_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
