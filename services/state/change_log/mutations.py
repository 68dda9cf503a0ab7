"""Tracked mutations: host writes that record themselves in the same session."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from sqlalchemy import delete, insert, select, update
from sqlalchemy.orm import Session

from services.state.change_log.domain import LogEntry, OperationKind
from services.state.change_log.errors import ConflictError, InvalidLogShapeError
from services.state.change_log.recorder import ChangeRecorder
from services.state.change_log.schema_guard import EntitySpec, SchemaGuard
from services.state.change_log.snapshot import SnapshotCodec


class TrackedMutations:
    """Recorder handle bound to one ambient session and one actor.

    Every method mutates a whitelisted entity and appends the matching log
    entry through the same session. Committing stays with the caller, so the
    mutation and its log entry land or vanish together.
    """

    def __init__(
        self,
        *,
        session: Session,
        actor_id: str,
        recorder: ChangeRecorder,
        guard: SchemaGuard,
        codec: SnapshotCodec,
    ) -> None:
        if actor_id is None or str(actor_id).strip() == "":
            raise InvalidLogShapeError("actor_id is required")
        self._session = session
        self._actor_id = str(actor_id).strip()
        self._recorder = recorder
        self._guard = guard
        self._codec = codec

    @property
    def actor_id(self) -> str:
        return self._actor_id

    def insert(self, entity_type: str, values: Mapping[str, Any]) -> LogEntry:
        """Insert one row and record it; identity is store-assigned if omitted."""
        spec = self._guard.entity(entity_type)
        self._guard.require_fields(
            entity_type, (name for name in values if name != spec.identity_column)
        )
        result = self._session.execute(insert(spec.table).values(dict(values)))
        entity_id = values.get(spec.identity_column)
        if entity_id is None:
            entity_id = result.inserted_primary_key[0]

        row = self._read_row(spec, entity_id, tuple(sorted(spec.fields)))
        if row is None:
            raise ConflictError(
                "inserted row could not be read back",
                entity_type=entity_type,
                entity_id=entity_id,
            )
        return self._recorder.record(
            self._session,
            actor_id=self._actor_id,
            kind=OperationKind.INSERT,
            entity_type=entity_type,
            entity_id=entity_id,
            new_state=self._codec.encode(entity_type, row),
        )

    def update(
        self, entity_type: str, entity_id: object, changes: Mapping[str, Any]
    ) -> LogEntry:
        """Update whitelisted fields and record exactly those fields."""
        if not changes:
            raise InvalidLogShapeError(
                "update requires at least one changed field",
                metadata={"entity_type": entity_type},
            )
        spec = self._guard.require_fields(entity_type, changes)
        identity = self._guard.coerce_entity_id(entity_type, entity_id)
        names = tuple(sorted(changes))

        prior = self._require_row(spec, identity, names)
        self._session.execute(
            update(spec.table)
            .where(spec.identity == identity)
            .values({spec.column(name): changes[name] for name in names})
        )
        after = self._require_row(spec, identity, names)
        return self._recorder.record(
            self._session,
            actor_id=self._actor_id,
            kind=OperationKind.UPDATE,
            entity_type=entity_type,
            entity_id=identity,
            prior_state=self._codec.encode(entity_type, prior),
            new_state=self._codec.encode(entity_type, after),
        )

    def delete(self, entity_type: str, entity_id: object) -> LogEntry:
        """Delete one row and record its full whitelisted state."""
        spec = self._guard.entity(entity_type)
        identity = self._guard.coerce_entity_id(entity_type, entity_id)

        prior = self._require_row(spec, identity, tuple(sorted(spec.fields)))
        self._session.execute(delete(spec.table).where(spec.identity == identity))
        return self._recorder.record(
            self._session,
            actor_id=self._actor_id,
            kind=OperationKind.DELETE,
            entity_type=entity_type,
            entity_id=identity,
            prior_state=self._codec.encode(entity_type, prior),
        )

    def _read_row(
        self, spec: EntitySpec, identity: Any, names: tuple[str, ...]
    ) -> dict[str, Any] | None:
        columns = [spec.column(name) for name in names] or [spec.identity]
        row = (
            self._session.execute(select(*columns).where(spec.identity == identity))
            .mappings()
            .one_or_none()
        )
        return None if row is None else dict(row)

    def _require_row(
        self, spec: EntitySpec, identity: Any, names: tuple[str, ...]
    ) -> dict[str, Any]:
        row = self._read_row(spec, identity, names)
        if row is None:
            raise ConflictError(
                "row does not exist",
                entity_type=spec.entity_type,
                entity_id=identity,
            )
        return row
