"""Inverse-operation builder for change log entries.

Each inverse is built from whitelisted ``EntitySpec`` objects and applied
with SQLAlchemy Core statements, so no stored identifier reaches SQL
unchecked.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from services.state.change_log.domain import LogEntry, OperationKind, Snapshot
from services.state.change_log.errors import ConflictError, UnknownEntityError
from services.state.change_log.schema_guard import EntitySpec, SchemaGuard
from services.state.change_log.snapshot import SnapshotCodec


@dataclass(frozen=True)
class DeleteRow:
    """Undo an insert by removing the inserted row."""

    spec: EntitySpec
    entity_id: Any
    expected: Mapping[str, Any] | None = None

    def apply(self, session: Session) -> None:
        if self.expected is not None:
            _verify_expected(session, self.spec, self.entity_id, self.expected)
        try:
            result = session.execute(
                delete(self.spec.table).where(self.spec.identity == self.entity_id)
            )
        except IntegrityError as exc:
            raise _conflict(
                self.spec, self.entity_id, f"store refused the delete: {_cause(exc)}"
            ) from exc
        if int(result.rowcount or 0) == 0:
            raise _conflict(self.spec, self.entity_id, "row no longer exists")


@dataclass(frozen=True)
class RestoreFields:
    """Undo an update by writing back the captured prior values."""

    spec: EntitySpec
    entity_id: Any
    values: Mapping[str, Any] = field(default_factory=dict)
    expected: Mapping[str, Any] | None = None

    def apply(self, session: Session) -> None:
        if self.expected is not None:
            _verify_expected(session, self.spec, self.entity_id, self.expected)
        if not self.values:
            if _current_row(session, self.spec, self.entity_id, ()) is None:
                raise _conflict(self.spec, self.entity_id, "row no longer exists")
            return
        try:
            result = session.execute(
                update(self.spec.table)
                .where(self.spec.identity == self.entity_id)
                .values(_column_values(self.spec, self.values))
            )
        except IntegrityError as exc:
            raise _conflict(
                self.spec, self.entity_id, f"store rejected restored values: {_cause(exc)}"
            ) from exc
        if int(result.rowcount or 0) == 0:
            raise _conflict(self.spec, self.entity_id, "row no longer exists")


@dataclass(frozen=True)
class ReinsertRow:
    """Undo a delete by re-creating the row under its original identity."""

    spec: EntitySpec
    entity_id: Any
    values: Mapping[str, Any] = field(default_factory=dict)

    def apply(self, session: Session) -> None:
        if _current_row(session, self.spec, self.entity_id, ()) is not None:
            raise _conflict(self.spec, self.entity_id, "row with this identity exists")
        row = _column_values(self.spec, self.values)
        row[self.spec.identity] = self.entity_id
        try:
            session.execute(insert(self.spec.table).values(row))
        except IntegrityError as exc:
            raise _conflict(
                self.spec, self.entity_id, f"store rejected reinsert: {_cause(exc)}"
            ) from exc


InverseOp = DeleteRow | RestoreFields | ReinsertRow


def build_inverse(
    entry: LogEntry,
    *,
    guard: SchemaGuard,
    codec: SnapshotCodec,
    verify_expected_state: bool = False,
) -> InverseOp:
    """Return the operation that undoes ``entry``.

    Raises ``UnknownEntityError`` (or its ``UnknownFieldError`` subclass) when
    the entry names an identifier outside the whitelist.
    """
    spec = guard.entity(entry.entity_type)
    entity_id = guard.coerce_entity_id(entry.entity_type, entry.entity_id)
    kind = entry.operation_kind

    if kind == OperationKind.INSERT:
        return DeleteRow(
            spec=spec,
            entity_id=entity_id,
            expected=_expected(entry, codec, verify_expected_state),
        )
    if kind == OperationKind.UPDATE:
        return RestoreFields(
            spec=spec,
            entity_id=entity_id,
            values=_decoded(entry, entry.prior_state, codec),
            expected=_expected(entry, codec, verify_expected_state),
        )
    if kind == OperationKind.DELETE:
        return ReinsertRow(
            spec=spec,
            entity_id=entity_id,
            values=_decoded(entry, entry.prior_state, codec),
        )
    raise ValueError(f"unhandled operation kind: {kind}")


def _decoded(
    entry: LogEntry, snapshot: Snapshot | None, codec: SnapshotCodec
) -> dict[str, Any]:
    if snapshot is None:
        raise UnknownEntityError(
            entry.entity_type,
            message=f"{entry.operation_kind} entry {entry.id} has no captured state",
            entry_id=entry.id,
        )
    if snapshot.entity_type != entry.entity_type:
        raise UnknownEntityError(
            snapshot.entity_type,
            message=(
                f"entry {entry.id} snapshot is tagged {snapshot.entity_type}, "
                f"expected {entry.entity_type}"
            ),
            entry_id=entry.id,
        )
    return codec.decode(snapshot)


def _expected(
    entry: LogEntry, codec: SnapshotCodec, verify: bool
) -> dict[str, Any] | None:
    if not verify:
        return None
    return _decoded(entry, entry.new_state, codec)


def _column_values(spec: EntitySpec, values: Mapping[str, Any]) -> dict[Any, Any]:
    return {spec.column(name): value for name, value in values.items()}


def _current_row(
    session: Session, spec: EntitySpec, entity_id: Any, names: tuple[str, ...]
) -> Mapping[str, Any] | None:
    columns = [spec.identity, *(spec.column(name) for name in names)]
    return (
        session.execute(
            select(*columns).where(spec.identity == entity_id).with_for_update()
        )
        .mappings()
        .one_or_none()
    )


def _verify_expected(
    session: Session,
    spec: EntitySpec,
    entity_id: Any,
    expected: Mapping[str, Any],
) -> None:
    """Require the row's captured fields to still hold the recorded values."""
    names = tuple(sorted(expected))
    row = _current_row(session, spec, entity_id, names)
    if row is None:
        raise _conflict(spec, entity_id, "row no longer exists")
    drifted = [name for name in names if row[name] != expected[name]]
    if drifted:
        raise _conflict(
            spec,
            entity_id,
            f"row changed since it was recorded: {', '.join(drifted)}",
        )


def _conflict(spec: EntitySpec, entity_id: Any, reason: str) -> ConflictError:
    return ConflictError(reason, entity_type=spec.entity_type, entity_id=entity_id)


def _cause(exc: IntegrityError) -> str:
    return type(exc.orig).__name__ if exc.orig is not None else type(exc).__name__
