"""Snapshot codec: entity rows to tagged, restorable field maps and back."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from services.state.change_log.domain import (
    Snapshot,
    TaggedValue,
    ValueTag,
)
from services.state.change_log.errors import InvalidLogShapeError
from services.state.change_log.schema_guard import SchemaGuard


class SnapshotCodec:
    """Encode and decode snapshots restricted to the guard's whitelist."""

    def __init__(self, guard: SchemaGuard) -> None:
        self._guard = guard

    def encode(self, entity_type: str, row: Mapping[str, Any]) -> Snapshot:
        """Capture the whitelisted fields of ``row``.

        Columns outside the whitelist, including the identity column, are
        dropped rather than rejected.
        """
        spec = self._guard.entity(entity_type)
        return Snapshot(
            entity_type=entity_type,
            fields={
                name: encode_value(value)
                for name, value in row.items()
                if name in spec.fields
            },
        )

    def decode(self, snapshot: Snapshot) -> dict[str, Any]:
        """Return native field values after checking every identifier."""
        self._guard.require_fields(snapshot.entity_type, snapshot.fields)
        return {name: decode_value(value) for name, value in snapshot.fields.items()}


def encode_value(value: Any) -> TaggedValue:
    """Tag one Python value; unsupported types fall back to text."""
    if value is None:
        return TaggedValue(tag=ValueTag.NULL)
    if isinstance(value, bool):
        return TaggedValue(tag=ValueTag.BOOL, value=value)
    if isinstance(value, int):
        return TaggedValue(tag=ValueTag.INT, value=value)
    if isinstance(value, float):
        return TaggedValue(tag=ValueTag.FLOAT, value=repr(value))
    if isinstance(value, Decimal):
        return TaggedValue(tag=ValueTag.DECIMAL, value=str(value))
    # datetime is a date subclass.
    if isinstance(value, datetime):
        return TaggedValue(tag=ValueTag.DATETIME, value=value.isoformat())
    if isinstance(value, date):
        return TaggedValue(tag=ValueTag.DATE, value=value.isoformat())
    return TaggedValue(tag=ValueTag.TEXT, value=str(value))


def decode_value(tagged: TaggedValue) -> Any:
    """Rebuild the native Python value for one tagged value."""
    tag = tagged.tag
    raw = tagged.value
    if tag == ValueTag.NULL:
        return None
    if raw is None:
        raise InvalidLogShapeError(f"{tag} value is missing")
    try:
        if tag == ValueTag.BOOL:
            return _require(raw, bool)
        if tag == ValueTag.INT:
            return _require(raw, int)
        if tag == ValueTag.FLOAT:
            return float(_require(raw, str))
        if tag == ValueTag.DECIMAL:
            return Decimal(_require(raw, str))
        if tag == ValueTag.TEXT:
            return _require(raw, str)
        if tag == ValueTag.DATE:
            return date.fromisoformat(_require(raw, str))
        if tag == ValueTag.DATETIME:
            return datetime.fromisoformat(_require(raw, str))
    except (ValueError, InvalidOperation):
        raise InvalidLogShapeError(
            f"{tag} value is malformed", metadata={"value": raw}
        ) from None
    raise InvalidLogShapeError(f"unsupported value tag: {tag}")


def _require(raw: object, kind: type) -> Any:
    # bool is an int subclass; keep the two tags apart.
    if not isinstance(raw, kind) or (kind is int and isinstance(raw, bool)):
        raise ValueError(f"expected {kind.__name__}")
    return raw
