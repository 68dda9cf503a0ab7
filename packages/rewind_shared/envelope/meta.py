"""Envelope metadata: who asked, on whose behalf, and within which trace."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict


class EnvelopeKind(str, Enum):
    """Intent of the call that produced an envelope."""

    UNSPECIFIED = "unspecified"
    COMMAND = "command"
    QUERY = "query"
    RESULT = "result"


class EnvelopeMeta(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    envelope_id: str
    trace_id: str
    parent_id: str
    timestamp: datetime
    kind: EnvelopeKind
    source: str
    principal: str


_REQUIRED_TEXT_FIELDS = ("envelope_id", "trace_id", "source", "principal")


def new_meta(
    *,
    kind: EnvelopeKind,
    source: str,
    principal: str,
    trace_id: str | None = None,
    parent_id: str = "",
    envelope_id: str | None = None,
    timestamp: datetime | None = None,
) -> EnvelopeMeta:
    """Build metadata, minting ids and stamping the current UTC time as needed.

    A missing ``trace_id`` starts a new trace rooted at this envelope.
    """
    minted_id = envelope_id or uuid4().hex
    if timestamp is None:
        stamped = datetime.now(UTC)
    elif timestamp.tzinfo is None:
        stamped = timestamp.replace(tzinfo=UTC)
    else:
        stamped = timestamp.astimezone(UTC)
    return EnvelopeMeta(
        envelope_id=minted_id,
        trace_id=trace_id or uuid4().hex,
        parent_id=parent_id,
        timestamp=stamped,
        kind=kind,
        source=source,
        principal=principal,
    )


def validate_meta(meta: EnvelopeMeta) -> None:
    """Raise ``ValueError`` naming the first unusable metadata field."""
    for name in _REQUIRED_TEXT_FIELDS:
        if not str(getattr(meta, name)).strip():
            raise ValueError(f"metadata.{name} is required")
    if meta.kind == EnvelopeKind.UNSPECIFIED:
        raise ValueError("metadata.kind must be specified")
