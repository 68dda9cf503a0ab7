"""Typed result envelope and its builders.

A Rewind service call never raises for expected failures. It answers with an
``Envelope`` whose ``errors`` explain what went wrong and whose payload, when
present, carries whatever progress was made (an undo run stopped by a
conflict still reports the entries it consumed).
"""

from __future__ import annotations

from typing import Generic, Iterable, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from packages.rewind_shared.errors import ErrorDetail

from .meta import EnvelopeMeta

T = TypeVar("T")


class Payload(BaseModel, Generic[T]):
    """Boxed result value, so ``None`` payloads stay distinguishable."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    value: T


class Envelope(BaseModel, Generic[T]):
    model_config = ConfigDict(frozen=True)

    metadata: EnvelopeMeta
    payload: Payload[T] | None
    errors: list[ErrorDetail] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def has_payload(self) -> bool:
        return self.payload is not None

    @property
    def error_codes(self) -> list[str]:
        """Return error codes in reported order."""
        return [error.code for error in self.errors]


def success(*, meta: EnvelopeMeta, payload: T) -> Envelope[T]:
    """Wrap a completed result."""
    return Envelope[T](metadata=meta, payload=Payload[T](value=payload))


def failure(
    *,
    meta: EnvelopeMeta,
    errors: Iterable[ErrorDetail],
    payload: T | None = None,
) -> Envelope[T]:
    """Wrap one or more errors, optionally with a partial-progress payload."""
    boxed = None if payload is None else Payload[T](value=payload)
    return Envelope[T](metadata=meta, payload=boxed, errors=list(errors))
