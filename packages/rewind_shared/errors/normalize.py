"""Last-resort mapping from builtin exceptions to ``ErrorDetail``.

Components translate their own exception types first (the change log maps
its domain errors, the SQL substrate maps driver errors) and only hand
leftovers to ``exception_to_error``.
"""

from __future__ import annotations

from typing import Callable

from . import codes
from .factories import dependency_error, internal_error, not_found_error, validation_error
from .types import ErrorDetail

_Factory = Callable[..., ErrorDetail]

# First match wins.
_BUILTIN_MAPPINGS: tuple[tuple[type[Exception], _Factory, str, str], ...] = (
    (ValueError, validation_error, codes.INVALID_ARGUMENT, "invalid argument"),
    (KeyError, not_found_error, codes.RESOURCE_NOT_FOUND, "resource not found"),
    (TimeoutError, dependency_error, codes.DEPENDENCY_TIMEOUT, "dependency timeout"),
    (
        ConnectionError,
        dependency_error,
        codes.DEPENDENCY_UNAVAILABLE,
        "dependency unavailable",
    ),
)


def exception_to_error(exc: Exception) -> ErrorDetail:
    """Map ``exc`` onto the first matching builtin category, else internal."""
    metadata = {"exception_type": type(exc).__name__}
    for exc_type, factory, code, fallback in _BUILTIN_MAPPINGS:
        if isinstance(exc, exc_type):
            return factory(str(exc) or fallback, code=code, metadata=metadata)
    return internal_error(
        str(exc) or "unexpected exception",
        code=codes.UNEXPECTED_EXCEPTION,
        metadata=metadata,
    )
