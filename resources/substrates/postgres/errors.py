"""SQLAlchemy/DBAPI exception normalization helpers."""

from __future__ import annotations

from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    ProgrammingError,
    SQLAlchemyError,
)

from packages.rewind_shared.errors import (
    ErrorDetail,
    codes,
    conflict_error,
    dependency_error,
    exception_to_error,
)


def normalize_postgres_error(exc: Exception) -> ErrorDetail:
    """Map low-level DB exceptions into shared structured error semantics.

    Exceptions raised outside SQLAlchemy fall back to the generic shared
    mapping.
    """
    metadata = {"exception_type": type(exc).__name__}

    if isinstance(exc, IntegrityError):
        return conflict_error(
            "store rejected the write",
            code=codes.CONFLICT,
            metadata=metadata,
        )

    if isinstance(exc, OperationalError):
        return dependency_error(
            "database unavailable",
            code=codes.DEPENDENCY_UNAVAILABLE,
            retryable=True,
            metadata=metadata,
        )

    if isinstance(exc, (InterfaceError, ProgrammingError, DBAPIError, SQLAlchemyError)):
        return dependency_error(
            "database request failed",
            code=codes.DEPENDENCY_FAILURE,
            retryable=False,
            metadata=metadata,
        )

    return exception_to_error(exc)
