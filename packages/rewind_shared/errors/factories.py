"""One constructor per error category, so call sites never pick a category by hand."""

from __future__ import annotations

from typing import Mapping

from . import codes
from .types import ErrorCategory, ErrorDetail

Metadata = Mapping[str, object] | None


def _detail(
    category: ErrorCategory,
    message: str,
    *,
    code: str,
    retryable: bool = False,
    metadata: Metadata = None,
) -> ErrorDetail:
    stringified = {str(key): str(value) for key, value in (metadata or {}).items()}
    return ErrorDetail(
        code=code,
        message=message,
        category=category,
        retryable=retryable,
        metadata=stringified,
    )


def validation_error(
    message: str, *, code: str = codes.VALIDATION_ERROR, metadata: Metadata = None
) -> ErrorDetail:
    return _detail(ErrorCategory.VALIDATION, message, code=code, metadata=metadata)


def not_found_error(
    message: str, *, code: str = codes.NOT_FOUND, metadata: Metadata = None
) -> ErrorDetail:
    return _detail(ErrorCategory.NOT_FOUND, message, code=code, metadata=metadata)


def conflict_error(
    message: str, *, code: str = codes.CONFLICT, metadata: Metadata = None
) -> ErrorDetail:
    return _detail(ErrorCategory.CONFLICT, message, code=code, metadata=metadata)


def dependency_error(
    message: str,
    *,
    code: str = codes.DEPENDENCY_FAILURE,
    retryable: bool = True,
    metadata: Metadata = None,
) -> ErrorDetail:
    """Database and other external failures; retryable unless told otherwise."""
    return _detail(
        ErrorCategory.DEPENDENCY,
        message,
        code=code,
        retryable=retryable,
        metadata=metadata,
    )


def internal_error(
    message: str, *, code: str = codes.INTERNAL_ERROR, metadata: Metadata = None
) -> ErrorDetail:
    return _detail(ErrorCategory.INTERNAL, message, code=code, metadata=metadata)
