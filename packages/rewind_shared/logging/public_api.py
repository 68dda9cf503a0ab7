"""Composable instrumentation for public service API methods.

``public_api_instrumented`` wraps one envelope-returning method and fans
invocation/completion events out to concern hooks. Logging, OpenTelemetry
tracing and OpenTelemetry metrics are the shipped concerns.
"""

from __future__ import annotations

from contextvars import ContextVar
from dataclasses import dataclass
from functools import lru_cache, wraps
from time import perf_counter
from typing import Any, Callable, Mapping, Protocol, Sequence

from opentelemetry import metrics as otel_metrics
from opentelemetry import trace as otel_trace
from opentelemetry.trace.status import Status, StatusCode

from packages.rewind_shared.config import load_settings

from . import fields
from .context import log_context


@dataclass(frozen=True)
class InvocationContext:
    """Structured metadata describing one public API invocation."""

    component_id: str
    api_name: str
    trace_id: str | None
    envelope_id: str | None
    principal: str | None
    references: Mapping[str, str]
    source: str | None = None


@dataclass(frozen=True)
class CompletionContext:
    """Structured metadata describing one completed public API invocation."""

    invocation: InvocationContext
    success: bool
    duration_ms: float
    errors: list[str]
    error_categories: list[str]


class PublicApiInstrumentationConcern(Protocol):
    """Hook contract for one public API instrumentation concern."""

    def on_invocation(self, context: InvocationContext) -> None:
        """Handle invocation-start event for one method call."""

    def on_completion(self, context: CompletionContext) -> None:
        """Handle completion event for one method call."""


class PublicApiLoggingConcern:
    """Emit structured invocation and completion log lines."""

    def __init__(self, *, logger: Any) -> None:
        self._logger = logger

    def on_invocation(self, context: InvocationContext) -> None:
        with log_context(_invocation_log_context(context)):
            self._logger.info("Public API invocation")

    def on_completion(self, context: CompletionContext) -> None:
        payload = _invocation_log_context(context.invocation)
        payload.update(
            {
                fields.EVENT: fields.PUBLIC_API_COMPLETION_EVENT,
                fields.SUCCESS: context.success,
                fields.DURATION_MS: context.duration_ms,
                fields.ERRORS: context.errors,
            }
        )
        with log_context(payload):
            if context.success:
                self._logger.info("Public API completion")
            else:
                self._logger.warning("Public API completion")


class _CounterLike(Protocol):
    def add(self, amount: int | float, attributes: Mapping[str, str]) -> None: ...


class _HistogramLike(Protocol):
    def record(self, amount: float, attributes: Mapping[str, str]) -> None: ...


class _SpanLike(Protocol):
    def set_attribute(self, key: str, value: object) -> None: ...

    def record_exception(self, exception: Exception) -> None: ...

    def set_status(self, status: object) -> None: ...


class _SpanContextManagerLike(Protocol):
    def __enter__(self) -> _SpanLike: ...

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None: ...


class _TracerLike(Protocol):
    def start_as_current_span(self, name: str) -> _SpanContextManagerLike: ...


@dataclass(frozen=True)
class _TraceScope:
    """One in-flight span opened for a decorated invocation."""

    manager: _SpanContextManagerLike
    span: _SpanLike


class PublicApiTracingConcern:
    """Open one span per invocation and close it on completion."""

    def __init__(self, *, tracer: _TracerLike) -> None:
        self._tracer = tracer
        self._active_scopes: ContextVar[tuple[_TraceScope, ...]] = ContextVar(
            "public_api_tracing_scopes", default=()
        )

    def on_invocation(self, context: InvocationContext) -> None:
        manager = self._tracer.start_as_current_span(
            f"public_api.{context.component_id}.{context.api_name}"
        )
        span = manager.__enter__()
        span.set_attribute(fields.COMPONENT_ID, context.component_id)
        span.set_attribute(fields.API_NAME, context.api_name)
        if context.trace_id is not None:
            span.set_attribute(fields.TRACE_ID, context.trace_id)
        if context.envelope_id is not None:
            span.set_attribute(fields.ENVELOPE_ID, context.envelope_id)
        if context.principal is not None:
            span.set_attribute(fields.PRINCIPAL, context.principal)
        if context.source is not None:
            span.set_attribute(fields.SOURCE, context.source)
        for key, value in context.references.items():
            span.set_attribute(f"reference.{key}", value)

        scopes = self._active_scopes.get()
        self._active_scopes.set((*scopes, _TraceScope(manager=manager, span=span)))

    def on_completion(self, context: CompletionContext) -> None:
        scopes = self._active_scopes.get()
        if len(scopes) == 0:
            return
        scope = scopes[-1]
        self._active_scopes.set(scopes[:-1])

        scope.span.set_attribute(fields.SUCCESS, context.success)
        scope.span.set_attribute(fields.DURATION_MS, context.duration_ms)
        scope.span.set_attribute(
            fields.OUTCOME, "success" if context.success else "failure"
        )
        scope.span.set_attribute("errors.count", len(context.errors))
        if not context.success:
            scope.span.set_status(Status(StatusCode.ERROR))
            if len(context.errors) > 0:
                scope.span.record_exception(RuntimeError("; ".join(context.errors[:3])))
        scope.manager.__exit__(None, None, None)


class PublicApiMetricsConcern:
    """Record call counts, latency and error categories per invocation."""

    def __init__(
        self,
        *,
        calls_total: _CounterLike,
        duration_ms: _HistogramLike,
        errors_total: _CounterLike,
    ) -> None:
        self._calls_total = calls_total
        self._duration_ms = duration_ms
        self._errors_total = errors_total

    def on_invocation(self, context: InvocationContext) -> None:
        del context

    def on_completion(self, context: CompletionContext) -> None:
        attrs = {
            fields.COMPONENT_ID: context.invocation.component_id,
            fields.API_NAME: context.invocation.api_name,
            fields.OUTCOME: "success" if context.success else "failure",
        }
        self._calls_total.add(1, attributes=attrs)
        self._duration_ms.record(context.duration_ms, attributes=attrs)
        if context.success:
            return

        for category in context.error_categories or ["unknown"]:
            self._errors_total.add(
                1,
                attributes={
                    fields.COMPONENT_ID: context.invocation.component_id,
                    fields.API_NAME: context.invocation.api_name,
                    fields.ERROR_CATEGORY: category,
                },
            )


def public_api_instrumented(
    *,
    component_id: str,
    api_name: str | None = None,
    id_fields: tuple[str, ...] = (),
    concerns: Sequence[PublicApiInstrumentationConcern] | None = None,
    logger: Any | None = None,
    include_default_concerns: bool = True,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorate one public API method with composable instrumentation concerns.

    Keyword arguments named in ``id_fields`` are attached to logs and spans as
    references. The ``meta`` keyword argument, when it is an envelope
    metadata object, supplies trace/envelope/principal correlation.
    """

    resolved: tuple[PublicApiInstrumentationConcern, ...] = tuple(concerns or ())
    if include_default_concerns:
        resolved = (
            *resolved,
            _default_tracing_concern(),
            _default_metrics_concern(),
        )
    if logger is not None:
        resolved = (PublicApiLoggingConcern(logger=logger), *resolved)
    if len(resolved) == 0:
        raise ValueError("public_api_instrumented requires at least one concern")

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        method_name = api_name or func.__name__

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            meta = kwargs.get("meta")
            invocation = InvocationContext(
                component_id=component_id,
                api_name=method_name,
                trace_id=_attr_or_none(meta, "trace_id"),
                envelope_id=_attr_or_none(meta, "envelope_id"),
                principal=_attr_or_none(meta, "principal"),
                references={
                    name: str(kwargs[name])
                    for name in id_fields
                    if kwargs.get(name) not in (None, "")
                },
                source=_attr_or_none(meta, "source"),
            )
            _emit(resolved, "invocation", invocation, invocation, logger)

            started = perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as exc:  # noqa: BLE001
                completion = CompletionContext(
                    invocation=invocation,
                    success=False,
                    duration_ms=_elapsed_ms(started),
                    errors=[f"{type(exc).__name__}: {exc}"],
                    error_categories=["internal"],
                )
                _emit(resolved, "completion", completion, invocation, logger)
                raise

            success, errors = _result_summary(result)
            completion = CompletionContext(
                invocation=invocation,
                success=success,
                duration_ms=_elapsed_ms(started),
                errors=errors,
                error_categories=_result_error_categories(result),
            )
            _emit(resolved, "completion", completion, invocation, logger)
            return result

        return wrapper

    return decorator


def _elapsed_ms(started: float) -> float:
    return round((perf_counter() - started) * 1000.0, 3)


def _attr_or_none(obj: object | None, name: str) -> str | None:
    """Return string attribute value from object when present."""
    if obj is None:
        return None
    value = getattr(obj, name, None)
    if value in (None, ""):
        return None
    return str(value)


def _result_summary(result: object) -> tuple[bool, list[str]]:
    """Infer success and one-line error summaries from a result value."""
    errors = _sanitize_errors(getattr(result, "errors", []))
    ok_value = getattr(result, "ok", None)
    if isinstance(ok_value, bool):
        return ok_value, errors
    return len(errors) == 0, errors


def _result_error_categories(result: object) -> list[str]:
    """Infer normalized error categories from a result-like object."""
    errors_obj = getattr(result, "errors", [])
    if not isinstance(errors_obj, list):
        return []
    categories: list[str] = []
    for item in errors_obj:
        if isinstance(item, Mapping):
            category = item.get("category")
        else:
            raw = getattr(item, "category", None)
            category = getattr(raw, "value", raw)
        if category in (None, ""):
            continue
        categories.append(str(category))
    return categories


def _sanitize_errors(errors: object) -> list[str]:
    """Return safe one-line error summaries for logs."""
    if not isinstance(errors, list):
        return []
    summaries: list[str] = []
    for item in errors:
        if isinstance(item, Mapping):
            code = item.get("code")
            message = item.get("message")
        else:
            code = getattr(item, "code", None)
            message = getattr(item, "message", None)
        if message in (None, ""):
            continue
        summaries.append(str(message) if code in (None, "") else f"{code}: {message}")
    return summaries


def _invocation_log_context(context: InvocationContext) -> dict[str, object]:
    return {
        fields.EVENT: fields.PUBLIC_API_INVOCATION_EVENT,
        fields.COMPONENT_ID: context.component_id,
        fields.API_NAME: context.api_name,
        fields.TRACE_ID: context.trace_id,
        fields.ENVELOPE_ID: context.envelope_id,
        fields.PRINCIPAL: context.principal,
        fields.SOURCE: context.source,
        **context.references,
    }


def _emit(
    concerns: Sequence[PublicApiInstrumentationConcern],
    stage: str,
    context: InvocationContext | CompletionContext,
    invocation: InvocationContext,
    logger: Any | None,
) -> None:
    """Dispatch one event to every concern, isolating hook failures."""
    for concern in concerns:
        try:
            if stage == "invocation":
                concern.on_invocation(context)  # type: ignore[arg-type]
            else:
                concern.on_completion(context)  # type: ignore[arg-type]
        except Exception as exc:  # noqa: BLE001
            _log_concern_failure(
                logger=logger,
                stage=stage,
                concern=type(concern).__name__,
                exc=exc,
                invocation=invocation,
            )


def _log_concern_failure(
    *,
    logger: Any | None,
    stage: str,
    concern: str,
    exc: Exception,
    invocation: InvocationContext,
) -> None:
    """Best-effort warning log for instrumentation concern hook failures."""
    if logger is None:
        return
    with log_context(
        {
            fields.EVENT: fields.PUBLIC_API_INSTRUMENTATION_FAILURE_EVENT,
            fields.COMPONENT_ID: invocation.component_id,
            fields.API_NAME: invocation.api_name,
            fields.STAGE: stage,
            fields.CONCERN: concern,
            fields.ERRORS: [f"{type(exc).__name__}: {exc}"],
        }
    ):
        logger.warning("Public API instrumentation concern failed")


@lru_cache(maxsize=1)
def _default_tracing_concern() -> PublicApiTracingConcern:
    """Build the OTel-backed tracing concern from configured names."""
    otel = load_settings().observability.public_api.otel
    return PublicApiTracingConcern(tracer=otel_trace.get_tracer(otel.tracer_name))


@lru_cache(maxsize=1)
def _default_metrics_concern() -> PublicApiMetricsConcern:
    """Build the OTel-backed metrics concern from configured names."""
    otel = load_settings().observability.public_api.otel
    meter = otel_metrics.get_meter(otel.meter_name)
    return PublicApiMetricsConcern(
        calls_total=meter.create_counter(
            name=otel.metric_calls_total,
            description="Count of public API invocations by component/method/outcome.",
            unit="1",
        ),
        duration_ms=meter.create_histogram(
            name=otel.metric_duration_ms,
            description="Public API invocation latency in milliseconds.",
            unit="ms",
        ),
        errors_total=meter.create_counter(
            name=otel.metric_errors_total,
            description="Count of public API failures by error category.",
            unit="1",
        ),
    )
