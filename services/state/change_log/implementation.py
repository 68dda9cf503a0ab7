"""Concrete Change Log Service implementation."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Callable

from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session, sessionmaker

from packages.rewind_shared.config import RewindSettings
from packages.rewind_shared.envelope import (
    Envelope,
    EnvelopeMeta,
    failure,
    success,
    validate_meta,
)
from packages.rewind_shared.errors import (
    ErrorCategory,
    ErrorDetail,
    codes,
    dependency_error,
    validation_error,
)
from packages.rewind_shared.logging import fields, get_logger, log_context
from packages.rewind_shared.logging import public_api_instrumented
from resources.substrates.postgres import transactional_session
from resources.substrates.postgres.errors import normalize_postgres_error
from services.state.change_log.component import SERVICE_COMPONENT_ID
from services.state.change_log.config import (
    ChangeLogSettings,
    resolve_change_log_settings,
)
from services.state.change_log.data import ChangeLogRuntime, SqlChangeLogRepository
from services.state.change_log.domain import (
    ConflictReport,
    HealthStatus,
    LogEntry,
    OperationKind,
    Snapshot,
    UndoResult,
)
from services.state.change_log.errors import ChangeLogError
from services.state.change_log.executor import UndoExecutor
from services.state.change_log.interfaces import ChangeLogRepository
from services.state.change_log.mutations import TrackedMutations
from services.state.change_log.recorder import ChangeRecorder, Clock, utc_clock
from services.state.change_log.schema_guard import SchemaGuard
from services.state.change_log.service import ChangeLogService
from services.state.change_log.snapshot import SnapshotCodec
from services.state.change_log.validation import (
    HistoryRequest,
    RecentRequest,
    RecordRequest,
    UndoRequest,
)

_LOGGER = get_logger(__name__)


class DefaultChangeLogService(ChangeLogService):
    """Default change log implementation over a SQL store."""

    def __init__(
        self,
        *,
        settings: ChangeLogSettings,
        session_factory: sessionmaker[Session],
        guard: SchemaGuard,
        repository: ChangeLogRepository | None = None,
        executor: UndoExecutor | None = None,
        substrate_probe: Callable[[], bool] | None = None,
        clock: Clock = utc_clock,
    ) -> None:
        self._settings = settings
        self._session_factory = session_factory
        self._guard = guard
        self._codec = SnapshotCodec(guard)
        self._repository = repository or SqlChangeLogRepository(session_factory)
        self._recorder = ChangeRecorder(
            guard=guard,
            codec=self._codec,
            repository=self._repository,
            clock=clock,
        )
        self._executor = executor or UndoExecutor(
            session_factory=session_factory,
            repository=self._repository,
            guard=guard,
            codec=self._codec,
            max_undo_count=settings.max_undo_count,
            verify_expected_state=settings.verify_expected_state,
            clock=clock,
        )
        self._substrate_probe = substrate_probe

    @classmethod
    def from_settings(
        cls, settings: RewindSettings, *, guard: SchemaGuard
    ) -> "DefaultChangeLogService":
        """Build the service and its database runtime from typed settings."""
        runtime = ChangeLogRuntime.from_settings(settings)
        return cls(
            settings=resolve_change_log_settings(settings),
            session_factory=runtime.session_factory,
            guard=guard,
            substrate_probe=runtime.is_healthy,
        )

    @property
    def codec(self) -> SnapshotCodec:
        return self._codec

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=SERVICE_COMPONENT_ID,
        id_fields=("actor_id", "entity_type", "entity_id"),
    )
    def record(
        self,
        *,
        meta: EnvelopeMeta,
        actor_id: str,
        kind: OperationKind | str,
        entity_type: str,
        entity_id: str | int,
        prior_state: Snapshot | Mapping[str, Any] | None = None,
        new_state: Snapshot | Mapping[str, Any] | None = None,
    ) -> Envelope[LogEntry]:
        """Record one change in a standalone transaction."""
        request, errors = self._validate_request(
            meta=meta,
            model=RecordRequest,
            payload={
                "actor_id": actor_id,
                "kind": kind,
                "entity_type": entity_type,
                "entity_id": entity_id,
            },
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert isinstance(request, RecordRequest)

        try:
            with transactional_session(self._session_factory) as session:
                entry = self._recorder.record(
                    session,
                    actor_id=request.actor_id,
                    kind=request.kind,
                    entity_type=request.entity_type,
                    entity_id=request.entity_id,
                    prior_state=prior_state,
                    new_state=new_state,
                )
        except ChangeLogError as exc:
            return failure(meta=meta, errors=[exc.to_error_detail()])
        except Exception as exc:  # noqa: BLE001
            return self._store_failure(meta=meta, operation="record", exc=exc)
        return success(meta=meta, payload=entry)

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=SERVICE_COMPONENT_ID,
        id_fields=("actor_id",),
    )
    def history(
        self, *, meta: EnvelopeMeta, actor_id: str, limit: int | None = None
    ) -> Envelope[list[LogEntry]]:
        """Return one actor's full history, newest first."""
        request, errors = self._validate_request(
            meta=meta,
            model=HistoryRequest,
            payload={
                "actor_id": actor_id,
                "limit": self._settings.history_default_limit
                if limit is None
                else limit,
            },
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert isinstance(request, HistoryRequest)
        limit_errors = self._check_limit(request.limit)
        if limit_errors:
            return failure(meta=meta, errors=limit_errors)

        try:
            entries = self._repository.list_by_actor(
                actor_id=request.actor_id, limit=request.limit
            )
        except ChangeLogError as exc:
            return failure(meta=meta, errors=[exc.to_error_detail()])
        except Exception as exc:  # noqa: BLE001
            return self._store_failure(meta=meta, operation="history", exc=exc)
        return success(meta=meta, payload=entries)

    @public_api_instrumented(logger=_LOGGER, component_id=SERVICE_COMPONENT_ID)
    def recent(
        self, *, meta: EnvelopeMeta, limit: int | None = None
    ) -> Envelope[list[LogEntry]]:
        """Return the newest entries across all actors."""
        request, errors = self._validate_request(
            meta=meta,
            model=RecentRequest,
            payload={
                "limit": self._settings.history_default_limit
                if limit is None
                else limit
            },
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert isinstance(request, RecentRequest)
        limit_errors = self._check_limit(request.limit)
        if limit_errors:
            return failure(meta=meta, errors=limit_errors)

        try:
            entries = self._repository.list_recent(limit=request.limit)
        except ChangeLogError as exc:
            return failure(meta=meta, errors=[exc.to_error_detail()])
        except Exception as exc:  # noqa: BLE001
            return self._store_failure(meta=meta, operation="recent", exc=exc)
        return success(meta=meta, payload=entries)

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=SERVICE_COMPONENT_ID,
        id_fields=("actor_id", "count"),
    )
    def undo(
        self, *, meta: EnvelopeMeta, actor_id: str, count: int
    ) -> Envelope[UndoResult]:
        """Undo the actor's newest active entries.

        Counts above ``max_undo_count`` are clamped when
        ``clamp_excess_undo_count`` is set and rejected otherwise. A conflict
        yields a failed envelope that still carries the partial result.
        """
        request, errors = self._validate_request(
            meta=meta,
            model=UndoRequest,
            payload={"actor_id": actor_id, "count": count},
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert isinstance(request, UndoRequest)

        effective = request.count
        max_count = self._executor.max_undo_count
        if effective > max_count:
            if not self._settings.clamp_excess_undo_count:
                return failure(
                    meta=meta,
                    errors=[
                        validation_error(
                            f"count must be between 1 and {max_count}",
                            code=codes.INVALID_ARGUMENT,
                            metadata={"field": "count", "max_count": str(max_count)},
                        )
                    ],
                )
            with log_context({fields.ACTOR_ID: request.actor_id}):
                _LOGGER.info("Clamped undo count from %d to %d", effective, max_count)
            effective = max_count

        try:
            result = self._executor.undo(request.actor_id, effective)
        except ChangeLogError as exc:
            return failure(meta=meta, errors=[exc.to_error_detail()])
        except Exception as exc:  # noqa: BLE001
            return self._store_failure(meta=meta, operation="undo", exc=exc)

        if result.conflict is not None:
            return failure(
                meta=meta,
                errors=[_conflict_detail(result.conflict)],
                payload=result,
            )
        return success(meta=meta, payload=result)

    @public_api_instrumented(logger=_LOGGER, component_id=SERVICE_COMPONENT_ID)
    def health(self, *, meta: EnvelopeMeta) -> Envelope[HealthStatus]:
        """Return readiness based on a change log read and a substrate ping."""
        _, errors = self._validate_request(meta=meta, model=None, payload=None)
        if errors:
            return failure(meta=meta, errors=errors)

        substrate_ready = True
        if self._substrate_probe is not None:
            substrate_ready = self._substrate_probe()
        try:
            self._repository.list_recent(limit=1)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.warning(
                "health probe read failed: exception_type=%s",
                type(exc).__name__,
                exc_info=exc,
            )
            return success(
                meta=meta,
                payload=HealthStatus(
                    service_ready=False,
                    substrate_ready=substrate_ready,
                    detail=f"change log read failed: {type(exc).__name__}",
                ),
            )
        return success(
            meta=meta,
            payload=HealthStatus(
                service_ready=True,
                substrate_ready=substrate_ready,
                detail="ok" if substrate_ready else "substrate ping failed",
            ),
        )

    def tracked(self, session: Session, *, actor_id: str) -> TrackedMutations:
        """Return a recorder handle bound to ``session`` and ``actor_id``."""
        return TrackedMutations(
            session=session,
            actor_id=actor_id,
            recorder=self._recorder,
            guard=self._guard,
            codec=self._codec,
        )

    def _validate_request(
        self,
        *,
        meta: EnvelopeMeta,
        model: type[BaseModel] | None,
        payload: dict[str, Any] | None,
    ) -> tuple[BaseModel | None, list[ErrorDetail]]:
        """Validate envelope metadata and request payload model."""
        try:
            validate_meta(meta)
        except ValueError as exc:
            return None, [
                validation_error(
                    str(exc),
                    code=codes.INVALID_ARGUMENT,
                    metadata={"field": "metadata"},
                )
            ]
        if model is None:
            return None, []

        try:
            request = model.model_validate(payload or {})
        except ValidationError as exc:
            return None, [
                validation_error(
                    f"request validation failed: {err['msg']}",
                    code=codes.INVALID_ARGUMENT,
                    metadata={"field": ".".join(str(p) for p in err["loc"])},
                )
                for err in exc.errors()
            ]
        return request, []

    def _check_limit(self, limit: int) -> list[ErrorDetail]:
        if limit <= self._settings.history_max_limit:
            return []
        return [
            validation_error(
                f"limit must be <= {self._settings.history_max_limit}",
                code=codes.INVALID_ARGUMENT,
                metadata={"field": "limit"},
            )
        ]

    def _store_failure(
        self,
        *,
        meta: EnvelopeMeta,
        operation: str,
        exc: Exception,
    ) -> Envelope[Any]:
        """Map one store/runtime exception into structured envelope errors."""
        _LOGGER.warning(
            "%s failed due to dependency error: exception_type=%s",
            operation,
            type(exc).__name__,
            exc_info=exc,
        )
        if _is_postgres_error(exc):
            return failure(meta=meta, errors=[normalize_postgres_error(exc)])
        return failure(
            meta=meta,
            errors=[
                dependency_error(
                    f"{operation} failed",
                    code=codes.DEPENDENCY_FAILURE,
                    metadata={"exception_type": type(exc).__name__},
                )
            ],
        )


def _conflict_detail(report: ConflictReport) -> ErrorDetail:
    """Describe the entry an undo run stopped at."""
    metadata = {
        "entry_id": str(report.entry_id),
        "entity_type": report.entity_type,
        "entity_id": report.entity_id,
    }
    if report.operation_kind is not None:
        metadata["operation_kind"] = report.operation_kind.value
    return ErrorDetail(
        code=report.code,
        message=report.reason,
        category=report.category,
        retryable=report.category == ErrorCategory.DEPENDENCY,
        metadata=metadata,
    )


def _is_postgres_error(exc: Exception) -> bool:
    """Return whether one exception appears to originate from the SQL stack."""
    module = type(exc).__module__
    return module.startswith("sqlalchemy") or module.startswith("psycopg")
