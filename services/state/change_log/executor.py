"""Undo executor: revert an actor's newest active entries, newest first."""

from __future__ import annotations

from sqlalchemy.orm import Session, sessionmaker

from packages.rewind_shared.logging import fields, get_logger, log_context
from resources.substrates.postgres import transactional_session
from resources.substrates.postgres.errors import normalize_postgres_error
from services.state.change_log.domain import (
    ConflictReport,
    LogEntry,
    OperationKind,
    UndoResult,
)
from services.state.change_log.errors import (
    AlreadyRolledBackError,
    ChangeLogError,
    ConflictError,
    InvalidLogShapeError,
    InvalidUndoCountError,
    UnknownEntityError,
    UnreadableEntryError,
)
from services.state.change_log.interfaces import ChangeLogRepository
from services.state.change_log.inverse import build_inverse
from services.state.change_log.recorder import Clock, normalize_utc, utc_clock
from services.state.change_log.schema_guard import SchemaGuard
from services.state.change_log.snapshot import SnapshotCodec

_LOGGER = get_logger(__name__)


class UndoExecutor:
    """Apply inverse operations one entry per transaction.

    Each entry is claimed through the store's conditional ``rolled_back``
    update before its inverse runs, both inside one transaction. Losing the
    claim to a concurrent caller skips the entry. A conflict or an integrity
    failure stops the run and leaves that entry and all older ones active.
    """

    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session],
        repository: ChangeLogRepository,
        guard: SchemaGuard,
        codec: SnapshotCodec,
        max_undo_count: int = 10,
        verify_expected_state: bool = False,
        clock: Clock = utc_clock,
    ) -> None:
        self._session_factory = session_factory
        self._repository = repository
        self._guard = guard
        self._codec = codec
        self._max_undo_count = max_undo_count
        self._verify_expected_state = verify_expected_state
        self._clock = clock

    @property
    def max_undo_count(self) -> int:
        return self._max_undo_count

    def undo(self, actor_id: str, count: int) -> UndoResult:
        """Undo up to ``count`` of the actor's newest active entries."""
        if (
            isinstance(count, bool)
            or not isinstance(count, int)
            or not 1 <= count <= self._max_undo_count
        ):
            raise InvalidUndoCountError(count, max_count=self._max_undo_count)

        unreadable: UnreadableEntryError | None = None
        with transactional_session(self._session_factory) as session:
            try:
                entries = self._repository.select_undoable(
                    session, actor_id=actor_id, count=count
                )
            except UnreadableEntryError as exc:
                entries = exc.readable
                unreadable = exc

        consumed: list[LogEntry] = []
        skipped: list[int] = []
        conflict: ConflictReport | None = None
        for entry in entries:
            try:
                consumed.append(self._undo_entry(entry))
            except AlreadyRolledBackError:
                skipped.append(entry.id)
                with log_context({fields.ENTRY_ID: entry.id}):
                    _LOGGER.debug("Skipped entry consumed by a concurrent undo")
            except (ConflictError, UnknownEntityError, InvalidLogShapeError) as exc:
                conflict = _report(entry, exc)
                _log_stop(actor_id, conflict)
                break
            except Exception as exc:  # noqa: BLE001
                conflict = _store_failure_report(entry, exc)
                _log_stop(actor_id, conflict, exc_info=exc)
                break
        else:
            if unreadable is not None:
                conflict = _unreadable_report(unreadable)
                _log_stop(actor_id, conflict)

        with log_context({fields.ACTOR_ID: actor_id}):
            _LOGGER.info(
                "Undo finished: requested=%d selected=%d consumed=%d skipped=%d "
                "conflict=%s",
                count,
                len(entries),
                len(consumed),
                len(skipped),
                conflict is not None,
            )
        return UndoResult(
            actor_id=actor_id,
            requested=count,
            consumed=consumed,
            skipped_entry_ids=skipped,
            conflict=conflict,
        )

    def _undo_entry(self, entry: LogEntry) -> LogEntry:
        """Claim and revert one entry in a single transaction."""
        rolled_back_at = normalize_utc(self._clock())
        with transactional_session(self._session_factory) as session:
            self._repository.mark_rolled_back(
                session, entry_id=entry.id, at=rolled_back_at
            )
            inverse = build_inverse(
                entry,
                guard=self._guard,
                codec=self._codec,
                verify_expected_state=self._verify_expected_state,
            )
            inverse.apply(session)
        with log_context(
            {
                fields.ENTRY_ID: entry.id,
                fields.OPERATION_KIND: entry.operation_kind.value,
                fields.ENTITY_TYPE: entry.entity_type,
                fields.ENTITY_ID: entry.entity_id,
            }
        ):
            _LOGGER.debug("Reverted change log entry")
        return entry.model_copy(
            update={"rolled_back": True, "rolled_back_at": rolled_back_at}
        )


def _report(entry: LogEntry, exc: ChangeLogError) -> ConflictReport:
    return ConflictReport(
        entry_id=entry.id,
        operation_kind=entry.operation_kind,
        entity_type=entry.entity_type,
        entity_id=entry.entity_id,
        code=exc.code,
        reason=exc.message,
        category=exc.category,
    )


def _store_failure_report(entry: LogEntry, exc: Exception) -> ConflictReport:
    """Attribute a failure outside the domain taxonomy to the entry being undone."""
    detail = normalize_postgres_error(exc)
    return ConflictReport(
        entry_id=entry.id,
        operation_kind=entry.operation_kind,
        entity_type=entry.entity_type,
        entity_id=entry.entity_id,
        code=detail.code,
        reason=f"{detail.message}: {type(exc).__name__}",
        category=detail.category,
    )


def _unreadable_report(exc: UnreadableEntryError) -> ConflictReport:
    try:
        kind: OperationKind | None = OperationKind(exc.operation_kind)
    except ValueError:
        kind = None
    return ConflictReport(
        entry_id=exc.entry_id,
        operation_kind=kind,
        entity_type=exc.entity_type,
        entity_id=exc.entity_id,
        code=exc.code,
        reason=exc.message,
        category=exc.category,
    )


def _log_stop(
    actor_id: str, report: ConflictReport, *, exc_info: Exception | None = None
) -> None:
    with log_context(
        {
            fields.ACTOR_ID: actor_id,
            fields.ENTRY_ID: report.entry_id,
            fields.ENTITY_TYPE: report.entity_type,
            fields.ENTITY_ID: report.entity_id,
        }
    ):
        _LOGGER.warning("Undo stopped: %s", report.reason, exc_info=exc_info)
