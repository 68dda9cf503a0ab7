"""Shared fixtures for Change Log Service tests over in-memory SQLite."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import create_engine, event, insert
from sqlalchemy.pool import StaticPool

from packages.rewind_shared.envelope import EnvelopeKind, new_meta
from resources.substrates.postgres import create_session_factory
from services.state.change_log.catalog import (
    build_tracker_guard,
    projects,
    tracker_metadata,
)
from services.state.change_log.data import SqlChangeLogRepository, metadata
from services.state.change_log.executor import UndoExecutor
from services.state.change_log.recorder import ChangeRecorder
from services.state.change_log.snapshot import SnapshotCodec


class StepClock:
    """Deterministic clock advancing one second per reading."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 10, 18, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        value = self.current
        self.current = value + timedelta(seconds=1)
        return value


@pytest.fixture()
def engine():
    """Single-connection SQLite engine with tracker and change log tables."""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record) -> None:
        del connection_record
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    tracker_metadata.create_all(engine)
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture()
def guard():
    return build_tracker_guard()


@pytest.fixture()
def codec(guard):
    return SnapshotCodec(guard)


@pytest.fixture()
def repository(session_factory):
    return SqlChangeLogRepository(session_factory)


@pytest.fixture()
def clock():
    return StepClock()


@pytest.fixture()
def recorder(guard, codec, repository, clock):
    return ChangeRecorder(guard=guard, codec=codec, repository=repository, clock=clock)


@pytest.fixture()
def executor(session_factory, repository, guard, codec, clock):
    return UndoExecutor(
        session_factory=session_factory,
        repository=repository,
        guard=guard,
        codec=codec,
        max_undo_count=10,
        clock=clock,
    )


@pytest.fixture()
def project_id(session_factory) -> int:
    """Insert one untracked project row and return its id."""
    with session_factory() as session:
        result = session.execute(insert(projects).values(name="Apollo"))
        session.commit()
        return int(result.inserted_primary_key[0])


@pytest.fixture()
def meta():
    return new_meta(kind=EnvelopeKind.COMMAND, source="test", principal="operator")
