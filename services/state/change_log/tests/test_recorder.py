"""Tests for validating and appending change log entries."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from sqlalchemy import func, select

from services.state.change_log.data import change_log
from services.state.change_log.domain import OperationKind, Snapshot, TaggedValue, ValueTag
from services.state.change_log.errors import (
    InvalidLogShapeError,
    UnknownEntityError,
    UnknownFieldError,
)


def _count(session_factory) -> int:
    with session_factory() as session:
        return session.execute(select(func.count()).select_from(change_log)).scalar_one()


def test_record_insert_from_plain_mapping(recorder, session_factory) -> None:
    """Plain field maps are encoded and the entry gets a store id."""
    with session_factory() as session:
        entry = recorder.record(
            session,
            actor_id=" alice ",
            kind="insert",
            entity_type="projects",
            entity_id=5,
            new_state={"name": "Apollo", "status": "active"},
        )
        session.commit()

    assert entry.id > 0
    assert entry.actor_id == "alice"
    assert entry.operation_kind == OperationKind.INSERT
    assert entry.entity_id == "5"
    assert entry.prior_state is None
    assert entry.new_state.fields["name"] == TaggedValue(tag=ValueTag.TEXT, value="Apollo")
    assert entry.created_at == datetime(2026, 10, 18, 12, 0, tzinfo=UTC)
    assert entry.rolled_back is False
    assert _count(session_factory) == 1


def test_record_joins_the_caller_transaction(recorder, session_factory) -> None:
    """Rolling back the caller's session discards the entry."""
    with session_factory() as session:
        recorder.record(
            session,
            actor_id="alice",
            kind=OperationKind.DELETE,
            entity_type="projects",
            entity_id="5",
            prior_state={"name": "Apollo"},
        )
        session.rollback()

    assert _count(session_factory) == 0


@pytest.mark.parametrize(
    ("kind", "prior", "new"),
    [
        ("insert", {"name": "a"}, {"name": "b"}),
        ("insert", None, None),
        ("update", None, {"name": "b"}),
        ("update", {"name": "a"}, None),
        ("delete", None, None),
        ("delete", {"name": "a"}, {"name": "b"}),
    ],
)
def test_record_enforces_state_shape_per_kind(
    recorder, session_factory, kind, prior, new
) -> None:
    """Each kind requires exactly its own states."""
    with session_factory() as session:
        with pytest.raises(InvalidLogShapeError):
            recorder.record(
                session,
                actor_id="alice",
                kind=kind,
                entity_type="projects",
                entity_id=1,
                prior_state=prior,
                new_state=new,
            )


def test_record_rejects_blank_actor(recorder, session_factory) -> None:
    """Every entry must name the actor that caused it."""
    with session_factory() as session:
        with pytest.raises(InvalidLogShapeError):
            recorder.record(
                session,
                actor_id="  ",
                kind="insert",
                entity_type="projects",
                entity_id=1,
                new_state={"name": "a"},
            )


def test_record_rejects_unknown_kind(recorder, session_factory) -> None:
    """Only insert, update and delete are recordable."""
    with session_factory() as session:
        with pytest.raises(InvalidLogShapeError):
            recorder.record(
                session,
                actor_id="alice",
                kind="upsert",
                entity_type="projects",
                entity_id=1,
                new_state={"name": "a"},
            )


def test_record_rejects_unknown_entity_and_fields(recorder, session_factory) -> None:
    """Identifiers are checked before anything is written."""
    with session_factory() as session:
        with pytest.raises(UnknownEntityError):
            recorder.record(
                session,
                actor_id="alice",
                kind="insert",
                entity_type="users",
                entity_id=1,
                new_state={"name": "a"},
            )
        with pytest.raises(UnknownFieldError):
            recorder.record(
                session,
                actor_id="alice",
                kind="insert",
                entity_type="projects",
                entity_id=1,
                new_state={"name": "a", "password": "x"},
            )
    assert _count(session_factory) == 0


def test_record_rejects_snapshot_tagged_for_another_entity(
    recorder, session_factory
) -> None:
    """A snapshot must belong to the entity type it is recorded under."""
    snapshot = Snapshot(
        entity_type="issues",
        fields={"name": TaggedValue(tag=ValueTag.TEXT, value="a")},
    )
    with session_factory() as session:
        with pytest.raises(InvalidLogShapeError):
            recorder.record(
                session,
                actor_id="alice",
                kind="insert",
                entity_type="projects",
                entity_id=1,
                new_state=snapshot,
            )


def test_record_rejects_ids_of_the_wrong_type(recorder, session_factory) -> None:
    """Entity ids must convert to the identity column type."""
    with session_factory() as session:
        with pytest.raises(InvalidLogShapeError):
            recorder.record(
                session,
                actor_id="alice",
                kind="insert",
                entity_type="projects",
                entity_id="abc",
                new_state={"name": "a"},
            )
