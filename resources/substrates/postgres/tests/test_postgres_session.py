"""Tests for transactional session scoping."""

from __future__ import annotations

import pytest
from sqlalchemy import create_engine, text

from resources.substrates.postgres.session import (
    create_session_factory,
    transactional_session,
)


@pytest.fixture()
def session_factory():
    """Provide a session factory over a file-less SQLite database."""
    engine = create_engine("sqlite://")
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE notes (id INTEGER PRIMARY KEY, body TEXT)"))
    factory = create_session_factory(engine)
    yield factory
    engine.dispose()


def _count(factory) -> int:
    with factory() as session:
        return session.execute(text("SELECT count(*) FROM notes")).scalar_one()


def test_transactional_session_commits_on_clean_exit(session_factory) -> None:
    """Writes persist after the block exits normally."""
    with transactional_session(session_factory) as session:
        session.execute(text("INSERT INTO notes (body) VALUES ('a')"))

    assert _count(session_factory) == 1


def test_transactional_session_rolls_back_on_error(session_factory) -> None:
    """Writes are discarded and the exception propagates."""
    with pytest.raises(RuntimeError):
        with transactional_session(session_factory) as session:
            session.execute(text("INSERT INTO notes (body) VALUES ('a')"))
            raise RuntimeError("boom")

    assert _count(session_factory) == 0
