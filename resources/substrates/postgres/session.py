"""Session helpers shared by the change log store and the undo executor."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Bind a session factory whose loaded rows survive commit."""
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def transactional_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    """Run one unit of work.

    Commits when the block exits cleanly and rolls back when it raises. Undo
    relies on this to keep an entry's claim and its inverse atomic.
    """
    with session_factory() as session, session.begin():
        yield session
