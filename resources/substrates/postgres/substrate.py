"""Shared Postgres substrate contract and implementation."""

from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel, ConfigDict
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from resources.substrates.postgres.config import PostgresSettings
from resources.substrates.postgres.engine import create_postgres_engine
from resources.substrates.postgres.health import ping
from resources.substrates.postgres.session import create_session_factory


class PostgresHealthStatus(BaseModel):
    """Postgres substrate readiness payload."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    ready: bool
    detail: str


class PostgresSubstrate(Protocol):
    """Protocol for shared Postgres substrate operations."""

    @property
    def engine(self) -> Engine:
        """Return underlying SQLAlchemy engine."""

    @property
    def session_factory(self) -> sessionmaker[Session]:
        """Return the session factory bound to ``engine``."""

    def health(self) -> PostgresHealthStatus:
        """Probe substrate readiness."""


class SharedPostgresSubstrate(PostgresSubstrate):
    """Concrete shared substrate owning one engine and its session factory."""

    def __init__(
        self, *, settings: PostgresSettings, engine: Engine | None = None
    ) -> None:
        self._settings = settings
        self._engine = engine if engine is not None else create_postgres_engine(settings)
        self._session_factory = create_session_factory(self._engine)

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def session_factory(self) -> sessionmaker[Session]:
        return self._session_factory

    def health(self) -> PostgresHealthStatus:
        """Return readiness from a bounded ping."""
        ready = ping(
            self._engine,
            timeout_seconds=self._settings.health_timeout_seconds,
        )
        return PostgresHealthStatus(
            ready=ready,
            detail="ok" if ready else "database ping failed",
        )

    def dispose(self) -> None:
        """Release pooled connections."""
        self._engine.dispose()
