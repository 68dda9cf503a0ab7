"""Change Log Service database runtime wiring."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from packages.rewind_shared.config import RewindSettings
from resources.substrates.postgres import SharedPostgresSubstrate
from resources.substrates.postgres.config import resolve_postgres_settings


@dataclass(frozen=True)
class ChangeLogRuntime:
    """Engine and session factory backing the change log and tracked tables."""

    substrate: SharedPostgresSubstrate

    @classmethod
    def from_settings(cls, settings: RewindSettings) -> "ChangeLogRuntime":
        """Build the runtime from ``components.substrate.postgres``."""
        return cls(
            substrate=SharedPostgresSubstrate(
                settings=resolve_postgres_settings(settings)
            )
        )

    @property
    def engine(self) -> Engine:
        return self.substrate.engine

    @property
    def session_factory(self) -> sessionmaker[Session]:
        return self.substrate.session_factory

    def is_healthy(self) -> bool:
        """Return ``True`` when the backing database answers a ping."""
        return self.substrate.health().ready
