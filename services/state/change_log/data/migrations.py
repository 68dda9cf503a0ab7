"""Alembic upgrade entrypoint for the change log schema."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from alembic import command
from alembic.config import Config

from packages.rewind_shared.config import RewindSettings
from resources.substrates.postgres.config import resolve_postgres_settings

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"


class MigrationExecutionError(RuntimeError):
    """Raised when the change log schema upgrade fails."""


def build_alembic_config(settings: RewindSettings) -> Config:
    """Return an Alembic config pointed at the configured database."""
    config = Config(str(MIGRATIONS_DIR / "alembic.ini"))
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    config.set_main_option("version_locations", str(MIGRATIONS_DIR / "versions"))
    config.set_main_option(
        "sqlalchemy.url", resolve_postgres_settings(settings).url.replace("%", "%%")
    )
    config.attributes["configure_logger"] = False
    return config


def upgrade_change_log_schema(
    *,
    settings: RewindSettings,
    revision: str = "head",
    upgrade_fn: Callable[[Config, str], None] = command.upgrade,
) -> str:
    """Upgrade the change log schema to ``revision`` and return it."""
    try:
        upgrade_fn(build_alembic_config(settings), revision)
    except Exception as exc:
        raise MigrationExecutionError(
            f"change log migration to '{revision}' failed"
        ) from exc
    return revision
