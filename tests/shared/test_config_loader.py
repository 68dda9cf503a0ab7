"""Tests for pydantic-settings-backed shared configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import BaseModel, ValidationError

from packages.rewind_shared.config import load_settings, resolve_component_settings
from resources.substrates.postgres.config import PostgresSettings


def _write_config(tmp_path: Path) -> Path:
    config_file = tmp_path / "rewind.yaml"
    config_file.write_text(
        "\n".join(
            [
                "logging:",
                "  level: WARNING",
                "  json_output: false",
                "components:",
                "  substrate:",
                "    postgres:",
                "      pool_size: 7",
                "      max_overflow: 2",
            ]
        ),
        encoding="utf-8",
    )
    return config_file


def test_load_settings_uses_rewind_precedence_cascade(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Init params should override env, env should override YAML, then defaults."""
    config_file = _write_config(tmp_path)
    monkeypatch.setenv("REWIND_LOGGING__LEVEL", "ERROR")
    monkeypatch.setenv("REWIND_COMPONENTS__SUBSTRATE__POSTGRES__POOL_SIZE", "9")

    settings = load_settings(config_file, logging={"level": "DEBUG"})

    postgres = resolve_component_settings(
        settings=settings,
        component_id="substrate_postgres",
        model=PostgresSettings,
    )
    assert settings.logging.level == "DEBUG"
    assert settings.logging.json_output is False
    assert postgres.pool_size == 9
    assert postgres.max_overflow == 2
    assert postgres.pool_timeout_seconds == 30.0


def test_load_settings_reads_yaml_values(tmp_path: Path) -> None:
    """YAML values apply when nothing overrides them."""
    settings = load_settings(_write_config(tmp_path))

    assert settings.logging.level == "WARNING"


def test_missing_config_file_falls_back_to_defaults(tmp_path: Path) -> None:
    """An absent YAML file is not an error."""
    settings = load_settings(tmp_path / "absent.yaml")

    assert settings.logging.service == "rewind"
    assert settings.observability.public_api.otel.tracer_name == "rewind.public_api"


def test_flat_component_keys_are_rejected() -> None:
    """Component settings must be grouped by kind."""
    with pytest.raises(ValidationError):
        load_settings(components={"service_change_log": {"max_undo_count": 3}})


def test_resolve_component_settings_rejects_unknown_kinds() -> None:
    """Only service and substrate component ids resolve."""

    class _Model(BaseModel):
        pass

    with pytest.raises(ValueError, match="unsupported component id"):
        resolve_component_settings(
            settings=load_settings(), component_id="actor_cli", model=_Model
        )


def test_resolve_component_settings_uses_model_defaults_when_absent() -> None:
    """A missing namespace validates as an empty mapping."""
    postgres = resolve_component_settings(
        settings=load_settings(),
        component_id="substrate_postgres",
        model=PostgresSettings,
    )

    assert postgres.pool_size == 5
