"""CLI tests for Rewind Typer commands."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

import actors.cli.main as cli_module
from packages.rewind_shared.envelope import EnvelopeKind, EnvelopeMeta, failure, success
from packages.rewind_shared.errors import conflict_error, dependency_error, validation_error
from services.state.change_log.data.migrations import MigrationExecutionError
from services.state.change_log.domain import (
    ConflictReport,
    HealthStatus,
    LogEntry,
    OperationKind,
    UndoResult,
)

_CREATED = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def _entry(entry_id: int, *, rolled_back: bool = False) -> LogEntry:
    """Build one log entry fixture."""
    return LogEntry(
        id=entry_id,
        actor_id="alice",
        operation_kind=OperationKind.UPDATE,
        entity_type="issue",
        entity_id=str(entry_id * 10),
        created_at=_CREATED,
        rolled_back=rolled_back,
        rolled_back_at=_CREATED if rolled_back else None,
    )


class FakeChangeLogService:
    """In-memory stand-in recording every call made by the CLI."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.undo_envelope: Any = None
        self.health_envelope: Any = None

    def history(self, *, meta: EnvelopeMeta, actor_id: str, limit: int | None = None) -> Any:
        self.calls.append(("history", {"meta": meta, "actor_id": actor_id, "limit": limit}))
        return success(meta=meta, payload=[_entry(2), _entry(1, rolled_back=True)])

    def recent(self, *, meta: EnvelopeMeta, limit: int | None = None) -> Any:
        self.calls.append(("recent", {"meta": meta, "limit": limit}))
        return success(meta=meta, payload=[])

    def undo(self, *, meta: EnvelopeMeta, actor_id: str, count: int) -> Any:
        self.calls.append(("undo", {"meta": meta, "actor_id": actor_id, "count": count}))
        if self.undo_envelope is not None:
            return self.undo_envelope(meta)
        return success(
            meta=meta,
            payload=UndoResult(
                actor_id=actor_id,
                requested=count,
                consumed=[_entry(2, rolled_back=True)],
            ),
        )

    def health(self, *, meta: EnvelopeMeta) -> Any:
        self.calls.append(("health", {"meta": meta}))
        if self.health_envelope is not None:
            return self.health_envelope(meta)
        return success(
            meta=meta,
            payload=HealthStatus(service_ready=True, substrate_ready=True, detail="ok"),
        )


@pytest.fixture()
def fake_service(monkeypatch: pytest.MonkeyPatch) -> FakeChangeLogService:
    """Replace the CLI service factory with an in-memory fake."""
    service = FakeChangeLogService()
    monkeypatch.setattr(cli_module, "_build_service", lambda cfg: service)
    return service


def test_history_renders_entries_for_humans(fake_service: FakeChangeLogService) -> None:
    """History prints one line per entry and flags rolled-back entries."""
    result = CliRunner().invoke(cli_module.app, ["history", "--actor", "alice"])

    assert result.exit_code == 0
    lines = result.stdout.strip().splitlines()
    assert lines[0].startswith("#2 ")
    assert "update issue/20" in lines[0]
    assert lines[1].endswith("(rolled back)")
    name, kwargs = fake_service.calls[0]
    assert name == "history"
    assert kwargs["actor_id"] == "alice"
    assert kwargs["limit"] is None


def test_history_forwards_limit(fake_service: FakeChangeLogService) -> None:
    """`--limit` is passed through to the service."""
    result = CliRunner().invoke(
        cli_module.app, ["history", "--actor", "alice", "--limit", "5"]
    )

    assert result.exit_code == 0
    assert fake_service.calls[0][1]["limit"] == 5


def test_history_json_output(fake_service: FakeChangeLogService) -> None:
    """`--json` emits the entry list as compact JSON."""
    result = CliRunner().invoke(
        cli_module.app, ["--json", "history", "--actor", "alice"]
    )

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert [item["id"] for item in payload] == [2, 1]
    assert payload[0]["operation_kind"] == "update"
    assert payload[0]["created_at"] == _CREATED.isoformat()


def test_recent_with_no_entries(fake_service: FakeChangeLogService) -> None:
    """Empty results render a friendly message."""
    result = CliRunner().invoke(cli_module.app, ["recent"])

    assert result.exit_code == 0
    assert "No entries found." in result.stdout


def test_undo_defaults_to_one(fake_service: FakeChangeLogService) -> None:
    """Undo without `--count` requests a single entry."""
    result = CliRunner().invoke(cli_module.app, ["undo", "--actor", "alice"])

    assert result.exit_code == 0
    assert "Undid 1 entry." in result.stdout
    assert fake_service.calls[0][1]["count"] == 1
    assert fake_service.calls[0][1]["meta"].kind == EnvelopeKind.COMMAND


def test_undo_conflict_prints_partial_result_and_exits_3(
    fake_service: FakeChangeLogService,
) -> None:
    """A stopped undo shows what was undone and maps to the domain exit code."""

    def conflicted(meta: EnvelopeMeta) -> Any:
        report = ConflictReport(
            entry_id=1,
            operation_kind=OperationKind.UPDATE,
            entity_type="issue",
            entity_id="10",
            code="UNDO_CONFLICT",
            reason="row no longer exists",
        )
        return failure(
            meta=meta,
            errors=[conflict_error("row no longer exists", code="UNDO_CONFLICT")],
            payload=UndoResult(
                actor_id="alice",
                requested=2,
                consumed=[_entry(2, rolled_back=True)],
                conflict=report,
            ),
        )

    fake_service.undo_envelope = conflicted
    result = CliRunner().invoke(
        cli_module.app, ["undo", "--actor", "alice", "--count", "2"]
    )

    assert result.exit_code == 3
    assert "Undid 1 entry." in result.stdout
    assert "Stopped at #1 issue/10: row no longer exists" in result.stdout
    assert "UNDO_CONFLICT" in result.stderr


def test_validation_error_maps_to_exit_code_3(fake_service: FakeChangeLogService) -> None:
    """Validation failures map to exit code 3."""
    fake_service.undo_envelope = lambda meta: failure(
        meta=meta, errors=[validation_error("count must be >= 1", code="INVALID_UNDO_COUNT")]
    )

    result = CliRunner().invoke(
        cli_module.app, ["undo", "--actor", "alice", "--count", "0"]
    )

    assert result.exit_code == 3
    assert "count must be >= 1" in result.stderr


def test_dependency_error_maps_to_exit_code_4(fake_service: FakeChangeLogService) -> None:
    """Dependency failures map to exit code 4."""
    fake_service.health_envelope = lambda meta: failure(
        meta=meta, errors=[dependency_error("database unavailable")]
    )

    result = CliRunner().invoke(cli_module.app, ["health"])

    assert result.exit_code == 4
    assert "database unavailable" in result.stderr


def test_json_output_for_errors(fake_service: FakeChangeLogService) -> None:
    """`--json` produces JSON-wrapped errors on stderr."""
    fake_service.health_envelope = lambda meta: failure(
        meta=meta, errors=[dependency_error("database unavailable")]
    )

    result = CliRunner().invoke(cli_module.app, ["--json", "health"])

    assert result.exit_code == 4
    payload = json.loads(result.stderr)
    assert payload["errors"][0]["message"] == "database unavailable"
    assert payload["errors"][0]["category"] == "dependency"


def test_health_renders_readiness(fake_service: FakeChangeLogService) -> None:
    """Health output shows service and database readiness."""
    result = CliRunner().invoke(cli_module.app, ["health"])

    assert result.exit_code == 0
    assert "Change log: ✅ healthy" in result.stdout
    assert "Database: ✅ healthy" in result.stdout


def test_envelope_metadata_reflects_global_options(
    fake_service: FakeChangeLogService,
) -> None:
    """Principal, source and trace ids flow into command metadata."""
    result = CliRunner().invoke(
        cli_module.app,
        [
            "--principal",
            "ops",
            "--source",
            "cron",
            "--trace-id",
            "trace-abc",
            "--parent-id",
            "parent-xyz",
            "recent",
        ],
    )

    assert result.exit_code == 0
    meta = fake_service.calls[0][1]["meta"]
    assert meta.principal == "ops"
    assert meta.source == "cron"
    assert meta.trace_id == "trace-abc"
    assert meta.parent_id == "parent-xyz"
    assert meta.kind == EnvelopeKind.QUERY


def test_missing_actor_is_a_usage_error(fake_service: FakeChangeLogService) -> None:
    """Typer usage behavior is left at its defaults."""
    result = CliRunner().invoke(cli_module.app, ["undo"])

    assert result.exit_code == 2
    assert fake_service.calls == []


def test_migrate_reports_revision(monkeypatch: pytest.MonkeyPatch) -> None:
    """`migrate` upgrades to the requested revision."""
    seen: dict[str, Any] = {}

    def fake_upgrade(*, settings: Any, revision: str) -> str:
        seen["revision"] = revision
        return revision

    monkeypatch.setattr(cli_module, "upgrade_change_log_schema", fake_upgrade)
    monkeypatch.setattr(cli_module, "load_settings", lambda path=None: object())

    result = CliRunner().invoke(cli_module.app, ["--json", "migrate"])

    assert result.exit_code == 0
    assert json.loads(result.stdout) == {"revision": "head"}
    assert seen["revision"] == "head"


def test_migrate_failure_maps_to_exit_code_4(monkeypatch: pytest.MonkeyPatch) -> None:
    """A failed upgrade is reported as a dependency error."""

    def failing_upgrade(*, settings: Any, revision: str) -> str:
        raise MigrationExecutionError("change log migration to 'head' failed")

    monkeypatch.setattr(cli_module, "upgrade_change_log_schema", failing_upgrade)
    monkeypatch.setattr(cli_module, "load_settings", lambda path=None: object())

    result = CliRunner().invoke(cli_module.app, ["migrate"])

    assert result.exit_code == 4
    assert "migration to 'head' failed" in result.stderr


# ---------------------------------------------------------------------------
# _serialize unit tests
# ---------------------------------------------------------------------------


def test_serialize_primitives() -> None:
    """None, bool, int, float, str pass through unchanged."""
    serialize = cli_module._serialize
    assert serialize(None) is None
    assert serialize(True) is True
    assert serialize(42) == 42
    assert serialize(3.14) == 3.14
    assert serialize("hello") == "hello"


def test_serialize_datetime_and_decimal() -> None:
    """datetime and date become ISO text; Decimal and Path become strings."""
    serialize = cli_module._serialize
    assert serialize(datetime(2024, 1, 15, 12, 0, 0)) == "2024-01-15T12:00:00"
    assert serialize(date(2024, 1, 15)) == "2024-01-15"
    assert serialize(Decimal("3.14")) == "3.14"
    assert serialize(Path("/tmp/file.txt")) == "/tmp/file.txt"


def test_serialize_dataclass() -> None:
    """Dataclass instances are serialized to dicts recursively."""

    @dataclass
    class Inner:
        value: int

    @dataclass
    class Outer:
        name: str
        inner: Inner

    assert cli_module._serialize(Outer(name="x", inner=Inner(value=7))) == {
        "name": "x",
        "inner": {"value": 7},
    }


def test_serialize_pydantic_model() -> None:
    """Pydantic models serialize through model_dump with enums flattened."""
    data = cli_module._serialize(_entry(3))
    assert data["operation_kind"] == "update"
    assert data["rolled_back_at"] is None


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def test_render_health_degraded_includes_detail() -> None:
    """Degraded readiness shows the warning icon and detail text."""
    output = cli_module._render_health(
        {"service_ready": False, "substrate_ready": False, "detail": "connection refused"}
    )
    assert "⚠️" in output
    assert "degraded" in output
    assert "connection refused" in output


def test_render_undo_result_lists_skipped_entries() -> None:
    """Entries skipped as already undone are listed by id."""
    output = cli_module._render_undo_result(
        {"requested": 3, "consumed": [], "skipped_entry_ids": [4, 5], "conflict": None}
    )
    assert "Undid 0 entries." in output
    assert "Skipped (already undone): 4, 5" in output


def test_render_human_falls_back_to_pretty_json() -> None:
    """Unrecognized mappings render as indented JSON."""
    assert cli_module._render_human({"revision": "head"}) == '{\n  "revision": "head"\n}'
