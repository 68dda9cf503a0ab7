"""Rewind CLI actor implemented with Typer."""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Callable

import typer

from packages.rewind_shared.config import load_settings
from packages.rewind_shared.envelope import Envelope, EnvelopeKind, EnvelopeMeta, new_meta
from packages.rewind_shared.errors import ErrorCategory, ErrorDetail
from packages.rewind_shared.logging import configure_logging
from services.state.change_log.data.migrations import (
    MigrationExecutionError,
    upgrade_change_log_schema,
)
from services.state.change_log.service import ChangeLogService, build_change_log_service

SUCCESS_EXIT_CODE = 0
DOMAIN_ERROR_EXIT_CODE = 3
DEPENDENCY_ERROR_EXIT_CODE = 4

_DEPENDENCY_CATEGORIES = frozenset({ErrorCategory.DEPENDENCY, ErrorCategory.INTERNAL})


@dataclass(frozen=True)
class CliConfig:
    """Global CLI runtime options propagated to service calls."""

    config_path: Path | None
    principal: str
    source: str
    as_json: bool
    trace_id: str | None
    parent_id: str | None

    def meta(self, kind: EnvelopeKind = EnvelopeKind.COMMAND) -> EnvelopeMeta:
        """Build envelope metadata for one command invocation."""
        return new_meta(
            kind=kind,
            source=self.source,
            principal=self.principal,
            trace_id=self.trace_id,
            parent_id=self.parent_id or "",
        )


def _build_service(cfg: CliConfig) -> ChangeLogService:
    """Load settings, configure logging and build the change log service."""
    settings = load_settings(cfg.config_path)
    configure_logging(
        level=settings.logging.level,
        json_output=settings.logging.json_output,
        service=settings.logging.service,
        environment=settings.logging.environment,
    )
    return build_change_log_service(settings=settings)


def _serialize(value: Any) -> Any:
    """Convert result objects to JSON-serializable structures."""

    if isinstance(value, Enum):
        return _serialize(value.value)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (Decimal, Path)):
        return str(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _serialize(dataclasses.asdict(value))
    if isinstance(value, dict):
        return {str(key): _serialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_serialize(item) for item in value]
    if hasattr(value, "model_dump"):
        return _serialize(value.model_dump(mode="python"))
    return str(value)


def _emit_output(result: Any, as_json: bool) -> None:
    """Render command output in requested format."""

    data = _serialize(result)
    if as_json:
        typer.echo(json.dumps(data, sort_keys=True, separators=(",", ":")))
        return
    rendered = _render_human(data)
    if rendered is not None:
        typer.echo(rendered)
        return
    typer.echo("ok" if data is None else str(data))


def _emit_errors(errors: list[ErrorDetail], as_json: bool) -> None:
    """Render envelope errors to stderr."""

    if as_json:
        typer.echo(json.dumps({"errors": _serialize(errors)}, sort_keys=True), err=True)
        return
    for error in errors:
        typer.echo(f"error: {error.code}: {error.message}", err=True)


def _render_human(data: Any) -> str | None:
    """Return human-oriented rendering for recognized payload shapes."""
    if isinstance(data, dict):
        if _looks_like_health(data):
            return _render_health(data)
        if _looks_like_undo_result(data):
            return _render_undo_result(data)
    if isinstance(data, list) and all(_looks_like_entry(item) for item in data):
        return _render_entries(data)
    if isinstance(data, (dict, list)):
        return json.dumps(data, indent=2, sort_keys=True)
    return None


def _looks_like_health(value: dict[str, Any]) -> bool:
    return isinstance(value.get("service_ready"), bool) and isinstance(
        value.get("substrate_ready"), bool
    )


def _looks_like_undo_result(value: dict[str, Any]) -> bool:
    return "consumed" in value and "requested" in value


def _looks_like_entry(value: Any) -> bool:
    return isinstance(value, dict) and "operation_kind" in value and "entity_type" in value


def _render_health(data: dict[str, Any]) -> str:
    """Render service readiness for human scanning."""
    service_ready = bool(data["service_ready"])
    substrate_ready = bool(data["substrate_ready"])
    lines = [
        f"Change log: {_status_icon(service_ready)} {_status_label(service_ready)}",
        f"  Database: {_status_icon(substrate_ready)} {_status_label(substrate_ready)}",
    ]
    detail = str(data.get("detail", "")).strip()
    if detail not in ("", "ok"):
        lines.append(f"  ({detail})")
    return "\n".join(lines)


def _render_entries(items: list[dict[str, Any]]) -> str:
    """Render log entries one per line, newest first as received."""
    if len(items) == 0:
        return "No entries found."
    return "\n".join(_render_entry(item) for item in items)


def _render_entry(item: dict[str, Any]) -> str:
    line = (
        f"#{item.get('id')} {item.get('created_at', '')} "
        f"{item.get('actor_id', '')} {item.get('operation_kind', '')} "
        f"{item.get('entity_type', '')}/{item.get('entity_id', '')}"
    )
    if item.get("rolled_back"):
        line = f"{line} (rolled back)"
    return line


def _render_undo_result(data: dict[str, Any]) -> str:
    """Render one undo run summary."""
    consumed = data.get("consumed", [])
    noun = "entry" if len(consumed) == 1 else "entries"
    lines = [f"Undid {len(consumed)} {noun}."]
    lines.extend(f"  {_render_entry(item)}" for item in consumed)
    skipped = data.get("skipped_entry_ids", [])
    if skipped:
        lines.append(f"Skipped (already undone): {', '.join(str(i) for i in skipped)}")
    conflict = data.get("conflict")
    if isinstance(conflict, dict):
        lines.append(
            f"Stopped at #{conflict.get('entry_id')} "
            f"{conflict.get('entity_type')}/{conflict.get('entity_id')}: "
            f"{conflict.get('reason')}"
        )
    return "\n".join(lines)


def _status_icon(ready: bool) -> str:
    """Return status icon for one readiness value."""
    return "✅" if ready else "⚠️"


def _status_label(ready: bool) -> str:
    """Return status label for one readiness value."""
    return "healthy" if ready else "degraded"


def _exit_code(errors: list[ErrorDetail]) -> int:
    """Map envelope error categories to process exit codes."""
    if any(error.category in _DEPENDENCY_CATEGORIES for error in errors):
        return DEPENDENCY_ERROR_EXIT_CODE
    return DOMAIN_ERROR_EXIT_CODE


def _run_command(
    cfg: CliConfig,
    invoke: Callable[[ChangeLogService, EnvelopeMeta], Envelope[Any]],
    *,
    kind: EnvelopeKind = EnvelopeKind.COMMAND,
) -> None:
    """Execute one service call and map envelopes to process semantics."""
    envelope = invoke(_build_service(cfg), cfg.meta(kind))
    if envelope.payload is not None:
        _emit_output(envelope.payload.value, cfg.as_json)
    if not envelope.ok:
        _emit_errors(envelope.errors, cfg.as_json)
        raise typer.Exit(code=_exit_code(envelope.errors))
    if envelope.payload is None:
        _emit_output(None, cfg.as_json)
    raise typer.Exit(code=SUCCESS_EXIT_CODE)


def _require_config(ctx: typer.Context) -> CliConfig:
    """Return required CLI config from Typer context."""

    config = ctx.obj
    if not isinstance(config, CliConfig):
        raise RuntimeError("CLI configuration not initialized")
    return config


app = typer.Typer(no_args_is_help=True, help="Rewind change log command-line interface")


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Path | None = typer.Option(
        None,
        "--config",
        envvar="REWIND_CONFIG_PATH",
        help="YAML settings file (default: ~/.config/rewind/rewind.yaml)",
    ),
    principal: str = typer.Option("operator", help="Envelope principal"),
    source: str = typer.Option("cli", help="Envelope source"),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON output"),
    trace_id: str | None = typer.Option(None, help="Optional trace id"),
    parent_id: str | None = typer.Option(None, help="Optional parent envelope id"),
) -> None:
    """Store global options for all commands."""

    ctx.obj = CliConfig(
        config_path=config_path,
        principal=principal,
        source=source,
        as_json=as_json,
        trace_id=trace_id,
        parent_id=parent_id,
    )


@app.command("history")
def history_command(
    ctx: typer.Context,
    actor: str = typer.Option(..., "--actor", help="Actor whose history to list"),
    limit: int | None = typer.Option(None, min=1, help="Maximum entries to list"),
) -> None:
    """List one actor's change history, newest first."""
    cfg = _require_config(ctx)
    _run_command(
        cfg,
        lambda service, meta: service.history(meta=meta, actor_id=actor, limit=limit),
        kind=EnvelopeKind.QUERY,
    )


@app.command("recent")
def recent_command(
    ctx: typer.Context,
    limit: int | None = typer.Option(None, min=1, help="Maximum entries to list"),
) -> None:
    """List the newest changes across all actors."""
    cfg = _require_config(ctx)
    _run_command(
        cfg,
        lambda service, meta: service.recent(meta=meta, limit=limit),
        kind=EnvelopeKind.QUERY,
    )


@app.command("undo")
def undo_command(
    ctx: typer.Context,
    actor: str = typer.Option(..., "--actor", help="Actor whose changes to undo"),
    count: int = typer.Option(1, help="Number of latest changes to undo"),
) -> None:
    """Undo an actor's latest changes, newest first."""
    cfg = _require_config(ctx)
    _run_command(
        cfg,
        lambda service, meta: service.undo(meta=meta, actor_id=actor, count=count),
    )


@app.command("health")
def health_command(ctx: typer.Context) -> None:
    """Report change log and database readiness."""
    cfg = _require_config(ctx)
    _run_command(
        cfg, lambda service, meta: service.health(meta=meta), kind=EnvelopeKind.QUERY
    )


@app.command("migrate")
def migrate_command(
    ctx: typer.Context,
    revision: str = typer.Option("head", help="Target Alembic revision"),
) -> None:
    """Upgrade the change log schema."""
    cfg = _require_config(ctx)
    try:
        applied = upgrade_change_log_schema(
            settings=load_settings(cfg.config_path), revision=revision
        )
    except MigrationExecutionError as exc:
        if cfg.as_json:
            typer.echo(json.dumps({"error": str(exc)}), err=True)
        else:
            typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=DEPENDENCY_ERROR_EXIT_CODE) from exc
    _emit_output({"revision": applied}, cfg.as_json)
    raise typer.Exit(code=SUCCESS_EXIT_CODE)


if __name__ == "__main__":
    app()
