"""Tests for the public API instrumentation decorator.

Includes a static check that every envelope-returning method declared on the
Change Log Service contract is decorated in its implementation.
"""

from __future__ import annotations

import ast
import logging
from pathlib import Path

import pytest

from packages.rewind_shared.envelope import EnvelopeKind, failure, new_meta, success
from packages.rewind_shared.errors import dependency_error
from packages.rewind_shared.logging import (
    CompletionContext,
    InvocationContext,
    public_api_instrumented,
)

_REPO_ROOT = Path(__file__).resolve().parents[2]
_SERVICE_ROOT = _REPO_ROOT / "services" / "state" / "change_log"


class _RecordingConcern:
    """Concern double capturing every lifecycle event."""

    def __init__(self) -> None:
        self.invocations: list[InvocationContext] = []
        self.completions: list[CompletionContext] = []

    def on_invocation(self, context: InvocationContext) -> None:
        self.invocations.append(context)

    def on_completion(self, context: CompletionContext) -> None:
        self.completions.append(context)


class _ExplodingConcern:
    """Concern double whose hooks always fail."""

    def on_invocation(self, context: InvocationContext) -> None:
        raise RuntimeError("hook failed")

    def on_completion(self, context: CompletionContext) -> None:
        raise RuntimeError("hook failed")


def _meta():
    return new_meta(
        kind=EnvelopeKind.COMMAND,
        source="cli",
        principal="operator",
        trace_id="trace-1",
        envelope_id="env-1",
    )


def test_decorator_reports_invocation_references_and_success() -> None:
    """Id fields and envelope correlation reach the concerns."""
    concern = _RecordingConcern()

    @public_api_instrumented(
        component_id="service_change_log",
        id_fields=("actor_id",),
        concerns=[concern],
        include_default_concerns=False,
    )
    def history(*, meta, actor_id):
        return success(meta=meta, payload=[])

    result = history(meta=_meta(), actor_id="alice")

    assert result.ok
    invocation = concern.invocations[0]
    assert invocation.api_name == "history"
    assert invocation.trace_id == "trace-1"
    assert invocation.envelope_id == "env-1"
    assert invocation.source == "cli"
    assert invocation.references == {"actor_id": "alice"}
    assert concern.completions[0].success is True


def test_decorator_summarizes_envelope_errors() -> None:
    """Failed envelopes produce error summaries and categories."""
    concern = _RecordingConcern()

    @public_api_instrumented(
        component_id="service_change_log",
        api_name="recent",
        concerns=[concern],
        include_default_concerns=False,
    )
    def recent(*, meta):
        return failure(meta=meta, errors=[dependency_error("database unavailable")])

    recent(meta=_meta())

    completion = concern.completions[0]
    assert completion.success is False
    assert completion.errors == ["DEPENDENCY_FAILURE: database unavailable"]
    assert completion.error_categories == ["dependency"]


def test_decorator_reraises_exceptions_after_completion() -> None:
    """Raised exceptions are recorded as internal failures and propagate."""
    concern = _RecordingConcern()

    @public_api_instrumented(
        component_id="service_change_log",
        concerns=[concern],
        include_default_concerns=False,
    )
    def undo(*, meta):
        raise KeyError("boom")

    with pytest.raises(KeyError):
        undo(meta=_meta())
    assert concern.completions[0].error_categories == ["internal"]


def test_concern_failures_are_isolated_and_logged(caplog) -> None:
    """A broken concern never breaks the call it observes."""
    logger = logging.getLogger("tests.public_api")

    @public_api_instrumented(
        component_id="service_change_log",
        concerns=[_ExplodingConcern()],
        logger=logger,
        include_default_concerns=False,
    )
    def health(*, meta):
        return success(meta=meta, payload={"ready": True})

    with caplog.at_level(logging.INFO, logger="tests.public_api"):
        result = health(meta=_meta())

    assert result.ok
    messages = [record.getMessage() for record in caplog.records]
    assert "Public API invocation" in messages
    assert messages.count("Public API instrumentation concern failed") == 2


def test_decorator_requires_at_least_one_concern() -> None:
    """Instrumentation with nothing to emit is a configuration error."""
    with pytest.raises(ValueError):
        public_api_instrumented(
            component_id="service_change_log", include_default_concerns=False
        )


def test_service_envelope_methods_are_instrumented() -> None:
    """Every envelope-returning contract method is decorated in the implementation."""
    contract = _envelope_methods(_SERVICE_ROOT / "service.py", "ChangeLogService")
    decorated = _decorated_methods(
        _SERVICE_ROOT / "implementation.py", "DefaultChangeLogService"
    )

    missing = sorted(contract - decorated)
    assert contract
    assert not missing, f"Missing @public_api_instrumented on: {missing}"


def _class_node(file_path: Path, class_name: str) -> ast.ClassDef:
    """Load and return one named class node from a Python module."""
    module = ast.parse(file_path.read_text(encoding="utf-8"))
    for node in module.body:
        if isinstance(node, ast.ClassDef) and node.name == class_name:
            return node
    raise AssertionError(f"Class not found: {class_name} in {file_path}")


def _envelope_methods(file_path: Path, class_name: str) -> set[str]:
    """Return public methods annotated to return an ``Envelope``."""
    names: set[str] = set()
    for node in _class_node(file_path, class_name).body:
        if not isinstance(node, ast.FunctionDef) or node.name.startswith("_"):
            continue
        if node.returns is not None and ast.unparse(node.returns).startswith(
            "Envelope"
        ):
            names.add(node.name)
    return names


def _decorated_methods(file_path: Path, class_name: str) -> set[str]:
    """Return method names decorated with ``@public_api_instrumented``."""
    names: set[str] = set()
    for node in _class_node(file_path, class_name).body:
        if not isinstance(node, ast.FunctionDef):
            continue
        for decorator in node.decorator_list:
            target = decorator.func if isinstance(decorator, ast.Call) else decorator
            if isinstance(target, ast.Name) and target.id == "public_api_instrumented":
                names.add(node.name)
    return names
