"""Unit tests for configured OTel naming in public API instrumentation."""

from __future__ import annotations

from packages.rewind_shared.config import RewindSettings
from packages.rewind_shared.logging import public_api as public_api_module


class _RecordingMeter:
    def __init__(self) -> None:
        self.counters: list[str] = []
        self.histograms: list[str] = []

    def create_counter(self, *, name: str, description: str, unit: str) -> object:
        del description, unit
        self.counters.append(name)
        return object()

    def create_histogram(self, *, name: str, description: str, unit: str) -> object:
        del description, unit
        self.histograms.append(name)
        return object()


def _settings(otel: dict[str, str] | None = None) -> RewindSettings:
    payload: dict[str, object] = {}
    if otel is not None:
        payload = {"observability": {"public_api": {"otel": otel}}}
    return RewindSettings.model_validate(payload)


def test_default_metrics_concern_uses_rewind_names(monkeypatch) -> None:
    """Default metric instrument names should resolve when config is absent."""
    public_api_module._default_metrics_concern.cache_clear()
    meter = _RecordingMeter()
    requested: list[str] = []

    def fake_get_meter(name: str) -> _RecordingMeter:
        requested.append(name)
        return meter

    monkeypatch.setattr(public_api_module, "load_settings", lambda: _settings())
    monkeypatch.setattr(public_api_module.otel_metrics, "get_meter", fake_get_meter)
    try:
        public_api_module._default_metrics_concern()
    finally:
        public_api_module._default_metrics_concern.cache_clear()

    assert requested == ["rewind.public_api"]
    assert meter.counters == [
        "rewind_public_api_calls_total",
        "rewind_public_api_errors_total",
    ]
    assert meter.histograms == ["rewind_public_api_duration_ms"]


def test_default_tracing_concern_accepts_config_overrides(monkeypatch) -> None:
    """Configured tracer name should override the built-in default."""
    public_api_module._default_tracing_concern.cache_clear()
    requested: list[str] = []

    def fake_get_tracer(name: str) -> object:
        requested.append(name)
        return object()

    monkeypatch.setattr(
        public_api_module,
        "load_settings",
        lambda: _settings({"tracer_name": "custom.tracer"}),
    )
    monkeypatch.setattr(public_api_module.otel_trace, "get_tracer", fake_get_tracer)
    try:
        public_api_module._default_tracing_concern()
    finally:
        public_api_module._default_tracing_concern.cache_clear()

    assert requested == ["custom.tracer"]
