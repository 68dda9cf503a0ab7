"""Public API for shared Rewind configuration utilities."""

from .loader import load_settings
from .models import (
    DEFAULT_CONFIG_PATH,
    ComponentsSettings,
    LoggingSettings,
    ObservabilitySettings,
    PublicApiOtelSettings,
    RewindSettings,
    resolve_component_settings,
)

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "ComponentsSettings",
    "LoggingSettings",
    "ObservabilitySettings",
    "PublicApiOtelSettings",
    "RewindSettings",
    "load_settings",
    "resolve_component_settings",
]
