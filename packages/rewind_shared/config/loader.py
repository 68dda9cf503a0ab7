"""Settings loading with deterministic precedence.

The cascade is always:
1) explicit keyword overrides
2) environment variables (``REWIND_`` prefix, ``__`` nesting)
3) YAML config file (``~/.config/rewind/rewind.yaml`` unless overridden)
4) model defaults

Example: ``REWIND_COMPONENTS__SERVICE__CHANGE_LOG__MAX_UNDO_COUNT=5``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, ClassVar

from .models import DEFAULT_CONFIG_PATH, RewindSettings


def load_settings(
    config_path: str | Path | None = None, **overrides: Any
) -> RewindSettings:
    """Build ``RewindSettings`` reading YAML from ``config_path`` when given."""
    resolved_path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    if resolved_path == RewindSettings._config_path:
        return RewindSettings(**overrides)

    class _PathBoundSettings(RewindSettings):
        _config_path: ClassVar[Path] = resolved_path

    return _PathBoundSettings(**overrides)
