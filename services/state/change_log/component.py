"""Component identity for the Change Log Service."""

from __future__ import annotations

SERVICE_COMPONENT_ID = "service_change_log"
