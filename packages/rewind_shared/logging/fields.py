"""Canonical structured logging field names.

Services bind these keys into the logging context so log lines from the
recorder, executor and public API share one stable shape.
"""

TIMESTAMP = "timestamp"
LEVEL = "level"
LOGGER = "logger"
MESSAGE = "message"
EVENT = "event"

# Envelope/correlation fields.
TRACE_ID = "trace_id"
ENVELOPE_ID = "envelope_id"
SOURCE = "source"
PRINCIPAL = "principal"

# Public API invocation fields.
COMPONENT_ID = "component_id"
API_NAME = "api_name"
PUBLIC_API_INVOCATION_EVENT = "public_api_invocation"
PUBLIC_API_COMPLETION_EVENT = "public_api_completion"
PUBLIC_API_INSTRUMENTATION_FAILURE_EVENT = "public_api_instrumentation_failure"
SUCCESS = "success"
DURATION_MS = "duration_ms"
ERRORS = "errors"
OUTCOME = "outcome"
ERROR_CATEGORY = "error_category"
STAGE = "stage"
CONCERN = "concern"

# Change log fields.
ACTOR_ID = "actor_id"
ENTRY_ID = "entry_id"
OPERATION_KIND = "operation_kind"
ENTITY_TYPE = "entity_type"
ENTITY_ID = "entity_id"

# Common service-level fields.
SERVICE = "service"
ENVIRONMENT = "environment"
