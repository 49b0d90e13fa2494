"""Public observability primitives: structured logging and event streaming."""

from itemflow.observability.events import (
    DispatchError,
    EventBus,
    PersistenceCallback,
    Subscriber,
)
from itemflow.observability.logging import (
    LoggingConfig,
    LogRedactor,
    StructuredLoggingHandle,
    correlation_scope,
    default_log_redactor,
    flush_logging,
    get_active_logging_handle,
    get_correlation_context,
    reset_correlation_fields,
    set_correlation_fields,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
    "DispatchError",
    "EventBus",
    "LogRedactor",
    "LoggingConfig",
    "PersistenceCallback",
    "StructuredLoggingHandle",
    "Subscriber",
    "correlation_scope",
    "default_log_redactor",
    "flush_logging",
    "get_active_logging_handle",
    "get_correlation_context",
    "reset_correlation_fields",
    "set_correlation_fields",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
