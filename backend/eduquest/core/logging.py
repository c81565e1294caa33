"""
Structured logging configuration for the AI orchestration layer.

JSON-structured logging via structlog, with request correlation carried in
context variables so that every provider attempt, retry and cache lookup made
on behalf of one logical request can be grouped together.

All logs include:
- timestamp (ISO 8601 format)
- level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
- service (service name identifier)
- request_id (when a logical request is in flight)
- feature (the AI feature being executed, when known)

Credentials must never be passed as log fields; identify providers by label.
"""
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from structlog.types import Processor

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
feature_var: ContextVar[Optional[str]] = ContextVar("feature", default=None)

SERVICE_NAME = "eduquest_ai"


def add_request_context(
    logger: structlog.BoundLogger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Add request context (request_id, feature, service) to log entries.
    """
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id

    feature = feature_var.get()
    if feature and "feature" not in event_dict:
        event_dict["feature"] = feature

    event_dict["service"] = SERVICE_NAME

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

    return event_dict


def configure_logging(
    log_level: str = "INFO",
    service_name: Optional[str] = None,
    json_output: bool = True
) -> None:
    """
    Configure structured logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        service_name: Service name identifier (defaults to SERVICE_NAME)
        json_output: JSON output when True, console output otherwise
    """
    global SERVICE_NAME
    if service_name:
        SERVICE_NAME = service_name

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_request_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)
    """
    return structlog.get_logger(name)


def set_request_id(request_id: Optional[str]) -> None:
    """Set request ID in context for the current logical request."""
    request_id_var.set(request_id)


def get_request_id() -> Optional[str]:
    """Get current request ID from context."""
    return request_id_var.get()


def set_feature(feature: Optional[str]) -> None:
    """Set the AI feature name in context for the current logical request."""
    feature_var.set(feature)


def get_feature() -> Optional[str]:
    """Get current AI feature name from context."""
    return feature_var.get()


def generate_request_id() -> str:
    """
    Generate a new unique request ID.

    Returns:
        UUID4 string
    """
    return str(uuid.uuid4())
