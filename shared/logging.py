"""
Shared logging configuration for Switchboard services.

Loggers are named "<service>.<component>" (for example
"flags.evaluator"); the service part is lifted into its own field so log
pipelines can filter per service without parsing logger names.
Request and evaluation identifiers are bound through contextvars and merged
into every event logged while handling that request.
"""

import logging
import sys
import uuid
from typing import Any, Dict, Optional

import structlog
from opentelemetry import trace
from structlog.contextvars import bind_contextvars, clear_contextvars, merge_contextvars


def add_service_name(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    service, _, component = event_dict.get("logger", "").partition(".")
    if component:
        event_dict["service"] = service
    return event_dict


def add_trace_ids(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Attach OpenTelemetry trace/span ids when a span is recording."""
    span = trace.get_current_span()
    if not span.is_recording():
        return event_dict
    span_context = span.get_span_context()
    if span_context.trace_id:
        event_dict["trace_id"] = format(span_context.trace_id, "032x")
    if span_context.span_id:
        event_dict["span_id"] = format(span_context.span_id, "016x")
    return event_dict


# Processor chain shared by every service
PROCESSORS = (
    merge_contextvars,
    structlog.stdlib.filter_by_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.UnicodeDecoder(),
    add_service_name,
    add_trace_ids,
    structlog.processors.JSONRenderer(),
)


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Route structlog through stdlib logging as one JSON object per line."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    # Stdlib logging carries the rendered JSON to stdout
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    structlog.configure(
        processors=list(PROCESSORS),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    get_logger(f"{service_name}.logging").debug("Logging configured", level=log_level)


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id (generated when missing) to the current context."""
    request_id = request_id or str(uuid.uuid4())
    bind_contextvars(request_id=request_id)
    return request_id


def set_evaluation_context(
    project_id: Optional[str] = None,
    environment: Optional[str] = None,
    user_id: Optional[Any] = None
) -> None:
    """Bind project/environment/user to log events of the current context."""
    values = {
        "project_id": project_id,
        "environment": environment,
        "user_id": user_id,
    }
    bind_contextvars(**{key: value for key, value in values.items() if value})


def clear_context() -> None:
    clear_contextvars()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
