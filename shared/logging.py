"""
Shared logging configuration for the CampusNest listings cache guard.

Every lookup carries a short lookup ID in a context variable so the filter,
cache, guard and store log lines of one request can be joined.
"""

import sys
import structlog
import logging
import uuid
import time
from contextvars import ContextVar
from typing import Any, Dict, Optional


lookup_id_var: ContextVar[Optional[str]] = ContextVar("lookup_id", default=None)
listing_id_var: ContextVar[Optional[str]] = ContextVar("listing_id", default=None)


def configure_logging(service_name: str, log_level: str = "info", *, json_logs: bool = True) -> None:
    """Configure structured logging for the service.

    ``json_logs=False`` switches to the console renderer for local runs.
    """
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_service_context,
            add_lookup_context,
            add_timestamp,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )
    structlog.get_logger(service_name).debug("Logging configured", log_level=log_level, json_logs=json_logs)


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Derive ``service`` from a dotted logger name such as ``listings.cache``."""
    logger_name = event_dict.get("logger", "")
    if "." in logger_name:
        event_dict["service"] = logger_name.split(".")[0]
        event_dict["component"] = logger_name.split(".", 1)[1]

    return event_dict


def add_lookup_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Attach the current lookup ID and listing ID, if any."""
    lookup_id = lookup_id_var.get()
    if lookup_id:
        event_dict.setdefault("lookup_id", lookup_id)

    listing_id = listing_id_var.get()
    if listing_id is not None:
        event_dict.setdefault("listing_id", listing_id)

    return event_dict


def add_timestamp(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add high-precision timestamp to log events."""
    event_dict["timestamp"] = time.time()
    return event_dict


def set_lookup_context(listing_id: Any, lookup_id: Optional[str] = None) -> str:
    """Start a lookup scope for the current task; returns its lookup ID."""
    if lookup_id is None:
        lookup_id = uuid.uuid4().hex[:12]
    lookup_id_var.set(lookup_id)
    listing_id_var.set(str(listing_id))
    return lookup_id


def clear_lookup_context() -> None:
    lookup_id_var.set(None)
    listing_id_var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
