"""
Relay Logging - Structured logging for guarded calls.

Every retry attempt, circuit transition, rate-limit wait and cancellation is
emitted as a structured event. Callers only ever see the final disposition of
a call; the log stream is the side channel that shows what happened on the
way there.

Manifesto:
    - **Structures:** JSON output for log aggregation (ELK, etc.)
    - **Correlates:** dependency and request_id propagated via contextvars
    - **Flexes:** Console output for development, JSON for production

Usage Flow:
    ::

        logger = get_logger(__name__)
        logger.info("retry_scheduled", dependency="billing", attempt=2, delay=0.8)

        Output (JSON format):
        {
          "@timestamp": "2026-10-18T10:00:00Z",
          "log.level": "info",
          "service.name": "relay",
          "event": "retry_scheduled",
          "dependency": "billing",
          "attempt": 2,
          "delay": 0.8
        }

Examples:
    >>> from relay.core.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", json_format=True, service="billing-client")
    >>> logger = get_logger(__name__)
    >>> logger.info("call_succeeded", dependency="billing", attempts=1)

Tags:
    logging, structlog, observability, ecs, json-logging, relay

Doc-Types:
    api-reference
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Store service name for metadata
_SERVICE_NAME = "relay"


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _elasticsearch_compatible(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Make field names Elasticsearch/ECS compatible."""
    if "timestamp" in event_dict:
        event_dict["@timestamp"] = event_dict.pop("timestamp")

    if "level" in event_dict:
        event_dict["log.level"] = event_dict.pop("level")

    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "relay",
    add_timestamp: bool = True,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
        add_timestamp: Include ISO timestamp in logs
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not sys.stdout.isatty()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]

    if add_timestamp:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if json_format:
        shared_processors.append(_elasticsearch_compatible)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger.

    Args:
        name: Logger name (usually __name__)
    """
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs.

    Example:
        bind_context(dependency="billing", request_id="abc123")
        logger.info("attempt_started")  # Includes dependency and request_id
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)
