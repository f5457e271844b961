"""
Structured logging for the Fixture Calendar services.
Uses structlog on top of stdlib logging so third-party loggers share one format.
"""
from __future__ import annotations

import logging
import socket
import sys
from typing import Any, Iterable

import structlog
from shared.config import Environment, get_settings


def setup_logging(service_name: str, extra_context: dict[str, Any] | None = None) -> None:
    """
    Configure structured logging for a service.

    Args:
        service_name: The process identifier (api, scheduler, pipeline).
        extra_context: Additional static fields bound to every log entry.
    """
    settings = get_settings()
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: structlog.types.Processor
    if settings.environment == Environment.DEV:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=shared_processors,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)

    for noisy in ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    structlog.contextvars.clear_contextvars()
    bound: dict[str, Any] = {"service": service_name, "host": socket.gethostname()}
    if extra_context:
        bound.update(extra_context)
    structlog.contextvars.bind_contextvars(**bound)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a named structured logger."""
    return structlog.get_logger(name)


def log_warnings(logger: structlog.stdlib.BoundLogger, warnings: Iterable[Any], **context: Any) -> int:
    """Emit one warning line per collected finding. Returns how many were logged."""
    count = 0
    for item in warnings:
        payload = item.as_dict() if hasattr(item, "as_dict") else {"message": str(item)}
        kind = payload.pop("kind", "warning")
        logger.warning(kind, **payload, **context)
        count += 1
    return count
