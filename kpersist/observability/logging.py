"""Structured logging configuration using structlog.

Every kpersist component logs through a structlog logger bound with a
``component`` key; per-entity workers additionally bind the entity kind and
name so that the lines of one tracker or follower can be grepped together.
"""

from __future__ import annotations

import logging
import sys

import structlog


def setup_logging(level: str = "info", fmt: str = "json") -> None:
    """Configure structlog for output to stderr.

    ``fmt`` selects the final renderer: ``json`` (one object per line) or
    ``console`` (human readable, for interactive runs).
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    renderer: structlog.typing.Processor
    if fmt == "console":
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    """Get a logger bound with a component name."""
    return structlog.get_logger(component=component)  # type: ignore[return-value]


def get_entity_logger(component: str, kind: str, name: str) -> structlog.stdlib.BoundLogger:
    """Get a component logger additionally bound to one watched entity."""
    return get_logger(component).bind(entity_kind=kind, entity=name)
