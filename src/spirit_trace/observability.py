"""Structured logging configuration with structlog.

Modules log through `structlog.get_logger(__name__)` with snake_case event
names. Call `configure_logging` once at host start-up:

    configure_logging(level="INFO", fmt="json")     # machine-readable
    configure_logging(level="DEBUG", fmt="console")  # development

Secrets, identities, commitment openings and the reason a trace report was
rejected are never passed to a logger.
"""

from __future__ import annotations

import logging

import structlog
from structlog.typing import Processor

from spirit_trace.config import SpiritSettings


def _resolve_level(level: str) -> int:
    return getattr(logging, level.upper(), logging.INFO)


def configure_logging(level: str = "INFO", fmt: str = "console") -> None:
    """Configure structlog processors and output format.

    Args:
        level: Minimum level name (e.g. "INFO", "DEBUG")
        fmt: "json" for JSON lines, anything else for console output
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if fmt == "json":
        final_processor: Processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=shared_processors + [final_processor],
        wrapper_class=structlog.make_filtering_bound_logger(_resolve_level(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


def configure_from_settings(settings: SpiritSettings) -> None:
    configure_logging(level=settings.log_level, fmt=settings.log_format)
