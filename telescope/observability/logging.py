"""
Structured logging for the watcher.

structlog renders both its own events and plain ``logging`` records from
the adapters, ledger and notifier through one ``ProcessorFormatter``, so
fields bound with ``log_context`` (tick id, platform) appear on every
line emitted while they are bound.

Production renders JSON lines; development renders colored console
output.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from typing import Any

import structlog
from structlog.types import Processor

from telescope.config.settings import get_settings

HANDLER_NAME = "telescope"

NOISY_LOGGERS = ("httpx", "httpcore", "asyncio")


def _renderer(production: bool) -> list[Processor]:
    if production:
        return [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]


def setup_logging() -> None:
    """
    Configure structlog and route stdlib logging through it.

    Safe to call more than once; a handler installed by an earlier call
    is replaced.

    Usage:
        setup_logging()
        with log_context(tick="3f9a1c2e", platform=Platform.TWITTER_SPACE):
            logger.info("Session started", session_id="1YqKDgDbNYyKV")
    """
    settings = get_settings()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta]
        + _renderer(settings.is_production),
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == HANDLER_NAME:
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.log_level))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """
    Bind fields to every log line emitted inside the block.

    Enum values (``Platform``, ``LiveStateKind``) are logged by value.
    Fields bound by an enclosing block are restored on exit.
    """
    bound = {
        key: value.value if isinstance(value, Enum) else value
        for key, value in fields.items()
    }
    with structlog.contextvars.bound_contextvars(**bound):
        yield
