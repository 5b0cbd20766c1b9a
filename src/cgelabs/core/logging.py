"""
Structured logging for the CGELabs service.

structlog renders through the stdlib root logger so uvicorn and asyncio
records share one format. Job tasks bind ``job_id``/``kind`` with
:func:`bind_context`; each task owns a copy of the context, so bindings
never leak between concurrent jobs.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import Processor

if TYPE_CHECKING:
    from cgelabs.config import Settings

# Libraries that log every request or selector event at INFO
NOISY_LOGGERS = ("uvicorn.access", "asyncio")


def _renderer(json_format: bool) -> Processor:
    if json_format:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """
    Route structlog and stdlib records through a single stdout handler.

    Args:
        level: Root log level name; unknown names fall back to INFO
        json_format: One JSON object per line instead of console output
    """
    shared: list[Processor] = [
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
    ]
    if json_format:
        shared.append(structlog.processors.format_exc_info)

    structlog.configure(
        processors=shared + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(json_format),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def configure_logging(settings: Settings) -> None:
    """Apply the logging options carried by ``settings``."""
    setup_logging(
        level="DEBUG" if settings.debug else settings.log_level,
        json_format=settings.json_logs or settings.is_production(),
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Attach ``kwargs`` to every record logged from the current context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
