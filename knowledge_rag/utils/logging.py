"""Structured logging setup using structlog.

One shared processor chain (context vars, level, stack info, ISO
timestamps) feeds either a coloured ConsoleRenderer for local work or a
JSONRenderer for production.  ``APP_ENV=production`` or ``json_output=True``
selects JSON.

Standard-library ``logging`` (uvicorn, httpx, chromadb, aiosqlite ...) is
routed through the same formatter so every line looks alike.
"""

from __future__ import annotations

import logging
import os
import sys

import structlog

# chromadb and httpx are chatty at INFO; keep them at WARNING unless the
# caller asks for DEBUG.
_NOISY_LOGGERS = ("chromadb", "httpx", "httpcore", "urllib3")


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> structlog.BoundLogger:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: Level name (DEBUG, INFO, WARNING, ERROR).
        json_output: Force JSON rendering.  Otherwise JSON is used only
            when ``APP_ENV`` is ``production``.

    Returns:
        A configured structlog BoundLogger.
    """
    level_name = log_level.upper()
    use_json = json_output or os.environ.get("APP_ENV", "development") == "production"

    shared = _shared_processors()
    if use_json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[*shared, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level_name)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *shared,
            renderer,
        ],
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level_name)

    if level_name != "DEBUG":
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    return structlog.get_logger()


def get_logger(name: str) -> structlog.BoundLogger:
    """Return a structlog logger bound with ``logger_name``.

    Configures logging with defaults if nothing has configured it yet.
    """
    if not structlog.is_configured():
        configure_logging()

    return structlog.get_logger(logger_name=name)
