"""structlog configuration shared by the API server and the CLI.

Every log line passes through one processor chain (merged context vars,
level, ISO timestamp, exception info) and then through one of two renderers:
JSON when ``json_output`` is set or ``APP_ENV=production``, coloured console
output otherwise.

The stdlib root logger is pointed at the same chain, so uvicorn and the
HTTP clients used by the embedding providers render like ragcore's own
events.  Their request-level chatter is capped at WARNING unless ragcore
itself runs at DEBUG.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TextIO

import structlog

# Client libraries that log one line per HTTP request or SQL statement.
_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "aiosqlite")


def _shared_processors() -> list[structlog.types.Processor]:
    # merge_contextvars must run first: DocumentPipeline binds document_id
    # for the duration of a run and the CLI/API bind nothing else.
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = False,
    stream: TextIO | None = None,
) -> structlog.BoundLogger:
    """Install the ragcore processor chain for structlog and stdlib logging.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL.
        json_output: Render JSON regardless of ``APP_ENV``.
        stream: Where log lines go; stdout by default.  The CLI passes
                stderr so its JSON results on stdout stay parseable.

    Returns:
        The root structlog logger.
    """
    level_name = log_level.upper()
    use_json = json_output or os.environ.get("APP_ENV", "development") == "production"
    output = stream or sys.stdout

    processors = _shared_processors()
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if use_json
        else structlog.dev.ConsoleRenderer(colors=output.isatty())
    )

    structlog.configure(
        processors=[*processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level_name)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=output),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(output)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *processors,
                renderer,
            ],
        )
    )
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level_name)

    library_level = logging.DEBUG if level_name == "DEBUG" else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    return structlog.get_logger()


def get_logger(name: str) -> structlog.BoundLogger:
    """Return a structlog logger bound with ``logger_name``, configuring defaults on first use."""
    if not structlog.is_configured():
        configure_logging()
    return structlog.get_logger(logger_name=name)
