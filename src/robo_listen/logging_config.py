"""Process-wide logging setup using structlog.

Library modules log through ``logging.getLogger(__name__)``; this module
routes those records through structlog renderers once, at startup.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

import structlog

# Chatty at INFO: per-frame websocket traces and per-request HTTP lines
_NOISY_LOGGERS = ("websockets", "httpx", "httpcore")


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    stream: TextIO | None = None,
) -> logging.Handler:
    """Configure logging for the robo-listen process.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR).
        json_output: If True, write JSON lines; otherwise console output,
            coloured when ``stream`` is a terminal.
        stream: Where to write; defaults to stderr so transcripts printed
            on stdout stay clean.

    Returns:
        The handler installed on the root logger.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    stream = stream or sys.stderr

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        renderers: list[structlog.types.Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        renderers = [structlog.dev.ConsoleRenderer(colors=stream.isatty())]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *renderers],
            foreign_pre_chain=shared_processors,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    return handler
