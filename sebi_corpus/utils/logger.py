"""
Structured logging configuration shared by the API and the CLI
"""

import logging
import sys

import structlog


def setup_logging(level: str = "INFO", json_output: bool = True):
    """
    Configure structlog with ISO timestamps and JSON output.

    Args:
        level: Standard library level name for the root logger
        json_output: Render JSON lines (API) or console lines (CLI)
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger()
