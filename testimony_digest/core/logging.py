"""
Logging setup for delivery cycles.

Every event carries the correlation ID of the cycle that produced it, so the
logs of one scheduled or HTTP-triggered run can be pulled out together.
"""

import logging
import sys
import uuid
from typing import List, Optional

import structlog
from rich.console import Console
from rich.logging import RichHandler

# Module level rather than a contextvar: recipient tasks run on worker threads
_correlation_id: Optional[str] = None

# Libraries whose INFO output drowns out cycle events
NOISY_LOGGERS = ("sqlalchemy.engine", "uvicorn.access", "httpx")


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Use ``correlation_id`` for subsequent events, generating one if empty."""
    global _correlation_id
    _correlation_id = correlation_id or uuid.uuid4().hex[:8]
    return _correlation_id


def get_correlation_id() -> Optional[str]:
    return _correlation_id


def add_correlation_id(logger, method_name, event_dict):
    """structlog processor stamping the current correlation ID."""
    if _correlation_id:
        event_dict.setdefault("correlation_id", _correlation_id)
    return event_dict


def _base_processors() -> List:
    return [
        structlog.contextvars.merge_contextvars,
        add_correlation_id,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.dev.set_exc_info,
    ]


def setup_logging(debug: bool = False, rich_output: bool = True) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        debug: Emit DEBUG events (digest sizes, per-query counts)
        rich_output: Colored console output; JSON lines otherwise
    """
    level = logging.DEBUG if debug else logging.INFO
    processors = _base_processors()

    if rich_output:
        processors.append(
            structlog.dev.ConsoleRenderer(exception_formatter=structlog.dev.rich_traceback)
        )
        handler: logging.Handler = RichHandler(
            console=Console(stderr=True), show_path=False, rich_tracebacks=True
        )
    else:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
        handler = logging.StreamHandler(sys.stdout)

    # Tenacity retry warnings and library logs go through the stdlib root logger
    logging.basicConfig(level=level, format="%(message)s", handlers=[handler], force=True)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level if debug else logging.WARNING)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)
