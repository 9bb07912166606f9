"""
Logging setup for apiary.

Library modules only create loggers with logging.getLogger(__name__);
configure_logging() is called by the CLI. Records carry the id of the
request being operated on, taken from a context variable.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Generator, Optional

request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> str:
    """Return the request id bound to the current context, or "-"."""
    return request_id_ctx.get() or "-"


@contextmanager
def bind_request_id(request_id: str) -> Generator[None, None, None]:
    """Bind a request id to log records emitted inside the block."""
    token = request_id_ctx.set(request_id)
    try:
        yield
    finally:
        request_id_ctx.reset(token)


class RequestIDFilter(logging.Filter):
    """Injects request_id into log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        return True


def configure_logging(level: str = "WARNING") -> None:
    """Configure the root logger with a format that includes the request id."""
    logger = logging.getLogger()
    logger.setLevel(level.upper())

    # Remove existing handlers to avoid duplication
    if logger.handlers:
        logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | [%(request_id)s] | %(name)s - %(message)s"
    )
    handler.setFormatter(formatter)
    handler.addFilter(RequestIDFilter())
    logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
