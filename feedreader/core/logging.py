"""
Feed Reader - Logging

Root logging configuration with feed/file correlation fields.

Every record carries `feed=` and `file=` fields. Inside a `log_context()`
block they are filled from context variables, so all lines logged while a
file is processed name the feed and the file without threading them through
each call.

Usage:
    from feedreader.core.logging import configure_logging, log_context

    configure_logging("INFO")

    with log_context(feed="msc_voice", file="CDR_0001.txt"):
        logger.info("Processing started")
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Generator

_feed: ContextVar[str] = ContextVar("feed", default="-")
_file: ContextVar[str] = ContextVar("file", default="-")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] feed=%(feed)s file=%(file)s %(name)s %(message)s"


class ContextFilter(logging.Filter):
    """Inject the current feed/file context into each log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.feed = _feed.get()
        record.file = _file.get()
        return True


@contextmanager
def log_context(feed: str | None = None, file: str | None = None) -> Generator[None, None, None]:
    """Set feed/file logging fields for the duration of the block."""
    tokens = []
    if feed is not None:
        tokens.append((_feed, _feed.set(feed)))
    if file is not None:
        tokens.append((_file, _file.set(file)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def _resolve_level(level_name: str) -> int:
    return getattr(logging, level_name.upper(), logging.INFO)


def _build_formatter() -> logging.Formatter:
    return logging.Formatter(LOG_FORMAT, defaults={"feed": "-", "file": "-"})


def configure_logging(level_name: str | None = None) -> None:
    """Configure root logging using the given level (or LOG_LEVEL) and the feed format."""
    level = _resolve_level(level_name or os.getenv("LOG_LEVEL", "INFO"))
    formatter = _build_formatter()
    root_logger = logging.getLogger()

    if not root_logger.handlers:
        logging.basicConfig(level=level)

    root_logger.setLevel(level)
    for handler in root_logger.handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        if not any(isinstance(f, ContextFilter) for f in handler.filters):
            handler.addFilter(ContextFilter())
