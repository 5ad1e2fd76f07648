"""Logging setup shared by the API process."""

from __future__ import annotations

import logging
from contextvars import ContextVar

LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] [session=%(session_id)s] %(message)s"

# Correlation id for the request currently being processed
current_session_id: ContextVar[str] = ContextVar("current_session_id", default="-")


class SessionFilter(logging.Filter):
    """Attach the active session id to every record that lacks one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "session_id"):
            record.session_id = current_session_id.get()
        return True


def configure_logging(level: str = "INFO") -> None:
    """Install a console handler on the ``arcade_gate`` logger tree.

    Safe to call more than once; the handler is only added the first time.
    """
    logger = logging.getLogger("arcade_gate")
    logger.setLevel(level.upper())
    if any(getattr(handler, "_arcade_gate", False) for handler in logger.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(SessionFilter())
    handler._arcade_gate = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
