"""Session correlation ID logging context.

Attaches the active conversation session id to every log record, making
it easy to follow a single caller's turns through the engine, the
orchestrator and the dependency clients. Concurrent sessions each run in
their own task, so the id never bleeds between them.

Usage:
    from src.logging_context import get_session_logger, session_scope

    logger = get_session_logger(__name__)
    with session_scope("web-abc123"):
        logger.info("Processing turn")  # -> [web-abc123] Processing turn
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

NO_SESSION = "-"

_session_id: ContextVar[str] = ContextVar("session_id", default=NO_SESSION)


def get_session_id() -> str:
    """Retrieve the current correlation ID."""
    return _session_id.get()


@contextmanager
def session_scope(session_id: str) -> Iterator[None]:
    """Bind the session id for one turn and restore the previous id afterwards."""
    token = _session_id.set(session_id)
    try:
        yield
    finally:
        _session_id.reset(token)


class SessionIdFilter(logging.Filter):
    """Injects session_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = get_session_id()  # type: ignore[attr-defined]
        return True


def get_session_logger(name: str) -> logging.Logger:
    """Return a logger with the SessionIdFilter attached.

    The filter adds ``session_id`` to each record so formatters can
    include ``%(session_id)s`` in their format string.
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, SessionIdFilter) for f in logger.filters):
        logger.addFilter(SessionIdFilter())
    return logger
