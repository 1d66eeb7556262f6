"""
Correlation ids for tracing one unit of work through the logs.

A unit of work is a connect cycle, a keep-alive tick, or the dispatch of one
inbound message. The id lives in a context variable, so every task spawned
from inside a scope inherits it.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Generator
from contextlib import contextmanager

__all__ = [
    "correlation_scope",
    "current_correlation_id",
    "ensure_correlation_id",
    "new_correlation_id",
]

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "relay_correlation_id",
    default=None,
)


def new_correlation_id(kind: str | None = None) -> str:
    """
    Build a fresh correlation id.

    Args:
        kind: Optional short tag prepended to the id (e.g. "msg", "conn")

    Returns:
        "<kind>-<12 hex chars>" or 32 hex chars when no kind is given
    """
    if kind:
        return f"{kind}-{uuid.uuid4().hex[:12]}"
    return uuid.uuid4().hex


def current_correlation_id() -> str | None:
    return _correlation_id.get()


@contextmanager
def correlation_scope(kind: str | None = None, correlation_id: str | None = None) -> Generator[str]:
    """
    Run the enclosed block under its own correlation id.

    The previous id is restored on exit, so scopes nest.

    Example:
        with correlation_scope("msg") as cid:
            logger.info("dispatching")  # tagged with cid
    """
    cid = correlation_id or new_correlation_id(kind)
    token = _correlation_id.set(cid)
    try:
        yield cid
    finally:
        _correlation_id.reset(token)


def ensure_correlation_id() -> str:
    """Return the current id, creating one for this context if none is set."""
    cid = _correlation_id.get()
    if cid is None:
        cid = new_correlation_id()
        _ = _correlation_id.set(cid)
    return cid
