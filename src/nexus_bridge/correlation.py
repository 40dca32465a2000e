"""
Correlation ids for log lines.

The process runs under one id, each websocket session under its own, and
each client request under its envelope id. Ids live in a contextvar, so they
follow the work across awaits and are inherited by tasks spawned inside the
scope.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Generator
from contextlib import contextmanager

__all__ = [
    "correlation_context",
    "generate_correlation_id",
    "get_correlation_id",
]

_current_id: contextvars.ContextVar[str | None] = contextvars.ContextVar("nexus_correlation_id", default=None)


def generate_correlation_id() -> str:
    """32 hex chars, no dashes."""
    return uuid.uuid4().hex


def get_correlation_id() -> str | None:
    return _current_id.get()


@contextmanager
def correlation_context(correlation_id: str | None = None) -> Generator[str]:
    """
    Scope ``correlation_id`` (or a fresh one) and restore the outer id on exit.

    Example:
        with correlation_context(request.id):
            logger.info("Handling setDeviceState")
    """
    scoped_id = correlation_id if correlation_id is not None else generate_correlation_id()
    token = _current_id.set(scoped_id)
    try:
        yield scoped_id
    finally:
        _current_id.reset(token)
