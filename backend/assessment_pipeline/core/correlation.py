"""Correlation ID helpers for tracing a workflow action across services.

The correlation ID lives in the asgi-correlation-id context variable, so an
embedding web app's middleware populates it per request. Callers outside a
request (workers, scripts, tests) can bind one explicitly.
"""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager

from asgi_correlation_id.context import correlation_id


def get_correlation_id() -> str | None:
    """Get the current correlation ID.

    Returns:
        Correlation ID string if one is bound, None otherwise.
    """
    try:
        return correlation_id.get()
    except LookupError:
        return None


def current_or_new_correlation_id() -> uuid.UUID:
    """Return the bound correlation ID as a UUID, or a fresh one.

    Non-UUID header values (clients may send any format) are mapped to a
    deterministic UUID so they still group together in the audit log.
    """
    cid = get_correlation_id()
    if not cid:
        return uuid.uuid4()
    try:
        return uuid.UUID(cid)
    except ValueError:
        return uuid.uuid5(uuid.NAMESPACE_OID, cid)


@contextmanager
def bind_correlation_id(value: str | None = None) -> Iterator[str]:
    """Bind a correlation ID for the duration of the block.

    Example:
        with bind_correlation_id() as cid:
            await lifecycle.start_assessment(request_id)
    """
    cid = value or str(uuid.uuid4())
    token = correlation_id.set(cid)
    try:
        yield cid
    finally:
        correlation_id.reset(token)


__all__ = ["bind_correlation_id", "current_or_new_correlation_id", "get_correlation_id"]
