"""Bounded store interactions.

Every call into the persistence collaborator runs under a deadline. A store
that does not answer in time surfaces as PersistenceError; the awaited
operation is cancelled and its unit of work rolls back on exit.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable
from typing import Any, TypeVar

from compliance_audit_core.errors import PersistenceError

T = TypeVar("T")

DEFAULT_STORE_TIMEOUT_SECONDS = 5.0

_EXHAUSTED = object()


async def bounded(operation: Awaitable[T], timeout: float, description: str = "Store", **context: Any) -> T:
    """Await a store operation for at most ``timeout`` seconds.

    Args:
        operation: The awaitable store interaction.
        timeout: Deadline in seconds.
        description: Name used in the error message.
        **context: Structured details attached to the error.

    Raises:
        PersistenceError: If the deadline passes first.
    """
    try:
        return await asyncio.wait_for(operation, timeout=timeout)
    except TimeoutError as exc:
        raise PersistenceError(f"{description} did not respond within {timeout}s", **context) from exc


async def bounded_iter(
    iterator: AsyncIterator[T],
    timeout: float,
    description: str = "Store",
    **context: Any,
) -> AsyncIterator[T]:
    """Yield from an async iterator, bounding every step by ``timeout``."""
    while True:
        item = await bounded(_step(iterator), timeout, description, **context)
        if item is _EXHAUSTED:
            return
        yield item


async def _step(iterator: AsyncIterator[T]) -> Any:
    try:
        return await anext(iterator)
    except StopAsyncIteration:
        return _EXHAUSTED
