"""Cooperative cancellation for streaming and non-streaming calls."""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from unillm.errors import CancelledStreamError

T = TypeVar("T")


class CancellationToken:
    """Signals that the caller no longer wants the result of a call.

    One token may be shared by several calls; cancelling it stops all of
    them at their next suspension point.

    Example::

        token = CancellationToken()
        task = asyncio.create_task(consume(provider.stream(msgs, cancel_token=token)))
        ...
        token.cancel("user pressed stop")
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation.  Idempotent; the first reason wins."""
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CancelledStreamError(self.reason or "Request cancelled")


async def run_cancellable(
    awaitable: Awaitable[T],
    token: CancellationToken | None,
) -> T:
    """Await *awaitable*, abandoning it as soon as *token* fires.

    Raises:
        CancelledStreamError: If the token was cancelled first.
    """
    if token is None:
        return await awaitable
    task = asyncio.ensure_future(awaitable)
    if token.cancelled:
        task.cancel()
        token.raise_if_cancelled()
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()
    if not task.done():
        task.cancel()
        await asyncio.wait({task})
        token.raise_if_cancelled()
    return task.result()
