# =============================================================================
# NetSmart -- Cancellation
# =============================================================================
#
# Cooperative cancellation for a single call.  A token is shared between the
# backoff wait and the in-flight transport call; cancelling it wakes both.
# =============================================================================

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from .errors import CallCancelledError

T = TypeVar("T")


class CancellationToken:
    """One-shot cancellation flag backed by an :class:`asyncio.Event`."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "Cancelled") -> None:
        """Cancel the token. Later calls keep the first reason."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CallCancelledError(self._reason or "Cancelled")

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "active"
        return f"<CancellationToken {state}>"


async def sleep_cancellable(delay: float, token: CancellationToken | None = None) -> None:
    """Sleep *delay* seconds, failing fast if *token* is or becomes cancelled.

    Raises:
        CallCancelledError: Token already cancelled, or cancelled mid-wait.
    """
    if token is None:
        await asyncio.sleep(delay)
        return

    token.raise_if_cancelled()
    try:
        await asyncio.wait_for(token.wait(), timeout=max(0.0, delay))
    except asyncio.TimeoutError:
        return
    raise CallCancelledError(token.reason or "Cancelled")


async def run_cancellable(
    aw: Awaitable[T], token: CancellationToken | None = None
) -> T:
    """Await *aw*, aborting it as soon as *token* is cancelled.

    Raises:
        CallCancelledError: The token fired before *aw* completed.
    """
    if token is None:
        return await aw

    if token.cancelled:
        if asyncio.iscoroutine(aw):
            aw.close()
        raise CallCancelledError(token.reason or "Cancelled")

    work: asyncio.Future[T] = asyncio.ensure_future(aw)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        waiter.cancel()
        raise

    if work.done():
        waiter.cancel()
        return work.result()

    work.cancel()
    await asyncio.gather(work, return_exceptions=True)
    raise CallCancelledError(token.reason or "Cancelled")
