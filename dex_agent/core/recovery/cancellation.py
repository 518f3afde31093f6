"""Cooperative cancellation for a single orchestrator turn.

A turn carries an optional ``asyncio.Event``; setting it makes every pending
network call, backoff sleep and loop round abort with
:class:`TurnCancelledError`.
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

from .errors import TurnCancelledError

T = TypeVar("T")


def raise_if_cancelled(cancel_event: Optional[asyncio.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise TurnCancelledError()


async def run_cancellable(awaitable: Awaitable[T], cancel_event: Optional[asyncio.Event]) -> T:
    """Await ``awaitable`` unless ``cancel_event`` fires first."""
    if cancel_event is None:
        return await awaitable

    raise_if_cancelled(cancel_event)
    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        waiter.cancel()
        raise

    if task in done:
        waiter.cancel()
        return task.result()

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    raise TurnCancelledError()


async def sleep_cancellable(delay: float, cancel_event: Optional[asyncio.Event]) -> None:
    """Backoff sleep that wakes up early when the turn is cancelled."""
    if cancel_event is None:
        await asyncio.sleep(delay)
        return

    raise_if_cancelled(cancel_event)
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return
    raise TurnCancelledError()
