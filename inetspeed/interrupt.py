"""Cooperative cancellation for measurement tasks.

A run is governed by one :class:`asyncio.Event` (the *cancel event*), set
from the signal handlers installed by the CLI.  Blocking operations race
their work against it so an interrupt unblocks every in-flight request
promptly instead of waiting for its own timeout.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Optional


def is_cancelled(cancel: Optional[asyncio.Event]) -> bool:
    return cancel is not None and cancel.is_set()


async def race(
    aw: Awaitable[Any],
    cancel: Optional[asyncio.Event] = None,
    timeout: Optional[float] = None,
) -> tuple[bool, Any]:
    """Await *aw* unless *cancel* is set or *timeout* elapses first.

    Returns ``(True, result)`` when *aw* completed and ``(False, None)``
    when it lost; the losing work is cancelled and awaited before
    returning.  Exceptions raised by *aw* propagate unchanged.
    """
    task = asyncio.ensure_future(aw)
    if is_cancelled(cancel):
        await _discard(task)
        return False, None

    waiters: set[asyncio.Future] = {task}
    stopper: Optional[asyncio.Future] = None
    if cancel is not None:
        stopper = asyncio.ensure_future(cancel.wait())
        waiters.add(stopper)

    try:
        done, _ = await asyncio.wait(
            waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED,
        )
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        if stopper is not None:
            stopper.cancel()

    if task in done:
        return True, task.result()

    await _discard(task)
    return False, None


async def sleep(delay: float, cancel: Optional[asyncio.Event] = None) -> bool:
    """Sleep for *delay* seconds.  Returns False if *cancel* fired first."""
    finished, _ = await race(asyncio.sleep(delay), cancel)
    return finished


async def _discard(task: asyncio.Future) -> None:
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
