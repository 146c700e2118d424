"""Cooperative cancellation for awaits that touch the network or sleep."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable
from typing import TypeVar

from idxs.errors import RequestCancelledError

T = TypeVar("T")


def is_cancelled(signal: asyncio.Event | None) -> bool:
    return signal is not None and signal.is_set()


async def guard(awaitable: Awaitable[T], signal: asyncio.Event | None) -> T:
    """Await ``awaitable`` unless ``signal`` fires first.

    When the signal wins, the pending operation is cancelled and
    ``RequestCancelledError`` is raised.
    """

    if signal is None:
        return await awaitable

    task = asyncio.ensure_future(awaitable)
    if signal.is_set():
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        raise RequestCancelledError()

    waiter = asyncio.ensure_future(signal.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        finished = task.done()
        if not finished:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task

    if not finished:
        raise RequestCancelledError()
    return task.result()
