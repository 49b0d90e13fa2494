"""Async helpers for calling collaborators that may be sync or async."""

from __future__ import annotations

import asyncio
import functools
import inspect
from collections.abc import Awaitable, Callable
from contextlib import suppress
from typing import TypeVar

T = TypeVar("T")


async def call_maybe_async(func: Callable[..., T | Awaitable[T]], *args: object) -> T:
    """Await ``func(*args)``; sync callables run on a worker thread, off the event loop."""
    if inspect.iscoroutinefunction(func) or inspect.iscoroutinefunction(
        getattr(func, "__call__", None)  # noqa: B004
    ):
        return await func(*args)  # type: ignore[misc]
    result = await asyncio.to_thread(functools.partial(func, *args))
    if inspect.isawaitable(result):
        return await result
    return result


async def run_with_timeout(coroutine: Awaitable[T], timeout_seconds: float) -> T:
    """Run ``coroutine`` with a timeout, cancelling it when the timeout expires."""
    if timeout_seconds <= 0:
        _close_unscheduled_coroutine(coroutine)
        raise ValueError("timeout_seconds must be > 0")

    task: asyncio.Task[T] = asyncio.ensure_future(coroutine)
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout_seconds)
    except asyncio.CancelledError:
        task.cancel()
        raise
    if task in done:
        return task.result()

    task.cancel()
    with suppress(asyncio.CancelledError):
        await task
    raise TimeoutError(f"operation timed out after {timeout_seconds} seconds")


def _close_unscheduled_coroutine(awaitable: Awaitable[object]) -> None:
    # Closing raw coroutine objects avoids "coroutine was never awaited" at GC time.
    if inspect.iscoroutine(awaitable):
        awaitable.close()


__all__ = ["call_maybe_async", "run_with_timeout"]
