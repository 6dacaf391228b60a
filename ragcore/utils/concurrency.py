"""Bounded-concurrency helpers for per-chunk fan-out.

Once a document is chunked its chunks are independent, so embedding calls
may run concurrently.  :func:`throttled_gather` is a drop-in replacement
for ``asyncio.gather`` that wraps each awaitable in a semaphore so at most
N calls are in flight.  Each pipeline run creates its own semaphore; there
is no process-wide limiter shared between documents.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

_T = TypeVar("_T")


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore | None = None,
    limit: int = 4,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently with semaphore throttling.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Optional semaphore for concurrency control.  When omitted a fresh
        semaphore of size *limit* is created for this call.
    limit:
        Worker-pool size used when *semaphore* is not provided.  Values
        below 1 are treated as 1.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than being raised.  Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines, regardless of
        completion order.
    """
    if semaphore is None:
        semaphore = asyncio.Semaphore(max(1, limit))

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [_wrapped(c) for c in coros]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)
