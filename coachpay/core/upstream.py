"""
Helpers for calling blocking upstream clients (Stripe, Firestore) from async code.
"""
import asyncio
import functools
from typing import Any, Awaitable, Callable, Iterable, List, TypeVar

from coachpay.core.errors import UpstreamTimeoutError

T = TypeVar("T")


async def call_upstream(fn: Callable[..., T], *args: Any, timeout: float, **kwargs: Any) -> T:
    """
    Run a blocking client call in a worker thread, bounded by timeout.

    Raises:
        UpstreamTimeoutError: If the call does not finish within timeout seconds
    """
    name = getattr(fn, "__name__", "upstream call")
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(functools.partial(fn, *args, **kwargs)),
            timeout=timeout,
        )
    except asyncio.TimeoutError as e:
        raise UpstreamTimeoutError(f"{name} timed out after {timeout:g}s") from e


async def gather_bounded(coros: Iterable[Awaitable[T]], limit: int) -> List[T]:
    """
    Await all coroutines with at most `limit` in flight.

    Results keep input order. The first failure cancels the rest and is re-raised.
    """
    sem = asyncio.Semaphore(max(1, limit))

    async def _runner(coro: Awaitable[T]) -> T:
        async with sem:
            return await coro

    tasks = [asyncio.ensure_future(_runner(c)) for c in coros]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        # Let cancelled tasks settle so nothing is left pending
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
