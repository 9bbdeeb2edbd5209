"""Bounded fan-out across independent scopes."""

import asyncio
from typing import Awaitable, Callable, Iterable, List, TypeVar

T = TypeVar("T")


async def gather_bounded(
    jobs: Iterable[Callable[[], Awaitable[T]]],
    limit: int,
    return_exceptions: bool = False,
) -> List[T]:
    """
    Run job factories concurrently, at most ``limit`` at a time.

    Results keep the order of ``jobs``.
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def run(job: Callable[[], Awaitable[T]]) -> T:
        async with semaphore:
            return await job()

    return await asyncio.gather(*(run(job) for job in jobs), return_exceptions=return_exceptions)
