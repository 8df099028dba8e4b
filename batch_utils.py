"""Sentence-count batching and bounded-concurrency scheduling."""

import asyncio
from typing import Awaitable, Callable, Sequence, TypeVar

T = TypeVar("T")


def calculate_batch_sizes(total: int, target: int, min_size: int, max_size: int) -> list[int]:
    """
    Split `total` items into batch sizes close to `target`.

    A tail that would fall below `min_size` is folded into the last batches:
    up to `max_size` it becomes one batch, up to `max_size + min_size` it is
    halved, anything larger takes a `target`-sized batch and continues.
    """
    if total <= 0:
        return []
    if total <= target:
        return [total]

    sizes: list[int] = []
    remaining = total
    while remaining > 0:
        if remaining <= max_size:
            sizes.append(remaining)
            remaining = 0
        elif remaining <= max_size + min_size:
            first = (remaining + 1) // 2
            sizes.extend([first, remaining - first])
            remaining = 0
        else:
            sizes.append(target)
            remaining -= target
    return sizes


def batch_by_sentence_count(
    sentences: Sequence[T],
    first_size: int,
    min_size: int,
    max_size: int,
) -> list[list[T]]:
    """First batch of `first_size`, the rest sized within [min_size, max_size]."""
    if not sentences:
        return []

    batches = [list(sentences[:first_size])]
    rest = sentences[first_size:]
    start = 0
    for size in calculate_batch_sizes(len(rest), max_size, min_size, max_size):
        batches.append(list(rest[start:start + size]))
        start += size
    return batches


async def gather_with_limit(factories: Sequence[Callable[[], Awaitable[T]]], limit: int) -> list[T]:
    """
    Run coroutine factories with at most `limit` in flight; results keep input order.

    The first exception cancels everything still pending and is re-raised.
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def run(factory: Callable[[], Awaitable[T]]) -> T:
        async with semaphore:
            return await factory()

    tasks = [asyncio.ensure_future(run(f)) for f in factories]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
