"""Bounded concurrency runner — fan a handler out over items, N at a time.

Workers pull the next index from a shared counter until the list is drained.
A handler that raises is counted and logged; it never cancels its siblings.

Called by: services/reconciliation.py, services/notifications.py
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence, TypeVar

from loguru import logger

T = TypeVar("T")


@dataclass
class RunStats:
    completed: int = 0
    failed: int = 0
    total: int = 0


async def run_bounded(
    items: Sequence[T],
    concurrency: int,
    handler: Callable[[T], Awaitable[object]],
) -> RunStats:
    """Run `handler` over every item with at most `concurrency` in flight."""
    if concurrency < 1:
        raise ValueError("concurrency must be >= 1")

    stats = RunStats(total=len(items))
    if not items:
        return stats

    next_index = 0

    async def worker(worker_id: int) -> None:
        nonlocal next_index
        while True:
            # Single-threaded event loop: read-and-increment cannot interleave
            idx = next_index
            if idx >= len(items):
                return
            next_index += 1
            try:
                await handler(items[idx])
                stats.completed += 1
            except Exception as e:
                stats.failed += 1
                logger.warning("Runner worker {} item {} failed: {}", worker_id, idx, e)

    workers = [worker(i) for i in range(min(concurrency, len(items)))]
    await asyncio.gather(*workers)
    return stats
