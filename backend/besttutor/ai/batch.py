"""Bounded-concurrency batch processing for AI calls."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class BatchResult(Generic[T, R]):
    item: T
    result: R | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def chunk_list(items: Sequence[T], size: int) -> list[list[T]]:
    """Split ``items`` into consecutive lists of at most ``size`` elements."""
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


async def batch_process(
    items: Sequence[T],
    fn: Callable[[T, int], Awaitable[R]],
    *,
    concurrency: int = 5,
    batch_size: int | None = None,
    on_progress: Callable[[int, int], None] | None = None,
    on_error: Callable[[BaseException, T, int], None] | None = None,
    continue_on_error: bool = True,
    inter_batch_delay: float = 0.1,
) -> list[R | None]:
    """Run ``fn(item, index)`` over ``items`` and return results in input order.

    Items are processed in sequential chunks of ``batch_size`` (default: one
    chunk). Within a chunk at most ``concurrency`` calls run at once. A failed
    item leaves ``None`` in its slot when ``continue_on_error`` is true;
    otherwise the first error cancels the rest of the chunk and propagates.
    ``on_error(error, item, index)`` sees every failure before that decision.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")
    if batch_size is not None and batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    total = len(items)
    results: list[R | None] = [None] * total
    if total == 0:
        return results

    semaphore = asyncio.Semaphore(concurrency)
    completed = 0
    size = batch_size or total

    async def run_one(index: int, item: T) -> None:
        nonlocal completed
        async with semaphore:
            error: Exception | None = None
            try:
                results[index] = await fn(item, index)
            except Exception as exc:
                error = exc

            completed += 1
            if on_progress:
                on_progress(completed, total)

            if error is not None:
                if on_error:
                    on_error(error, item, index)
                if not continue_on_error:
                    raise error
                logger.warning("Batch item %d failed: %s", index, error)

    for chunk_start in range(0, total, size):
        if chunk_start > 0 and inter_batch_delay > 0:
            await asyncio.sleep(inter_batch_delay)

        chunk = items[chunk_start : chunk_start + size]
        tasks = [asyncio.create_task(run_one(chunk_start + offset, item)) for offset, item in enumerate(chunk)]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    return results


async def retry_failed_batch(
    items: Sequence[T],
    fn: Callable[[T], Awaitable[R]],
    max_retries: int = 3,
    *,
    concurrency: int = 3,
    delay_ms: int = 1000,
    on_retry: Callable[[int, T, BaseException], None] | None = None,
) -> list[BatchResult[T, R]]:
    """Attempt every item up to ``max_retries`` times with exponential backoff.

    Exactly one ``BatchResult`` is recorded per item, in input order. The wait
    before attempt ``n + 1`` is ``delay_ms * 2 ** (n - 1)`` milliseconds and
    ``on_retry(n, item, error)`` fires just before it.
    """
    if max_retries < 1:
        raise ValueError("max_retries must be at least 1")
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")

    semaphore = asyncio.Semaphore(concurrency)

    async def attempt_item(item: T) -> BatchResult[T, R]:
        async with semaphore:
            last_error: BaseException | None = None
            for attempt in range(1, max_retries + 1):
                try:
                    return BatchResult(item=item, result=await fn(item))
                except Exception as exc:
                    last_error = exc
                    if attempt < max_retries:
                        if on_retry:
                            on_retry(attempt, item, exc)
                        await asyncio.sleep(delay_ms * 2 ** (attempt - 1) / 1000)
            logger.warning("Item failed after %d attempts: %s", max_retries, last_error)
            return BatchResult(item=item, error=last_error)

    return list(await asyncio.gather(*(attempt_item(item) for item in items)))
