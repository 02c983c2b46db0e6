"""Rate-limited background prefetching of child-level map views."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional

from loguru import logger

from electoral_atlas.cache import CacheKey, LevelCache
from electoral_atlas.errors import PrefetchFailure


@dataclass
class PrefetchReport:
    """Outcome of one prefetch run."""

    fetched: int = 0
    skipped: int = 0
    failed: int = 0
    failures: list[PrefetchFailure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.fetched + self.skipped + self.failed


def child_keys(
    parent: CacheKey, child_ids: Iterable[int], max_level: int = 5
) -> list[CacheKey]:
    """Keys of the next level down for each of ``child_ids`` shown in ``parent``."""
    if parent.level >= max_level:
        return []
    return [
        CacheKey(
            domain=parent.domain,
            level=parent.level + 1,
            parent_id=unit_id,
            variant=parent.variant,
        )
        for unit_id in child_ids
    ]


class ChildLevelPrefetcher:
    """Fills the cache for views the user is likely to drill into next.

    Keys are fetched in fixed-size concurrent batches with a pause between
    batches. Failures are logged and counted; they never propagate.

    Args:
        cache: Cache to fill
        fetcher: Coroutine function producing the payload for a key
        batch_size: Concurrent fetches per batch
        batch_delay: Seconds to wait between batches
    """

    def __init__(
        self,
        cache: LevelCache,
        fetcher: Callable[[CacheKey], Awaitable[Any]],
        batch_size: int = 10,
        batch_delay: float = 0.25,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.cache = cache
        self.fetcher = fetcher
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self._tasks: set[asyncio.Task] = set()

        # Keys claimed by a running or scheduled prefetch
        self._in_flight: set[CacheKey] = set()

    @property
    def in_flight(self) -> frozenset[CacheKey]:
        return frozenset(self._in_flight)

    def _claim(self, keys: Iterable[CacheKey], report: PrefetchReport) -> list[CacheKey]:
        pending: list[CacheKey] = []
        for key in keys:
            if self.cache.has(key) or key in self._in_flight:
                report.skipped += 1
                continue
            self._in_flight.add(key)
            pending.append(key)
        return pending

    def _release(self, keys: Iterable[CacheKey]) -> None:
        self._in_flight.difference_update(keys)

    async def _fetch_one(self, key: CacheKey, report: PrefetchReport) -> None:
        try:
            data = await self.fetcher(key)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            failure = PrefetchFailure(key, e)
            logger.warning("{}", failure)
            report.failed += 1
            report.failures.append(failure)
            return
        finally:
            self._in_flight.discard(key)
        self.cache.put(key, data)
        report.fetched += 1

    async def _run(self, pending: list[CacheKey], report: PrefetchReport) -> PrefetchReport:
        batches = [
            pending[i : i + self.batch_size] for i in range(0, len(pending), self.batch_size)
        ]
        logger.debug(
            "Prefetching {} views in {} batches ({} cached or in flight)",
            len(pending),
            len(batches),
            report.skipped,
        )

        try:
            for index, batch in enumerate(batches):
                if index > 0 and self.batch_delay > 0:
                    await asyncio.sleep(self.batch_delay)
                await asyncio.gather(*(self._fetch_one(key, report) for key in batch))
        finally:
            self._release(pending)

        logger.info(
            "Prefetch complete: {} fetched, {} skipped, {} failed",
            report.fetched,
            report.skipped,
            report.failed,
        )
        return report

    async def prefetch(self, keys: Iterable[CacheKey]) -> PrefetchReport:
        """Fetch and cache every key that is neither cached nor already being fetched."""
        report = PrefetchReport()
        return await self._run(self._claim(keys, report), report)

    def schedule(self, keys: Iterable[CacheKey]) -> Optional[asyncio.Task]:
        """
        Start a background prefetch on the running loop and return its task.

        Keys are claimed immediately, so a second schedule for the same keys
        before the first task runs does not fetch them again.

        Returns:
            The task, or None when every key is cached or already in flight
        """
        report = PrefetchReport()
        pending = self._claim(keys, report)
        if not pending:
            return None
        task = asyncio.get_running_loop().create_task(self._run(pending, report))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        # A task cancelled before its first step never reaches _run's cleanup
        task.add_done_callback(lambda t: self._release(pending) if t.cancelled() else None)
        return task

    async def drain(self) -> None:
        """Wait for all scheduled prefetches to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel(self) -> None:
        for task in list(self._tasks):
            task.cancel()
