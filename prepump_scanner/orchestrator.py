from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from .errors import Throttled, UpstreamError
from .models import RunMetrics

log = logging.getLogger("orchestrator")

T = TypeVar("T")
R = TypeVar("R")

Sleep = Callable[[float], Awaitable[None]]


class PauseGate:
    """Process-wide pause shared by every upstream call.

    ``trigger`` swaps in a fresh task that resolves after the pause;
    ``wait`` keeps re-reading the current task so a pause triggered while a
    caller is already waiting is observed too.
    """

    def __init__(self, metrics: Optional[RunMetrics] = None, *, sleep: Sleep = asyncio.sleep):
        self.metrics = metrics
        self._sleep = sleep
        self._pause: Optional[asyncio.Future] = None

    @property
    def active(self) -> bool:
        return self._pause is not None and not self._pause.done()

    def trigger(self, seconds: float, reason: str = "rate limiting") -> asyncio.Future:
        if self.metrics is not None:
            self.metrics.pauses += 1
        log.warning("pause_all seconds=%.1f reason=%s", seconds, reason)
        self._pause = asyncio.ensure_future(self._sleep(seconds))
        return self._pause

    async def wait(self) -> None:
        while self._pause is not None and not self._pause.done():
            # a cancelled waiter leaves the shared pause running
            await asyncio.shield(self._pause)


class RateLimitedFetcher:
    """Runs upstream calls behind the pause gate with a single retry on throttling.

    Returns ``None`` whenever the call cannot produce data; callers treat that
    as insufficient data, never as a reason to abort the run.
    """

    def __init__(self, gate: PauseGate, metrics: RunMetrics, *, pause_s: float = 31.0):
        self.gate = gate
        self.metrics = metrics
        self.pause_s = float(pause_s)

    async def call(self, fetch_fn: Callable[[], Awaitable[T]], label: str) -> Optional[T]:
        await self.gate.wait()
        try:
            return await fetch_fn()
        except Throttled:
            self.metrics.retries += 1
            if self.gate.active:
                log.debug("pause_join label=%s", label)
            else:
                self.gate.trigger(self.pause_s, reason=f"429 {label}")
            await self.gate.wait()
            try:
                out = await fetch_fn()
            except UpstreamError as e:
                self.metrics.retry_fail += 1
                log.warning("retry_failed label=%s err=%s", label, e)
                return None
            self.metrics.retry_success += 1
            log.debug("retry_ok label=%s", label)
            return out
        except UpstreamError as e:
            log.debug("fetch_failed label=%s err=%s", label, e)
            return None


async def run_in_batches(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    batch_size: int,
    concurrency: int,
    pause_between_s: float = 0.0,
    sleep: Sleep = asyncio.sleep,
) -> List[R]:
    """Run ``worker`` over ``items`` batch by batch.

    Batches are strictly sequential with ``pause_between_s`` between them;
    inside a batch at most ``concurrency`` workers run at once. Results come
    back in input order.
    """
    size = max(1, int(batch_size))
    sem = asyncio.Semaphore(max(1, int(concurrency)))

    async def _limited(item: T) -> R:
        async with sem:
            return await worker(item)

    results: List[R] = []
    for start in range(0, len(items), size):
        batch = items[start:start + size]
        log.debug("batch_start index=%d size=%d total=%d", start // size, len(batch), len(items))
        results.extend(await asyncio.gather(*[_limited(item) for item in batch]))
        if start + size < len(items) and pause_between_s > 0:
            log.debug("batch_sleep seconds=%.1f", pause_between_s)
            await sleep(pause_between_s)
    return results
