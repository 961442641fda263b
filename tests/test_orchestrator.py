import asyncio

from prepump_scanner.errors import Throttled, TransportFailure
from prepump_scanner.models import RunMetrics
from prepump_scanner.orchestrator import PauseGate, RateLimitedFetcher, run_in_batches


class ScriptedFetch:
    """Replays a list of outcomes: exceptions are raised, anything else returned."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        out = self.outcomes.pop(0)
        if isinstance(out, Exception):
            raise out
        return out


def _fetcher(sleeps):
    async def fake_sleep(seconds):
        sleeps.append(seconds)

    metrics = RunMetrics()
    gate = PauseGate(metrics, sleep=fake_sleep)
    return RateLimitedFetcher(gate, metrics, pause_s=31.0), metrics


def test_throttle_then_success_retries_once():
    sleeps = []

    async def run():
        fetcher, metrics = _fetcher(sleeps)
        fetch = ScriptedFetch([Throttled("429"), [1, 2, 3]])
        out = await fetcher.call(fetch, "kline AAA")
        return out, fetch, metrics

    out, fetch, metrics = asyncio.run(run())
    assert out == [1, 2, 3]
    assert fetch.calls == 2
    assert sleeps == [31.0]
    assert metrics.retries == 1 and metrics.retry_success == 1 and metrics.retry_fail == 0
    assert metrics.pauses == 1


def test_throttle_twice_gives_up():
    sleeps = []

    async def run():
        fetcher, metrics = _fetcher(sleeps)
        fetch = ScriptedFetch([Throttled("429"), Throttled("429"), "never"])
        out = await fetcher.call(fetch, "kline BBB")
        return out, fetch, metrics

    out, fetch, metrics = asyncio.run(run())
    assert out is None
    assert fetch.calls == 2
    assert metrics.retries == 1 and metrics.retry_fail == 1 and metrics.retry_success == 0


def test_transport_failure_is_not_retried():
    sleeps = []

    async def run():
        fetcher, metrics = _fetcher(sleeps)
        fetch = ScriptedFetch([TransportFailure("boom", status=500), "never"])
        out = await fetcher.call(fetch, "kline CCC")
        return out, fetch, metrics

    out, fetch, metrics = asyncio.run(run())
    assert out is None
    assert fetch.calls == 1
    assert sleeps == []
    assert metrics.retries == 0 and metrics.pauses == 0


def test_calls_after_an_elapsed_pause_run_immediately():
    sleeps = []

    async def run():
        fetcher, _ = _fetcher(sleeps)
        await fetcher.call(ScriptedFetch([Throttled("429"), "ok"]), "first")
        assert not fetcher.gate.active
        return await fetcher.call(ScriptedFetch(["later"]), "second")

    assert asyncio.run(run()) == "later"
    assert sleeps == [31.0]


def test_concurrent_throttles_share_one_pause():
    sleeps = []

    async def run():
        release = asyncio.Event()

        async def gated_sleep(seconds):
            sleeps.append(seconds)
            await release.wait()

        metrics = RunMetrics()
        fetcher = RateLimitedFetcher(PauseGate(metrics, sleep=gated_sleep), metrics, pause_s=31.0)
        fetches = [ScriptedFetch([Throttled("429"), name]) for name in ("a", "b", "c")]
        tasks = [asyncio.ensure_future(fetcher.call(f, "kline")) for f in fetches]
        for _ in range(5):
            await asyncio.sleep(0)
        assert fetcher.gate.active
        release.set()
        return await asyncio.gather(*tasks), metrics

    results, metrics = asyncio.run(run())
    assert results == ["a", "b", "c"]
    assert sleeps == [31.0]
    assert metrics.pauses == 1
    assert metrics.retries == 3 and metrics.retry_success == 3


def test_waiters_hold_until_the_shared_pause_ends():
    order = []

    async def run():
        release = asyncio.Event()

        async def gated_sleep(seconds):
            order.append(("pause", seconds))
            await release.wait()

        gate = PauseGate(sleep=gated_sleep)
        gate.trigger(5.0)

        async def waiter(name):
            await gate.wait()
            order.append(("resumed", name))

        tasks = [asyncio.ensure_future(waiter(n)) for n in ("a", "b")]
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert gate.active
        assert order == [("pause", 5.0)]
        release.set()
        await asyncio.gather(*tasks)
        assert not gate.active

    asyncio.run(run())
    assert order == [("pause", 5.0), ("resumed", "a"), ("resumed", "b")]


def test_batches_are_sequential_ordered_and_bounded():
    sleeps = []
    in_flight = {"now": 0, "max": 0}
    seen = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)
        seen.append("sleep")

    async def worker(item):
        in_flight["now"] += 1
        in_flight["max"] = max(in_flight["max"], in_flight["now"])
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        in_flight["now"] -= 1
        seen.append(item)
        return item * 10

    async def run():
        return await run_in_batches(
            list(range(7)), worker, batch_size=3, concurrency=2, pause_between_s=10.0, sleep=fake_sleep
        )

    out = asyncio.run(run())
    assert out == [0, 10, 20, 30, 40, 50, 60]
    assert sleeps == [10.0, 10.0]
    assert in_flight["max"] == 2
    # every item of a batch finishes before the next batch starts
    first_sleep = seen.index("sleep")
    assert sorted(seen[:first_sleep]) == [0, 1, 2]
    assert seen[-1] != "sleep"


def test_batches_with_empty_input():
    async def worker(item):
        return item

    assert asyncio.run(run_in_batches([], worker, batch_size=5, concurrency=2)) == []
