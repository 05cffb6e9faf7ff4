"""
tests/test_service.py

Tests for service.py — the tick state machine, failure containment,
counters, scheduling and shutdown.

Collaborators are in-memory fakes; backoff sleeps are recorded, not awaited.
"""

from __future__ import annotations

import asyncio

import pytest

from acctwatch.backend.accounting.client import BaseFetcher, FetchError
from acctwatch.backend.classification.subnets import SubnetSet
from acctwatch.backend.metrics import METRICS
from acctwatch.backend.models import CycleReport, TrafficCounters
from acctwatch.backend.service import CycleState, TrafficService
from acctwatch.backend.storage.retry import RetryingSink


@pytest.fixture(autouse=True)
def _reset_metrics():
    METRICS.reset_all()
    yield


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

FEED = "10.0.1.1 10.0.1.2 100 1\n10.0.1.2 10.0.1.1 50 1"


class StaticFetcher(BaseFetcher):
    def __init__(self, body: str = FEED, fail: bool = False) -> None:
        self.body = body
        self.fail = fail
        self.calls = 0

    async def fetch(self) -> str:
        self.calls += 1
        if self.fail:
            raise FetchError("Error listing accounting records. Received http status code 500")
        return self.body


class FakeStorage:
    """Records every write; fails the first ``failures`` attempts."""

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.attempts = 0
        self.writes: list[tuple[frozenset, dict]] = []

    async def write(self, local, counters) -> int:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError("storage down")
        self.writes.append((frozenset(local), dict(counters)))
        return len(counters)


async def _no_sleep(_delay: float) -> None:
    return None


def make_service(
    fetcher: BaseFetcher | None = None,
    storage: FakeStorage | None = None,
    subnets=("10.0.1.0/24",),
    max_retries: int = 3,
    interval: float = 10.0,
) -> tuple[TrafficService, FakeStorage]:
    storage = storage or FakeStorage()
    sink = RetryingSink(storage.write, max_retries=max_retries, sleep=_no_sleep)
    svc = TrafficService(
        fetcher=fetcher or StaticFetcher(),
        subnets=SubnetSet(subnets),
        sink=sink,
        interval=interval,
    )
    return svc, storage


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

class TestConstruction:

    @pytest.mark.parametrize("interval", [0, -1, -0.5])
    def test_rejects_non_positive_interval(self, interval):
        with pytest.raises(ValueError):
            make_service(interval=interval)

    def test_initial_state(self):
        svc, _ = make_service()
        assert svc.state is CycleState.IDLE
        assert svc.report() == CycleReport(0, 0)
        assert svc.running is False


# ---------------------------------------------------------------------------
# tick()
# ---------------------------------------------------------------------------

class TestTick:

    @pytest.mark.asyncio
    async def test_end_to_end_cycle(self):
        svc, storage = make_service()
        assert await svc.tick() is True

        assert len(storage.writes) == 1
        local, counters = storage.writes[0]
        assert local == {"10.0.1.1", "10.0.1.2"}
        assert counters == {
            "10.0.1.1": TrafficCounters(bytes_sent=100, bytes_received=50,
                                        packets_sent=1, packets_received=1),
            "10.0.1.2": TrafficCounters(bytes_sent=50, bytes_received=100,
                                        packets_sent=1, packets_received=1),
        }
        assert svc.report() == CycleReport(iteration_count=1, written_record_count=2)
        assert svc.state is CycleState.IDLE

    @pytest.mark.asyncio
    async def test_external_addresses_not_in_local_set(self):
        fetcher = StaticFetcher("10.0.1.1 8.8.8.8 500 5 * *\n8.8.8.8 10.0.1.1 900 6 * *")
        svc, storage = make_service(fetcher=fetcher)
        await svc.tick()
        local, counters = storage.writes[0]
        assert local == {"10.0.1.1"}
        assert set(counters) == {"10.0.1.1", "8.8.8.8"}

    @pytest.mark.asyncio
    async def test_counters_accumulate_across_ticks(self):
        svc, _ = make_service()
        for _ in range(3):
            await svc.tick()
        assert svc.report() == CycleReport(iteration_count=3, written_record_count=6)

    @pytest.mark.asyncio
    async def test_fetch_failure_skips_write(self):
        svc, storage = make_service(fetcher=StaticFetcher(fail=True))
        assert await svc.tick() is False
        assert storage.attempts == 0
        assert svc.report() == CycleReport(0, 0)
        assert METRICS.fetch_failures.value == 1
        assert svc.state is CycleState.IDLE

    @pytest.mark.asyncio
    async def test_retry_recovers_within_budget(self):
        svc, storage = make_service(storage=FakeStorage(failures=2), max_retries=3)
        assert await svc.tick() is True
        assert storage.attempts == 3
        assert len(storage.writes) == 1
        assert svc.report() == CycleReport(iteration_count=1, written_record_count=2)
        assert METRICS.cycles_lost.value == 0

    @pytest.mark.asyncio
    async def test_exhausted_retries_lose_cycle(self):
        svc, storage = make_service(storage=FakeStorage(failures=2), max_retries=2)
        assert await svc.tick() is False
        assert storage.writes == []
        assert svc.report() == CycleReport(iteration_count=0, written_record_count=0)
        assert METRICS.cycles_lost.value == 1
        assert svc.state is CycleState.IDLE

    @pytest.mark.asyncio
    async def test_lost_cycle_is_not_replayed(self):
        storage = FakeStorage(failures=1)
        svc, _ = make_service(storage=storage, max_retries=1)
        await svc.tick()
        await svc.tick()
        # Only the second cycle's batch reaches storage, once
        assert len(storage.writes) == 1
        assert svc.report().iteration_count == 1

    @pytest.mark.asyncio
    async def test_malformed_lines_do_not_fail_cycle(self):
        fetcher = StaticFetcher("10.0.1.1 10.0.1.2 100 1\nbroken\n10.0.1.2 10.0.1.1 x 1\n")
        svc, storage = make_service(fetcher=fetcher)
        assert await svc.tick() is True
        _, counters = storage.writes[0]
        assert counters["10.0.1.1"].bytes_sent == 100
        assert METRICS.lines_malformed.value == 2

    @pytest.mark.asyncio
    async def test_empty_feed_still_counts_iteration(self):
        svc, storage = make_service(fetcher=StaticFetcher(""))
        assert await svc.tick() is True
        assert svc.report() == CycleReport(iteration_count=1, written_record_count=0)
        assert storage.writes == [(frozenset(), {})]

    @pytest.mark.asyncio
    async def test_unexpected_error_contained(self):
        class Exploding(BaseFetcher):
            async def fetch(self) -> str:
                raise RuntimeError("kaboom")

        svc, _ = make_service(fetcher=Exploding())
        assert await svc.tick() is False
        assert svc.state is CycleState.IDLE

    @pytest.mark.asyncio
    async def test_state_transitions_observed(self):
        seen: list[CycleState] = []
        svc: TrafficService

        class Watching(BaseFetcher):
            async def fetch(self) -> str:
                seen.append(svc.state)
                return FEED

        async def watching_write(local, counters) -> int:
            seen.append(svc.state)
            return len(counters)

        svc = TrafficService(
            fetcher=Watching(),
            subnets=SubnetSet(["10.0.1.0/24"]),
            sink=RetryingSink(watching_write, sleep=_no_sleep),
        )
        await svc.tick()
        assert seen == [CycleState.FETCHING, CycleState.WRITING]
        assert svc.state is CycleState.IDLE


# ---------------------------------------------------------------------------
# Scheduling and shutdown
# ---------------------------------------------------------------------------

class TestScheduling:

    @pytest.mark.asyncio
    async def test_first_tick_runs_immediately(self):
        fetcher = StaticFetcher()
        svc, _ = make_service(fetcher=fetcher, interval=60.0)
        svc.start()
        await asyncio.sleep(0.05)
        assert fetcher.calls == 1
        assert svc.running
        await svc.stop()
        assert not svc.running
        assert svc.report().iteration_count == 1

    @pytest.mark.asyncio
    async def test_ticks_repeat_on_interval(self):
        fetcher = StaticFetcher()
        svc, _ = make_service(fetcher=fetcher, interval=0.02)
        svc.start()
        await asyncio.sleep(0.15)
        await svc.stop()
        assert fetcher.calls >= 3

    @pytest.mark.asyncio
    async def test_failed_ticks_do_not_stop_schedule(self):
        fetcher = StaticFetcher(fail=True)
        svc, _ = make_service(fetcher=fetcher, interval=0.02)
        svc.start()
        await asyncio.sleep(0.15)
        await svc.stop()
        assert fetcher.calls >= 3
        assert svc.report().iteration_count == 0

    @pytest.mark.asyncio
    async def test_ticks_never_overlap(self):
        active = 0
        max_active = 0

        class Slow(BaseFetcher):
            async def fetch(self) -> str:
                nonlocal active, max_active
                active += 1
                max_active = max(max_active, active)
                await asyncio.sleep(0.03)
                active -= 1
                return FEED

        svc, _ = make_service(fetcher=Slow(), interval=0.01)
        svc.start()
        await asyncio.sleep(0.15)
        await svc.stop()
        assert max_active == 1
        assert svc.report().iteration_count >= 2

    @pytest.mark.asyncio
    async def test_start_twice_rejected(self):
        svc, _ = make_service(interval=60.0)
        svc.start()
        try:
            with pytest.raises(RuntimeError):
                svc.start()
        finally:
            await svc.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self):
        svc, _ = make_service()
        await svc.stop()
        assert not svc.running

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_tick(self):
        release = asyncio.Event()

        class Blocking(BaseFetcher):
            async def fetch(self) -> str:
                await release.wait()
                return FEED

        svc, storage = make_service(fetcher=Blocking(), interval=1.0)
        svc.start()
        await asyncio.sleep(0.01)
        assert svc.state is CycleState.FETCHING

        stopper = asyncio.create_task(svc.stop())
        await asyncio.sleep(0.01)
        release.set()
        await stopper

        assert len(storage.writes) == 1
        assert svc.report().iteration_count == 1

    @pytest.mark.asyncio
    async def test_stop_cancels_after_grace_period(self):
        class Hung(BaseFetcher):
            async def fetch(self) -> str:
                await asyncio.Event().wait()
                return ""

        svc, storage = make_service(fetcher=Hung(), interval=0.01)
        svc.start()
        await asyncio.sleep(0.01)
        # grace = 3 × 0.01s; must return rather than hang
        await asyncio.wait_for(svc.stop(), timeout=1.0)
        assert not svc.running
        assert storage.attempts == 0
        assert svc.report().iteration_count == 0
