"""
backend/service.py

TrafficService — the polling-cycle orchestrator.

One tick walks a fixed state machine and then returns to IDLE:

    IDLE → FETCHING → PARSING → AGGREGATING → CLASSIFYING → WRITING → IDLE

Scheduling:
  - A single asyncio task runs ticks back to back; a tick never overlaps
    the next one.
  - Fixed-rate cadence: the first tick starts immediately, then each tick
    starts ``interval`` seconds after the previous one started, or right
    away if the previous tick overran.
  - A failed fetch or an exhausted write ends the tick early. The failure
    is logged and the schedule continues.

Shutdown:
  stop() sets the stop event so no new tick is scheduled, then waits up to
  3 × interval for the in-flight tick. After that the task is cancelled.
  The grace period is advisory: cancellation lands at the next await.

Counters (see CycleReport):
    iteration_count      — successful ticks
    written_record_count — points accepted by storage
  Both are advanced only by the service's own task.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum

from .accounting.client import BaseFetcher, FetchError
from .accounting.parser import parse_document
from .aggregation.aggregator import aggregate
from .classification.subnets import SubnetSet
from .metrics import METRICS
from .models import CycleReport
from .storage.retry import RetryingSink, WriteFailure

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 10.0
SHUTDOWN_GRACE_INTERVALS = 3


class CycleState(str, Enum):
    IDLE = "IDLE"
    FETCHING = "FETCHING"
    PARSING = "PARSING"
    AGGREGATING = "AGGREGATING"
    CLASSIFYING = "CLASSIFYING"
    WRITING = "WRITING"


class TrafficService:
    """
    Reads the accounting feed on a fixed cadence and writes per-address
    traffic points.

    Args:
        fetcher:  Source of the raw accounting page.
        subnets:  LAN prefixes used to tag addresses as local/external.
        sink:     Retrying wrapper around the storage write.
        interval: Seconds between tick starts, must be > 0.
    """

    def __init__(
        self,
        fetcher: BaseFetcher,
        subnets: SubnetSet,
        sink: RetryingSink,
        interval: float = DEFAULT_INTERVAL_SECONDS,
    ) -> None:
        if interval <= 0:
            raise ValueError("Invalid sleep time. Expected positive value")
        self._fetcher = fetcher
        self._subnets = subnets
        self._sink = sink
        self.interval = interval

        self._state = CycleState.IDLE
        self._iterations = 0
        self._records_written = 0

        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> CycleState:
        return self._state

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def report(self) -> CycleReport:
        return CycleReport(
            iteration_count=self._iterations,
            written_record_count=self._records_written,
        )

    # ------------------------------------------------------------------
    # One cycle
    # ------------------------------------------------------------------

    async def tick(self) -> bool:
        """
        Run one fetch → write cycle.

        Returns True if the cycle was written, False if it was abandoned.
        Never raises, apart from task cancellation.
        """
        try:
            return await self._run_cycle()
        except FetchError as exc:
            METRICS.fetch_failures.inc()
            logger.warning("Fetch failed — skipping cycle: %s", exc)
        except WriteFailure as exc:
            METRICS.cycles_lost.inc()
            logger.error("Cycle data lost: %s", exc)
        except Exception:
            logger.exception("Unexpected error during cycle")
        finally:
            self._state = CycleState.IDLE
        return False

    async def _run_cycle(self) -> bool:
        self._state = CycleState.FETCHING
        body = await self._fetcher.fetch()

        self._state = CycleState.PARSING
        records = parse_document(body)

        self._state = CycleState.AGGREGATING
        traffic = aggregate(records)

        self._state = CycleState.CLASSIFYING
        lan_ips = self._subnets.local_addresses(traffic)

        self._state = CycleState.WRITING
        written = await self._sink.write_cycle(lan_ips, traffic)

        self._records_written += written
        self._iterations += 1
        logger.debug(
            "Cycle %d: %d records → %d addresses (%d local), %d points written",
            self._iterations, len(records), len(traffic), len(lan_ips), written,
        )
        return True

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def run(self, stop_event: asyncio.Event) -> None:
        """Tick on a fixed-rate schedule until ``stop_event`` is set."""
        logger.info("Traffic service started — interval=%.1fs", self.interval)
        while not stop_event.is_set():
            started = time.monotonic()
            await self.tick()
            remaining = self.interval - (time.monotonic() - started)
            if remaining <= 0:
                continue
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                pass
        logger.info("Traffic service stopped — %s", self.report())

    def start(self) -> asyncio.Task:
        """Spawn the tick loop as a background task on the running loop."""
        if self.running:
            raise RuntimeError("Traffic service already running")
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self.run(self._stop_event), name="traffic")
        return self._task

    async def stop(self) -> None:
        """
        Stop scheduling ticks and wait for the in-flight one.

        Waits at most SHUTDOWN_GRACE_INTERVALS × interval, then cancels.
        Errors raised while waiting are logged, never propagated.
        """
        if self._task is None or self._stop_event is None:
            return
        self._stop_event.set()
        grace = SHUTDOWN_GRACE_INTERVALS * self.interval
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=grace)
        except asyncio.TimeoutError:
            logger.warning(
                "In-flight cycle did not finish within %.1fs — cancelling", grace
            )
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.warning("Error while cancelling traffic task: %s", exc)
        except Exception as exc:
            logger.warning("Error while waiting for traffic task: %s", exc)
        finally:
            self._task = None
            self._stop_event = None
