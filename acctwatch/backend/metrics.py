"""
backend/metrics.py

Lightweight thread-safe diagnostic counters for the polling pipeline.
No external dependencies — uses Python's threading.Lock.

These complement the orchestrator's CycleReport: CycleReport is the
authoritative iteration/record count, METRICS tracks why cycles or lines
were lost.

Usage:
    from acctwatch.backend.metrics import METRICS
    METRICS.lines_malformed.inc()
    print(METRICS.as_dict())
"""

import threading


class Counter:
    """A thread-safe integer counter."""

    __slots__ = ("_value", "_lock")

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def inc(self, amount: int = 1) -> None:
        with self._lock:
            self._value += amount

    def reset(self) -> None:
        with self._lock:
            self._value = 0

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def __repr__(self) -> str:  # pragma: no cover
        return f"Counter({self._value})"


class Metrics:
    """Singleton holding all pipeline counters."""

    def __init__(self) -> None:
        # --- Parser ---
        self.lines_parsed_ok: Counter = Counter()
        """Accounting lines that produced a FlowRecord."""

        self.lines_malformed: Counter = Counter()
        """Non-blank lines dropped by parse_document()."""

        # --- Fetch ---
        self.fetch_failures: Counter = Counter()
        """Ticks aborted because the accounting page could not be read."""

        # --- Storage ---
        self.write_attempts_failed: Counter = Counter()
        """Individual write attempts that raised (retried or not)."""

        self.cycles_lost: Counter = Counter()
        """Cycles whose aggregate was dropped after exhausting retries."""

    def as_dict(self) -> dict:
        """Return all counters as a plain dict (safe for JSON serialisation)."""
        return {
            "lines_parsed_ok": self.lines_parsed_ok.value,
            "lines_malformed": self.lines_malformed.value,
            "fetch_failures": self.fetch_failures.value,
            "write_attempts_failed": self.write_attempts_failed.value,
            "cycles_lost": self.cycles_lost.value,
        }

    def reset_all(self) -> None:
        """Reset every counter to zero (useful in tests)."""
        for attr in vars(self).values():
            if isinstance(attr, Counter):
                attr.reset()


# Module-level singleton — import from here everywhere
METRICS = Metrics()
