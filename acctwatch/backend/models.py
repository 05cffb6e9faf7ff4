"""
backend/models.py

Shared dataclasses for every stage of the polling cycle.
Defining all of them here locks the inter-stage contracts early so the
parser, aggregator, classifier and sink can be developed independently.

Lifecycle:
  FlowRecord       — one per accounting line, lives for one cycle
  MalformedRecord  — parse failure variant returned by parse_line()
  TrafficCounters  — one per address per cycle, discarded after the write
  CycleReport      — snapshot of the orchestrator's monotonic counters
"""

from __future__ import annotations

from dataclasses import dataclass

INSUFFICIENT_FIELDS = "insufficient fields"
NOT_A_NUMBER = "not a number"


# ---------------------------------------------------------------------------
# Stage 1 — Parser output
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class FlowRecord:
    """One accounted flow between two addresses."""

    source_address: str
    """Source IP literal, e.g. '10.0.1.1'."""

    destination_address: str
    """Destination IP literal, e.g. '10.0.1.2'."""

    byte_count: int
    """Bytes accounted for the flow (>= 0)."""

    packet_count: int
    """Packets accounted for the flow (>= 0)."""


@dataclass(frozen=True, slots=True)
class MalformedRecord:
    """
    Failure variant of parse_line().

    reason is one of:
      'insufficient fields' — field_count is set
      'not a number'        — field_name is 'byte' or 'packet'
    """

    reason: str
    original_line: str
    field_count: int | None = None
    field_name: str | None = None

    @property
    def message(self) -> str:
        if self.reason == INSUFFICIENT_FIELDS:
            return (
                f"Expected line with 4 parameters but found only "
                f"{self.field_count}: '{self.original_line}'"
            )
        return (
            f"Line with invalid number for field "
            f"'{self.field_name}': '{self.original_line}'"
        )

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Stage 2 — Aggregation output
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class TrafficCounters:
    """Per-address totals for one cycle. Missing roles stay at 0."""

    bytes_sent: int = 0
    bytes_received: int = 0
    packets_sent: int = 0
    packets_received: int = 0


# ---------------------------------------------------------------------------
# Orchestrator counters
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class CycleReport:
    """Point-in-time copy of the orchestrator's counters."""

    iteration_count: int = 0
    """Cycles that completed fetch → write successfully."""

    written_record_count: int = 0
    """Points accepted by storage since startup."""

    @property
    def average_records(self) -> float:
        if self.iteration_count == 0:
            return 0.0
        return self.written_record_count / self.iteration_count
