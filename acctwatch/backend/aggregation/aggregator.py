"""
aggregation/aggregator.py

Folds one cycle's FlowRecords into per-address TrafficCounters.

Two accumulators are kept, both keyed by address:
  sent     — [bytes, packets] for records where the address is the source
  received — [bytes, packets] for records where the address is the destination

The result covers the union of both key sets; a role the address never
appeared in stays at 0. Input order has no effect on the totals. The output
dict is ordered by address so storage writes are reproducible.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Iterable

from ..models import FlowRecord, TrafficCounters

logger = logging.getLogger(__name__)

_BYTES = 0
_PACKETS = 1


def aggregate(records: Iterable[FlowRecord]) -> dict[str, TrafficCounters]:
    """
    Build one TrafficCounters per address seen in ``records``.

    Conservation: for every address A,
        result[A].bytes_sent == sum(r.byte_count for r in records
                                    if r.source_address == A)
    and likewise for the other three fields.
    """
    sent: defaultdict[str, list[int]] = defaultdict(lambda: [0, 0])
    received: defaultdict[str, list[int]] = defaultdict(lambda: [0, 0])

    for r in records:
        src = sent[r.source_address]
        src[_BYTES] += r.byte_count
        src[_PACKETS] += r.packet_count

        dst = received[r.destination_address]
        dst[_BYTES] += r.byte_count
        dst[_PACKETS] += r.packet_count

    zero = (0, 0)
    result: dict[str, TrafficCounters] = {}
    for address in sorted(sent.keys() | received.keys()):
        s = sent.get(address, zero)
        d = received.get(address, zero)
        result[address] = TrafficCounters(
            bytes_sent=s[_BYTES],
            bytes_received=d[_BYTES],
            packets_sent=s[_PACKETS],
            packets_received=d[_PACKETS],
        )

    logger.debug("Aggregated %d addresses", len(result))
    return result
