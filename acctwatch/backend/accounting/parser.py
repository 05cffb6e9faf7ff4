"""
accounting/parser.py

Converts lines of the router's IP accounting page into FlowRecords.

Line grammar (one flow per line, whitespace separated):

    10.0.1.1 10.0.1.2 168 2 * *
    ^src     ^dst     ^bytes ^packets (trailing tokens ignored)

Design principles:
  - parse_line() never raises; it returns either a FlowRecord or a
    MalformedRecord describing why the line was rejected.
  - parse_document() never raises either. Malformed lines are dropped,
    logged as warnings and counted in METRICS.lines_malformed; the order
    of the surviving records matches the order of the input lines.
"""

from __future__ import annotations

import logging
import re

from ..metrics import METRICS
from ..models import (
    INSUFFICIENT_FIELDS,
    NOT_A_NUMBER,
    FlowRecord,
    MalformedRecord,
)

logger = logging.getLogger(__name__)

_MIN_FIELDS = 4
_MAX_COUNTER = 2**64 - 1

# Plain ASCII digits only: rejects signs, underscores and unicode digits
# that int() would otherwise accept.
_UINT_RE = re.compile(r"[0-9]+")


def _parse_counter(token: str) -> int | None:
    if not _UINT_RE.fullmatch(token):
        return None
    value = int(token)
    if value > _MAX_COUNTER:
        return None
    return value


def parse_line(line: str) -> FlowRecord | MalformedRecord:
    """
    Parse a single accounting line.

    Args:
        line: Raw text line, e.g. '192.168.1.1 192.168.0.2 42 6 * *'.

    Returns:
        FlowRecord on success, MalformedRecord when the line has fewer than
        four fields or a non-numeric byte/packet count.
    """
    items = line.split()
    if len(items) < _MIN_FIELDS:
        return MalformedRecord(
            reason=INSUFFICIENT_FIELDS,
            original_line=line,
            field_count=len(items),
        )

    byte_count = _parse_counter(items[2])
    if byte_count is None:
        return MalformedRecord(reason=NOT_A_NUMBER, original_line=line, field_name="byte")

    packet_count = _parse_counter(items[3])
    if packet_count is None:
        return MalformedRecord(reason=NOT_A_NUMBER, original_line=line, field_name="packet")

    return FlowRecord(
        source_address=items[0],
        destination_address=items[1],
        byte_count=byte_count,
        packet_count=packet_count,
    )


def parse_document(text: str) -> list[FlowRecord]:
    """
    Parse a whole accounting page body.

    Blank lines are skipped; malformed lines are logged and dropped.
    """
    records: list[FlowRecord] = []
    for line in text.splitlines():
        if not line.strip():
            continue
        result = parse_line(line)
        if isinstance(result, MalformedRecord):
            METRICS.lines_malformed.inc()
            logger.warning("Skipping accounting line: %s", result.message)
            continue
        records.append(result)

    METRICS.lines_parsed_ok.inc(len(records))
    return records
