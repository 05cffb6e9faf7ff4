"""
storage/influx.py

InfluxDB 1.x writer for per-address traffic points.

Design decisions:
  - Plain HTTP API (/query, /write) over httpx; no vendor client library.
  - One POST per cycle carrying every point, so a retry always resends the
    whole batch.
  - All points of a cycle share one millisecond timestamp taken when
    write() is called.
  - Counters above the signed 64-bit limit of line-protocol integers are
    clamped to it (with a warning) so one huge value cannot fail the batch.

Point layout (line protocol):

    IPTrafficData,ip=10.0.1.1,routerIp=192.168.88.1,type=LAN \
        isWan=0i,bytesSent=100i,bytesReceived=50i,packetsSent=1i,packetsReceived=1i \
        1700000000000
"""

from __future__ import annotations

import logging
import time
from typing import AbstractSet, Callable, Mapping

import httpx

from ..models import TrafficCounters

logger = logging.getLogger(__name__)

MEASUREMENT = "IPTrafficData"
_WRITE_TIMEOUT_SECONDS = 10.0
# Line-protocol integer fields are signed 64-bit.
_MAX_FIELD_INT = 2**63 - 1

_TAG_ESCAPES = str.maketrans({",": r"\,", " ": r"\ ", "=": r"\="})


class InfluxWriteError(Exception):
    """Storage rejected the request or could not be reached."""


def _escape_tag(value: str) -> str:
    return value.translate(_TAG_ESCAPES)


def _field_int(value: int) -> str:
    return f"{min(value, _MAX_FIELD_INT)}i"


def format_point(
    address: str,
    counters: TrafficCounters,
    is_local: bool,
    router: str,
    timestamp_ms: int,
) -> str:
    """
    Render one address's counters as a line-protocol record.

    Counters above the int64 maximum are written as that maximum.
    """
    tags = (
        f"ip={_escape_tag(address)},"
        f"routerIp={_escape_tag(router)},"
        f"type={'LAN' if is_local else 'WAN'}"
    )
    fields = (
        f"isWan={0 if is_local else 1}i,"
        f"bytesSent={_field_int(counters.bytes_sent)},"
        f"bytesReceived={_field_int(counters.bytes_received)},"
        f"packetsSent={_field_int(counters.packets_sent)},"
        f"packetsReceived={_field_int(counters.packets_received)}"
    )
    return f"{MEASUREMENT},{tags} {fields} {timestamp_ms}"


def _exceeds_field_int(c: TrafficCounters) -> bool:
    return max(c.bytes_sent, c.bytes_received, c.packets_sent, c.packets_received) > _MAX_FIELD_INT


class InfluxWriter:
    """
    Writes one cycle of TrafficCounters to InfluxDB.

    Args:
        url:              Server URL, e.g. "http://localhost:8086".
        database:         Target database name.
        router:           Router identifier stored as the routerIp tag.
        username/password: Optional credentials (sent as u/p query params).
        retention_policy: Retention policy name used for writes.
        retention_duration: Duration used when creating the database.
        transport:        Optional httpx transport (tests inject MockTransport).
        clock:            Returns the current time in seconds.
    """

    def __init__(
        self,
        url: str,
        database: str,
        router: str,
        username: str = "",
        password: str = "",
        retention_policy: str = "180_days_retention_policy",
        retention_duration: str = "180d",
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.url = url.rstrip("/")
        self.database = database
        self.router = router
        self.retention_policy = retention_policy
        self.retention_duration = retention_duration
        self._auth_params = {"u": username, "p": password} if username else {}
        self._transport = transport
        self._clock = clock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ensure_database(self) -> None:
        """Create the database and its retention policy if missing."""
        query = (
            f'CREATE DATABASE "{self.database}" '
            f"WITH DURATION {self.retention_duration} REPLICATION 1 "
            f'NAME "{self.retention_policy}"'
        )
        await self._post("/query", params={"q": query})
        logger.info(
            "Database ready — db=%r rp=%r", self.database, self.retention_policy
        )

    async def write(
        self,
        local_addresses: AbstractSet[str],
        counters: Mapping[str, TrafficCounters],
    ) -> int:
        """
        Write one point per address and return how many were accepted.

        Raises:
            InfluxWriteError: on transport failure or a non-2xx response.
        """
        if not counters:
            return 0

        clamped = [ip for ip in sorted(counters) if _exceeds_field_int(counters[ip])]
        if clamped:
            logger.warning(
                "Counters above %d clamped for %d address(es): %s",
                _MAX_FIELD_INT, len(clamped), ", ".join(clamped),
            )

        now_ms = int(self._clock() * 1000)
        lines = [
            format_point(ip, counters[ip], ip in local_addresses, self.router, now_ms)
            for ip in sorted(counters)
        ]
        await self._post(
            "/write",
            params={
                "db": self.database,
                "rp": self.retention_policy,
                "precision": "ms",
            },
            content="\n".join(lines).encode("utf-8"),
        )
        logger.debug("Wrote %d points to %r", len(lines), self.database)
        return len(lines)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _post(
        self,
        path: str,
        params: dict[str, str],
        content: bytes | None = None,
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                timeout=_WRITE_TIMEOUT_SECONDS,
                transport=self._transport,
            ) as client:
                resp = await client.post(
                    f"{self.url}{path}",
                    params={**params, **self._auth_params},
                    content=content,
                )
        except httpx.HTTPError as exc:
            raise InfluxWriteError(f"InfluxDB request {path} failed: {exc}") from exc

        if not resp.is_success:
            raise InfluxWriteError(
                f"InfluxDB {path} returned {resp.status_code}: {resp.text[:200]}"
            )
        return resp

    def __repr__(self) -> str:
        return f"InfluxWriter({self.url!r} db={self.database!r})"
