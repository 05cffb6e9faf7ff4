"""
accounting/client.py

Fetches the router's plaintext IP accounting page.

Responsibilities:
  - GET http://<router>/accounting/ip.cgi (or an explicit URL)
  - Treat transport errors and any non-200 status as FetchError
  - Hand back the raw body text; parsing is left to accounting/parser.py

Usage:
    client = AccountingClient(router_host="192.168.88.1")
    body = await client.fetch()
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx

from ..models import FlowRecord
from .parser import parse_document

logger = logging.getLogger(__name__)

_FETCH_TIMEOUT_SECONDS = 3.0
_INVALID_STATUS_MSG = "Error listing accounting records. Received http status code %d"


class FetchError(Exception):
    """The accounting feed could not be read for this tick."""


class BaseFetcher(ABC):
    """
    Contract for anything that can supply one accounting page per tick.

    fetch() MUST:
        - Return the full body text on success
        - Raise FetchError on transport failure or non-success status
    """

    @abstractmethod
    async def fetch(self) -> str:
        ...

    async def load_records(self) -> list[FlowRecord]:
        """Fetch and parse in one call."""
        return parse_document(await self.fetch())


class AccountingClient(BaseFetcher):
    """
    HTTP client for the router's accounting page.

    Args:
        router_host: Router host name or IP; used to build the default URL.
        url:         Explicit accounting URL, overrides router_host.
        timeout:     Seconds allowed for each phase of the request
                     (connect, send, read, pool).
        transport:   Optional httpx transport (tests inject MockTransport).
    """

    def __init__(
        self,
        router_host: str | None = None,
        url: str | None = None,
        timeout: float = _FETCH_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if url is None:
            if not router_host:
                raise ValueError("Either router_host or url is required")
            url = f"http://{router_host}/accounting/ip.cgi"
        self.url = url
        self._timeout = timeout
        self._transport = transport

    async def fetch(self) -> str:
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                resp = await client.get(
                    self.url,
                    headers={"Content-Type": "text/plain"},
                )
        except httpx.HTTPError as exc:
            raise FetchError(f"Error reading {self.url}: {exc}") from exc

        if resp.status_code != 200:
            raise FetchError(_INVALID_STATUS_MSG % resp.status_code)

        logger.debug("Fetched %d bytes from %s", len(resp.content), self.url)
        return resp.text

    def __repr__(self) -> str:
        return f"AccountingClient({self.url!r})"
