"""Factories for the shared httpx fetch session."""
from __future__ import annotations

import contextlib
from typing import AsyncIterator, Dict, Optional

import httpx

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}


class CrawlSession:
    """Thin seam over ``httpx.AsyncClient`` so tests can substitute responses."""

    def __init__(self, client: Optional[httpx.AsyncClient]) -> None:
        self._client = client

    async def fetch(self, url: str, *, headers: Optional[Dict[str, str]] = None, timeout: float = 30.0) -> httpx.Response:
        """GET a URL following redirects up to the client's limit; any status is returned."""
        if self._client is None:
            raise RuntimeError("No crawl session available")
        return await self._client.get(url, headers=headers, timeout=timeout)


def build_client(
    *,
    user_agent: str,
    timeout: float,
    max_connections: int,
    max_redirects: int,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    headers = {"User-Agent": user_agent, **DEFAULT_HEADERS}
    limits = httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections)
    return httpx.AsyncClient(
        headers=headers,
        limits=limits,
        timeout=timeout,
        follow_redirects=True,
        max_redirects=max_redirects,
        transport=transport,
    )


@contextlib.asynccontextmanager
async def create_crawl_session(
    *,
    user_agent: str,
    timeout: float,
    max_connections: int,
    max_redirects: int,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AsyncIterator[CrawlSession]:
    """Yield a configured `CrawlSession` for the duration of the context."""
    async with build_client(
        user_agent=user_agent,
        timeout=timeout,
        max_connections=max_connections,
        max_redirects=max_redirects,
        transport=transport,
    ) as client:
        yield CrawlSession(client)
