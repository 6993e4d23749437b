"""Robots.txt helper utilities."""
from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.robotparser import RobotFileParser

import httpx

from domainwatch.fetch.session import CrawlSession


class RobotsCache:
    """Caches robots.txt rules per host and answers allow checks.

    Unreachable or erroring robots files are treated as allowing everything.
    Expired hosts are evicted whenever a new host is cached, and at most
    ``max_entries`` hosts are kept (oldest dropped first).
    """

    def __init__(
        self,
        *,
        session: CrawlSession,
        user_agent: str,
        logger: Any,
        timeout: float = 5.0,
        ttl_seconds: float = 3600,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session = session
        self._user_agent = user_agent
        self._logger = logger
        self._timeout = timeout
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._cache: Dict[str, Tuple[float, RobotFileParser]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def allowed(self, host: str, path: str = "/") -> bool:
        """Return whether ``https://<host><path>`` is permitted for the configured agent."""
        parser = await self._parser_for(host)
        return parser.can_fetch(self._user_agent, f"https://{host}{path}")

    async def _parser_for(self, host: str) -> RobotFileParser:
        lock = self._locks.setdefault(host, asyncio.Lock())
        async with lock:
            cached = self._cached(host)
            if cached is not None:
                return cached
            parser = await self._load(host)
            self._store(host, parser)
            return parser

    def __len__(self) -> int:
        return len(self._cache)

    def _store(self, host: str, parser: RobotFileParser) -> None:
        now = self._clock()
        # re-inserting keeps the dict ordered oldest first
        self._cache.pop(host, None)
        self._cache[host] = (now, parser)
        for stale in [name for name, (loaded_at, _) in self._cache.items() if now - loaded_at > self._ttl]:
            self._forget(stale)
        while len(self._cache) > self._max_entries:
            self._forget(next(iter(self._cache)))

    def _forget(self, host: str) -> None:
        self._cache.pop(host, None)
        lock = self._locks.get(host)
        if lock is not None and not lock.locked():
            del self._locks[host]

    def _cached(self, host: str) -> Optional[RobotFileParser]:
        entry = self._cache.get(host)
        if entry is None:
            return None
        loaded_at, parser = entry
        if self._clock() - loaded_at > self._ttl:
            return None
        return parser

    async def _load(self, host: str) -> RobotFileParser:
        robots_url = f"https://{host}/robots.txt"
        parser = RobotFileParser(robots_url)
        try:
            response = await self._session.fetch(robots_url, timeout=self._timeout)
        except httpx.HTTPError as exc:
            self._logger.debug("robots_unreachable", host=host, reason=str(exc) or type(exc).__name__)
            parser.parse([])
            return parser
        if response.status_code >= 400:
            parser.parse([])
        else:
            parser.parse(response.text.splitlines())
        return parser
