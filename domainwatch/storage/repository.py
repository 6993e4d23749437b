"""Persistence for domains and crawl records."""
from __future__ import annotations

import asyncio
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import orjson

from domainwatch.errors import PersistenceError
from domainwatch.storage.database import connect, from_db_time, to_db_time
from domainwatch.storage.models import CrawlRecord, Domain, PerformanceMetrics, Technologies


def _domain_from_row(row: sqlite3.Row) -> Domain:
    return Domain(
        id=row["id"],
        domain=row["domain"],
        status=row["status"],
        priority=row["priority"],
        crawl_frequency_hours=row["crawl_frequency_hours"],
        last_crawled=from_db_time(row["last_crawled"]),
        tags=orjson.loads(row["tags_json"] or "[]"),
        created_at=from_db_time(row["created_at"]),
    )


class DomainRepository:
    """Reads domains and writes back the crawl bookkeeping columns."""

    def __init__(self, path: Path) -> None:
        self._path = path

    async def add(self, domain: Domain) -> Domain:
        await asyncio.to_thread(self._add, domain)
        return domain

    def _add(self, domain: Domain) -> None:
        now = to_db_time(datetime.now(timezone.utc))
        try:
            with connect(self._path) as connection:
                connection.execute(
                    """
                    INSERT INTO domains (
                        id, domain, status, priority, crawl_frequency_hours,
                        last_crawled, tags_json, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        domain.id,
                        domain.domain,
                        domain.status,
                        domain.priority,
                        domain.crawl_frequency_hours,
                        to_db_time(domain.last_crawled),
                        orjson.dumps(domain.tags).decode(),
                        to_db_time(domain.created_at),
                        now,
                    ),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to add domain {domain.domain}: {exc}") from exc

    async def get(self, domain_id: str) -> Optional[Domain]:
        return await asyncio.to_thread(self._fetch_one, "SELECT * FROM domains WHERE id = ?", domain_id)

    async def find_by_host(self, host: str) -> Optional[Domain]:
        return await asyncio.to_thread(self._fetch_one, "SELECT * FROM domains WHERE domain = ?", host.lower())

    def _fetch_one(self, sql: str, value: str) -> Optional[Domain]:
        try:
            with connect(self._path) as connection:
                row = connection.execute(sql, (value,)).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to load domain {value}: {exc}") from exc
        return _domain_from_row(row) if row is not None else None

    async def mark_crawled(self, domain_id: str, *, crawled_at: datetime, status: str) -> None:
        await asyncio.to_thread(self._mark_crawled, domain_id, crawled_at, status)

    def _mark_crawled(self, domain_id: str, crawled_at: datetime, status: str) -> None:
        try:
            with connect(self._path) as connection:
                connection.execute(
                    "UPDATE domains SET last_crawled = ?, status = ?, updated_at = ? WHERE id = ?",
                    (to_db_time(crawled_at), status, to_db_time(datetime.now(timezone.utc)), domain_id),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to update domain {domain_id}: {exc}") from exc


_CRAWL_COLUMNS = (
    "domain_id",
    "url",
    "title",
    "description",
    "http_status",
    "response_time_ms",
    "content_length",
    "content_type",
    "meta_keywords",
    "meta_author",
    "language",
    "favicon_url",
    "headers_json",
    "technologies_json",
    "performance_metrics_json",
    "accessibility_score",
    "seo_score",
    "error_message",
    "crawled_at",
    "created_at",
)


def _crawl_row(record: CrawlRecord) -> Dict[str, object]:
    payload = record.model_dump(exclude={"headers", "technologies", "performance_metrics", "crawled_at"})
    payload["headers_json"] = orjson.dumps(record.headers).decode()
    payload["technologies_json"] = orjson.dumps(record.technologies.detected()).decode()
    payload["performance_metrics_json"] = orjson.dumps(record.performance_metrics.model_dump()).decode()
    payload["crawled_at"] = to_db_time(record.crawled_at)
    payload["created_at"] = to_db_time(datetime.now(timezone.utc))
    return payload


def _crawl_from_row(row: sqlite3.Row) -> CrawlRecord:
    data = {key: row[key] for key in row.keys() if not key.endswith("_json") and key not in {"id", "created_at"}}
    data["headers"] = orjson.loads(row["headers_json"])
    data["technologies"] = Technologies(**orjson.loads(row["technologies_json"]))
    data["performance_metrics"] = PerformanceMetrics(**orjson.loads(row["performance_metrics_json"]))
    data["crawled_at"] = from_db_time(row["crawled_at"])
    return CrawlRecord(**data)


class CrawlRepository:
    """Append-only store of crawl records."""

    def __init__(self, path: Path) -> None:
        self._path = path

    async def insert(self, record: CrawlRecord) -> int:
        return await asyncio.to_thread(self._insert, record)

    def _insert(self, record: CrawlRecord) -> int:
        row = _crawl_row(record)
        placeholders = ", ".join(f":{column}" for column in _CRAWL_COLUMNS)
        sql = f"INSERT INTO crawls ({', '.join(_CRAWL_COLUMNS)}) VALUES ({placeholders})"
        try:
            with connect(self._path) as connection:
                cursor = connection.execute(sql, row)
                return int(cursor.lastrowid)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to save crawl result: {exc}") from exc

    async def latest_for(self, domain_id: str) -> Optional[CrawlRecord]:
        records = await self.history(domain_id, limit=1)
        return records[0] if records else None

    async def history(self, domain_id: str, *, limit: int = 20) -> List[CrawlRecord]:
        return await asyncio.to_thread(self._history, domain_id, limit)

    def _history(self, domain_id: str, limit: int) -> List[CrawlRecord]:
        try:
            with connect(self._path) as connection:
                rows = connection.execute(
                    "SELECT * FROM crawls WHERE domain_id = ? ORDER BY crawled_at DESC, id DESC LIMIT ?",
                    (domain_id, limit),
                ).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to read crawls for {domain_id}: {exc}") from exc
        return [_crawl_from_row(row) for row in rows]
