"""SQLite schema and connection helpers shared by the queue and repositories."""
from __future__ import annotations

import contextlib
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

SCHEMA = """
CREATE TABLE IF NOT EXISTS domains (
    id TEXT PRIMARY KEY,
    domain TEXT NOT NULL UNIQUE,
    status TEXT NOT NULL DEFAULT 'pending',
    priority INTEGER NOT NULL DEFAULT 0,
    crawl_frequency_hours INTEGER NOT NULL DEFAULT 24,
    last_crawled TEXT,
    tags_json TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    domain_id TEXT NOT NULL,
    job_type TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    priority INTEGER NOT NULL DEFAULT 0,
    attempts INTEGER NOT NULL DEFAULT 0,
    max_attempts INTEGER NOT NULL DEFAULT 3,
    payload_json TEXT NOT NULL DEFAULT '{}',
    result_json TEXT NOT NULL DEFAULT '{}',
    error_message TEXT,
    worker_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    started_at TEXT,
    finished_at TEXT,
    next_retry_at TEXT
);

CREATE INDEX IF NOT EXISTS jobs_claim_idx
    ON jobs (status, priority DESC, created_at ASC);

CREATE TABLE IF NOT EXISTS crawls (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    domain_id TEXT NOT NULL,
    url TEXT NOT NULL,
    title TEXT,
    description TEXT,
    http_status INTEGER,
    response_time_ms INTEGER,
    content_length INTEGER,
    content_type TEXT,
    meta_keywords TEXT,
    meta_author TEXT,
    language TEXT,
    favicon_url TEXT,
    headers_json TEXT NOT NULL DEFAULT '{}',
    technologies_json TEXT NOT NULL DEFAULT '{}',
    performance_metrics_json TEXT NOT NULL DEFAULT '{}',
    accessibility_score INTEGER,
    seo_score INTEGER,
    error_message TEXT,
    crawled_at TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS crawls_domain_idx ON crawls (domain_id, crawled_at);
"""


def to_db_time(value: Optional[datetime]) -> Optional[str]:
    """Serialise a datetime as a fixed-width UTC ISO string so text ordering matches time ordering."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@contextlib.contextmanager
def connect(path: Path) -> Iterator[sqlite3.Connection]:
    """Open a connection, commit on success and always close it."""
    path.parent.mkdir(parents=True, exist_ok=True)
    connection = sqlite3.connect(path, timeout=30)
    connection.row_factory = sqlite3.Row
    try:
        yield connection
        connection.commit()
    except BaseException:
        connection.rollback()
        raise
    finally:
        connection.close()


def initialise(path: Path) -> None:
    """Create tables and indexes if they do not exist yet."""
    with connect(path) as connection:
        connection.executescript(SCHEMA)
