"""SQLite-backed job queue shared by every worker process."""
from __future__ import annotations

import asyncio
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import orjson

from domainwatch.errors import QueueUnavailableError
from domainwatch.orchestrator.jobs import Job, JobStatus
from domainwatch.storage.database import connect, from_db_time, initialise, to_db_time

_TIME_FIELDS = {"created_at", "updated_at", "started_at", "finished_at", "next_retry_at"}
_JSON_FIELDS = {"payload": "payload_json", "result": "result_json"}
_PLAIN_FIELDS = {"status", "priority", "attempts", "max_attempts", "error_message", "worker_id"}

_CLAIMABLE_SQL = """
    status IN (?, ?)
    AND attempts < max_attempts
    AND (next_retry_at IS NULL OR next_retry_at <= ?)
"""


def _job_from_row(row: sqlite3.Row) -> Job:
    return Job(
        id=row["id"],
        domain_id=row["domain_id"],
        job_type=row["job_type"],
        status=row["status"],
        priority=row["priority"],
        attempts=row["attempts"],
        max_attempts=row["max_attempts"],
        payload=orjson.loads(row["payload_json"] or "{}"),
        result=orjson.loads(row["result_json"] or "{}"),
        error_message=row["error_message"],
        worker_id=row["worker_id"],
        created_at=from_db_time(row["created_at"]),
        updated_at=from_db_time(row["updated_at"]),
        started_at=from_db_time(row["started_at"]),
        finished_at=from_db_time(row["finished_at"]),
        next_retry_at=from_db_time(row["next_retry_at"]),
    )


class SQLiteJobQueue:
    """Claim, acquire and update jobs stored in the ``jobs`` table.

    Every blocking call runs in a thread so the worker's event loop only ever
    suspends on I/O.
    """

    def __init__(self, *, path: Path, logger: Any = None) -> None:
        self._path = path
        self._logger = logger

    @property
    def path(self) -> Path:
        return self._path

    async def initialise(self) -> None:
        """Create the schema if needed."""
        await asyncio.to_thread(self._guarded, initialise, self._path)

    async def ping(self) -> None:
        """Raise :class:`QueueUnavailableError` when the store cannot be queried."""
        await asyncio.to_thread(self._guarded, self._ping)

    def _ping(self) -> None:
        with connect(self._path) as connection:
            connection.execute("SELECT COUNT(*) FROM jobs").fetchone()

    def _guarded(self, func, *args):
        try:
            return func(*args)
        except sqlite3.Error as exc:
            raise QueueUnavailableError(f"Job queue unavailable at {self._path}: {exc}") from exc

    async def claim(self, limit: int, now: datetime) -> List[Job]:
        """Select up to ``limit`` eligible jobs, highest priority then oldest first.

        Does not change their status; see :meth:`acquire`. Rows that cannot be
        decoded are quarantined (marked ``failed`` with no attempts left) and
        left out of the result.
        """
        if limit <= 0:
            return []
        return await asyncio.to_thread(self._guarded, self._claim, limit, now)

    def _claim(self, limit: int, now: datetime) -> List[Job]:
        sql = (
            f"SELECT * FROM jobs WHERE {_CLAIMABLE_SQL}"
            " ORDER BY priority DESC, created_at ASC LIMIT ?"
        )
        with connect(self._path) as connection:
            rows = connection.execute(
                sql,
                (*JobStatus.CLAIMABLE, to_db_time(now), limit),
            ).fetchall()
            jobs: List[Job] = []
            for row in rows:
                try:
                    jobs.append(_job_from_row(row))
                except (ValueError, TypeError) as exc:
                    self._quarantine(connection, row["id"], f"Malformed job row: {exc}", now)
        return jobs

    def _quarantine(self, connection: sqlite3.Connection, job_id: str, reason: str, now: datetime) -> None:
        stamp = to_db_time(now)
        connection.execute(
            """
            UPDATE jobs
            SET status = ?, attempts = max_attempts, error_message = ?,
                finished_at = ?, next_retry_at = NULL, worker_id = NULL, updated_at = ?
            WHERE id = ?
            """,
            (JobStatus.FAILED, reason, stamp, stamp, job_id),
        )
        if self._logger is not None:
            self._logger.warning("job_row_quarantined", job_id=job_id, reason=reason)

    async def acquire(self, job_id: str, worker_id: str, now: datetime) -> bool:
        """Atomically flip a still-eligible job to ``running`` for this worker.

        Returns False when another worker won the row in the meantime.
        """
        return await asyncio.to_thread(self._guarded, self._acquire, job_id, worker_id, now)

    def _acquire(self, job_id: str, worker_id: str, now: datetime) -> bool:
        stamp = to_db_time(now)
        with connect(self._path) as connection:
            cursor = connection.execute(
                f"""
                UPDATE jobs
                SET status = ?, worker_id = ?, started_at = ?, updated_at = ?
                WHERE id = ? AND {_CLAIMABLE_SQL}
                """,
                (JobStatus.RUNNING, worker_id, stamp, stamp, job_id, *JobStatus.CLAIMABLE, stamp),
            )
            return cursor.rowcount == 1

    async def update(self, job_id: str, fields: Dict[str, Any]) -> None:
        """Apply a partial update; ``updated_at`` is always refreshed."""
        assignments: Dict[str, Any] = {}
        for key, value in fields.items():
            if key in _TIME_FIELDS:
                assignments[key] = to_db_time(value)
            elif key in _JSON_FIELDS:
                assignments[_JSON_FIELDS[key]] = orjson.dumps(value or {}).decode()
            elif key in _PLAIN_FIELDS:
                assignments[key] = value
            else:
                raise ValueError(f"Unknown job field: {key}")
        assignments.setdefault("updated_at", to_db_time(datetime.now(timezone.utc)))
        await asyncio.to_thread(self._guarded, self._update, job_id, assignments)

    def _update(self, job_id: str, assignments: Dict[str, Any]) -> None:
        columns = ", ".join(f"{column} = :{column}" for column in assignments)
        with connect(self._path) as connection:
            connection.execute(f"UPDATE jobs SET {columns} WHERE id = :__id", {**assignments, "__id": job_id})

    async def insert(self, jobs: Iterable[Job]) -> int:
        """Insert new jobs; returns how many rows were written."""
        rows = [
            (
                job.id,
                job.domain_id,
                job.job_type,
                job.status,
                job.priority,
                job.attempts,
                job.max_attempts,
                orjson.dumps(job.payload).decode(),
                orjson.dumps(job.result).decode(),
                job.error_message,
                job.worker_id,
                to_db_time(job.created_at),
                to_db_time(job.updated_at),
                to_db_time(job.started_at),
                to_db_time(job.finished_at),
                to_db_time(job.next_retry_at),
            )
            for job in jobs
        ]
        if not rows:
            return 0
        await asyncio.to_thread(self._guarded, self._insert, rows)
        return len(rows)

    def _insert(self, rows: List[tuple]) -> None:
        with connect(self._path) as connection:
            connection.executemany(
                """
                INSERT INTO jobs (
                    id, domain_id, job_type, status, priority, attempts, max_attempts,
                    payload_json, result_json, error_message, worker_id,
                    created_at, updated_at, started_at, finished_at, next_retry_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )

    async def get(self, job_id: str) -> Optional[Job]:
        return await asyncio.to_thread(self._guarded, self._get, job_id)

    def _get(self, job_id: str) -> Optional[Job]:
        with connect(self._path) as connection:
            row = connection.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return _job_from_row(row) if row is not None else None

    async def counts_by_status(self) -> Dict[str, int]:
        return await asyncio.to_thread(self._guarded, self._counts)

    def _counts(self) -> Dict[str, int]:
        counts = {status: 0 for status in JobStatus.ALL}
        with connect(self._path) as connection:
            for row in connection.execute("SELECT status, COUNT(*) AS total FROM jobs GROUP BY status"):
                counts[row["status"]] = row["total"]
        return counts
