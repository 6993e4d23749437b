"""Definitions for queued work items and their lifecycle."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class JobType:
    CRAWL = "crawl"
    WHOIS = "whois"
    SSL_CHECK = "ssl_check"
    DNS_LOOKUP = "dns_lookup"

    ALL = (CRAWL, WHOIS, SSL_CHECK, DNS_LOOKUP)


class JobStatus:
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    ALL = (PENDING, RUNNING, COMPLETED, FAILED, CANCELLED)
    # "failed" is only claimable while attempts remain
    CLAIMABLE = (PENDING, FAILED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    """A unit of scheduled work targeting one domain."""

    domain_id: str
    job_type: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: str = JobStatus.PENDING
    priority: int = 0
    attempts: int = 0
    max_attempts: int = 3
    payload: Dict[str, Any] = field(default_factory=dict)
    result: Dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None
    worker_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None

    def is_terminal(self) -> bool:
        """Return True once no further transitions may happen."""
        if self.status in (JobStatus.COMPLETED, JobStatus.CANCELLED):
            return True
        return self.status == JobStatus.FAILED and self.attempts >= self.max_attempts

    def is_claimable(self, now: datetime) -> bool:
        """Mirror of the queue's claim predicate, for in-memory checks."""
        if self.status not in JobStatus.CLAIMABLE:
            return False
        if self.attempts >= self.max_attempts:
            return False
        return self.next_retry_at is None or self.next_retry_at <= now
