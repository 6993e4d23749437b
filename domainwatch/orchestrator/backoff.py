"""Retry and backoff policy mapping a task outcome to the job's next state.

Everything here is pure: the functions only look at the attempt counters, the
configured delay and multiplier, and the ``now`` they are handed, so they can be
exercised without a queue or network.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from domainwatch.orchestrator.jobs import JobStatus


@dataclass(frozen=True)
class JobTransition:
    """The fields a finished attempt writes back to the queue."""

    status: str
    attempts: Optional[int] = None
    finished_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None
    error_message: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    retry_delay_ms: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)

    def as_update(self) -> Dict[str, Any]:
        """Return the partial update for :meth:`SQLiteJobQueue.update`."""
        fields: Dict[str, Any] = {"status": self.status}
        if self.status == JobStatus.COMPLETED:
            fields["finished_at"] = self.finished_at
            fields["result"] = self.result or {}
            fields["worker_id"] = None
            return fields
        fields["attempts"] = self.attempts
        fields["error_message"] = self.error_message
        if self.status == JobStatus.FAILED:
            fields["finished_at"] = self.finished_at
            fields["next_retry_at"] = None
        else:
            fields["next_retry_at"] = self.next_retry_at
        fields["worker_id"] = None
        return fields


def retry_delay_ms(new_attempts: int, *, base_delay_ms: float, multiplier: float) -> float:
    """Exponential delay before the next attempt: base * multiplier^(n-1)."""
    return base_delay_ms * (multiplier ** (new_attempts - 1))


def plan_failure(
    attempts: int,
    max_attempts: int,
    error_message: str,
    now: datetime,
    *,
    base_delay_ms: float,
    multiplier: float,
) -> JobTransition:
    """Decide between a delayed retry and terminal failure.

    ``attempts`` is the count recorded before this attempt.
    """
    new_attempts = attempts + 1
    if new_attempts >= max_attempts:
        return JobTransition(
            status=JobStatus.FAILED,
            attempts=new_attempts,
            finished_at=now,
            error_message=error_message,
        )
    delay = retry_delay_ms(new_attempts, base_delay_ms=base_delay_ms, multiplier=multiplier)
    return JobTransition(
        status=JobStatus.PENDING,
        attempts=new_attempts,
        next_retry_at=now + timedelta(milliseconds=delay),
        error_message=error_message,
        retry_delay_ms=delay,
    )


def plan_success(result: Optional[Dict[str, Any]], now: datetime) -> JobTransition:
    return JobTransition(status=JobStatus.COMPLETED, finished_at=now, result=result or {})


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff configuration bound to the worker settings."""

    base_delay_ms: float = 1000
    multiplier: float = 2.0

    def on_failure(self, attempts: int, max_attempts: int, error_message: str, now: datetime) -> JobTransition:
        return plan_failure(
            attempts,
            max_attempts,
            error_message,
            now,
            base_delay_ms=self.base_delay_ms,
            multiplier=self.multiplier,
        )

    def on_success(self, result: Optional[Dict[str, Any]], now: datetime) -> JobTransition:
        return plan_success(result, now)
