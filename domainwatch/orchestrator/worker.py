"""Polling worker loop: claims jobs, bounds concurrency and applies the retry policy."""
from __future__ import annotations

import asyncio
import contextlib
import signal
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from domainwatch.config import WorkerSettings
from domainwatch.errors import QueueUnavailableError
from domainwatch.observability.health import HealthReporter
from domainwatch.observability.metrics import MetricsRegistry, record_duration
from domainwatch.orchestrator.backoff import RetryPolicy
from domainwatch.orchestrator.dispatcher import TaskDispatcher, TaskResult
from domainwatch.orchestrator.jobs import Job, JobStatus, utcnow
from domainwatch.orchestrator.queue import SQLiteJobQueue


class Worker:
    """Runs claimed jobs as independent asyncio tasks on one event loop.

    ``_active`` maps job ids to their tasks and is only touched here: inserted
    when a job is acquired, removed by the task's done callback. The loop never
    waits on a job, it only polls for free slots.
    """

    def __init__(
        self,
        *,
        queue: SQLiteJobQueue,
        dispatcher: TaskDispatcher,
        settings: WorkerSettings,
        logger: Any,
        metrics: Optional[MetricsRegistry] = None,
        health: Optional[HealthReporter] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._queue = queue
        self._dispatcher = dispatcher
        self._settings = settings
        self._logger = logger
        self._metrics = metrics or MetricsRegistry()
        self._health = health
        self._clock = clock
        self._policy = RetryPolicy(
            base_delay_ms=settings.retry_delay_ms,
            multiplier=settings.backoff_multiplier,
        )
        self._active: Dict[str, asyncio.Task] = {}
        self._running = False
        self._wake = asyncio.Event()
        self._started_at: Optional[float] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def metrics(self) -> MetricsRegistry:
        return self._metrics

    async def start(self) -> None:
        """Verify the queue, start the health endpoint and run until :meth:`stop`."""
        self._logger.info(
            "worker_starting",
            concurrency=self._settings.concurrency,
            poll_interval_ms=self._settings.poll_interval_ms,
            job_types=list(self._dispatcher.supported_types),
        )
        await self._queue.ping()
        if self._wake.is_set():
            # stop() arrived while starting up
            return
        if self._health is not None:
            await self._health.start(self.health_status)
        self._running = True
        self._started_at = time.monotonic()
        await self._loop()

    async def stop(self) -> None:
        """Stop claiming, wait for in-flight jobs to finish, then stop auxiliary services.

        Running jobs are never cancelled.
        """
        self._logger.info("worker_stopping", active_jobs=len(self._active))
        self._running = False
        self._wake.set()
        while self._active:
            self._logger.info("waiting_for_active_jobs", active_jobs=len(self._active))
            await asyncio.sleep(self._settings.shutdown_poll_seconds)
        if self._health is not None:
            await self._health.stop()
        self._logger.info("worker_stopped")

    async def run_until_signalled(self) -> None:
        """Run the worker and stop gracefully on SIGINT or SIGTERM."""
        loop = asyncio.get_running_loop()
        stop_requested = asyncio.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, stop_requested.set)

        loop_task = asyncio.create_task(self.start(), name="worker-loop")
        signal_task = asyncio.create_task(stop_requested.wait(), name="worker-signal")
        done, _ = await asyncio.wait({loop_task, signal_task}, return_when=asyncio.FIRST_COMPLETED)
        if loop_task in done:
            signal_task.cancel()
            loop_task.result()
            return
        self._logger.info("shutdown_signal_received")
        await self.stop()
        await loop_task

    async def _loop(self) -> None:
        while self._running:
            available = self._settings.concurrency - len(self._active)
            if available <= 0:
                await self._sleep(self._settings.poll_interval_seconds)
                continue

            try:
                jobs = await self._queue.claim(available, self._clock())
            except QueueUnavailableError as exc:
                self._metrics.incr("claim_errors")
                self._logger.error("claim_failed", error=str(exc))
                await self._sleep(self._settings.poll_interval_seconds)
                continue
            except Exception:
                self._metrics.incr("claim_errors")
                self._logger.exception("claim_failed")
                await self._sleep(self._settings.poll_interval_seconds)
                continue

            if not jobs:
                await self._sleep(self._settings.poll_interval_seconds)
                continue

            for job in jobs[:available]:
                if not self._running:
                    break
                await self._launch(job)

    async def _sleep(self, seconds: float) -> None:
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._wake.wait(), timeout=seconds)

    async def _launch(self, job: Job) -> None:
        now = self._clock()
        try:
            acquired = await self._queue.acquire(job.id, self._settings.worker_id, now)
        except QueueUnavailableError as exc:
            self._metrics.incr("claim_errors")
            self._logger.error("acquire_failed", job_id=job.id, job_type=job.job_type, error=str(exc))
            return
        except Exception:
            self._metrics.incr("claim_errors")
            self._logger.exception("acquire_failed", job_id=job.id, job_type=job.job_type)
            return
        if not acquired:
            self._metrics.incr("claim_conflicts")
            self._logger.info("claim_conflict", job_id=job.id, job_type=job.job_type)
            return

        job.status = JobStatus.RUNNING
        job.worker_id = self._settings.worker_id
        job.started_at = now
        self._metrics.incr("jobs_claimed")
        self._logger.info(
            "job_claimed",
            job_id=job.id,
            job_type=job.job_type,
            domain_id=job.domain_id,
            attempts=job.attempts,
            priority=job.priority,
        )
        task = asyncio.create_task(self._run_job(job), name=f"job-{job.id}")
        self._active[job.id] = task
        task.add_done_callback(lambda _task, job_id=job.id: self._active.pop(job_id, None))

    async def _run_job(self, job: Job) -> None:
        log = self._logger.bind(job_id=job.id, job_type=job.job_type, domain_id=job.domain_id)
        try:
            with record_duration(self._metrics, "job_duration_ms"):
                result = await self._dispatcher.dispatch(job)
            if result.success:
                await self._complete(job, result, log)
                return
            error = result.error or "Unknown error"
        except Exception as exc:
            log.exception("job_error")
            error = str(exc) or type(exc).__name__

        try:
            await self._fail(job, error, log)
        except QueueUnavailableError as exc:
            log.error("job_update_failed", error=str(exc))

    async def _complete(self, job: Job, result: TaskResult, log: Any) -> None:
        transition = self._policy.on_success(result.data, self._clock())
        await self._queue.update(job.id, transition.as_update())
        self._metrics.incr("jobs_completed")
        log.info("job_completed", attempts=job.attempts)

    async def _fail(self, job: Job, error: str, log: Any) -> None:
        transition = self._policy.on_failure(job.attempts, job.max_attempts, error, self._clock())
        await self._queue.update(job.id, transition.as_update())
        if transition.is_terminal:
            self._metrics.incr("jobs_failed")
            log.error(
                "job_failed",
                attempts=transition.attempts,
                max_attempts=job.max_attempts,
                error=error,
            )
        else:
            self._metrics.incr("jobs_retried")
            log.warning(
                "job_retry_scheduled",
                attempts=transition.attempts,
                next_retry_at=transition.next_retry_at.isoformat() if transition.next_retry_at else None,
                retry_delay_ms=transition.retry_delay_ms,
                error=error,
            )

    def health_status(self) -> Dict[str, Any]:
        uptime = time.monotonic() - self._started_at if self._started_at is not None else 0.0
        return {
            "status": "healthy" if self._running else "unhealthy",
            "worker_id": self._settings.worker_id,
            "active_jobs": len(self._active),
            "max_concurrency": self._settings.concurrency,
            "uptime_seconds": round(uptime, 3),
            "timestamp": self._clock().isoformat(),
            "metrics": self._metrics.snapshot(),
        }
