"""Routes claimed jobs to the executor registered for their type."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Protocol

from domainwatch.orchestrator.jobs import Job, JobType


@dataclass(frozen=True)
class TaskResult:
    """What an executor hands back to the worker loop."""

    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Optional[Dict[str, Any]] = None) -> "TaskResult":
        return cls(success=True, data=data or {})

    @classmethod
    def failure(cls, error: str) -> "TaskResult":
        return cls(success=False, error=error)


class TaskExecutor(Protocol):
    async def process(self, job: Job) -> TaskResult:
        ...


class TaskDispatcher:
    """Selects an executor by ``job.job_type``; never raises."""

    def __init__(self, executors: Optional[Mapping[str, TaskExecutor]] = None, *, logger: Any) -> None:
        self._executors: Dict[str, TaskExecutor] = dict(executors or {})
        self._logger = logger

    def register(self, job_type: str, executor: TaskExecutor) -> None:
        self._executors[job_type] = executor

    @property
    def supported_types(self) -> tuple[str, ...]:
        return tuple(sorted(self._executors))

    async def dispatch(self, job: Job) -> TaskResult:
        """Run the matching executor and return its result unchanged.

        Unknown types and executor exceptions come back as failure results so
        the worker can apply the normal retry policy.
        """
        executor = self._executors.get(job.job_type)
        if executor is None:
            if job.job_type in JobType.ALL:
                message = f"No executor registered for job type: {job.job_type}"
            else:
                message = f"Unknown job type: {job.job_type}"
            self._logger.warning("dispatch_unsupported", job_id=job.id, job_type=job.job_type)
            return TaskResult.failure(message)

        self._logger.debug("dispatch", job_id=job.id, job_type=job.job_type, payload=job.payload)
        try:
            return await executor.process(job)
        except Exception as exc:
            self._logger.exception("executor_error", job_id=job.id, job_type=job.job_type)
            return TaskResult.failure(str(exc) or type(exc).__name__)
