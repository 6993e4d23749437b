import asyncio
import sqlite3

from domainwatch.errors import QueueUnavailableError
from domainwatch.observability.metrics import MetricsRegistry
from domainwatch.orchestrator.dispatcher import TaskDispatcher, TaskResult
from domainwatch.orchestrator.jobs import Job, JobStatus, JobType
from domainwatch.orchestrator.queue import SQLiteJobQueue
from domainwatch.orchestrator.worker import Worker


async def wait_until(predicate, *, timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not await predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


class _SlowExecutor:
    def __init__(self, delay: float = 0.05, result: TaskResult = None):
        self.delay = delay
        self.result = result or TaskResult.ok({"ok": True})
        self.current = 0
        self.peak = 0
        self.calls = 0

    async def process(self, job):
        self.calls += 1
        self.current += 1
        self.peak = max(self.peak, self.current)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.current -= 1
        return self.result


class _GatedExecutor:
    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def process(self, job):
        self.started.set()
        await self.release.wait()
        return TaskResult.ok({"released": True})


class _FlakyQueue(SQLiteJobQueue):
    def __init__(self, *, path, failures: int, error: Exception = None):
        super().__init__(path=path)
        self.failures = failures
        self.error = error or QueueUnavailableError("database is locked")

    async def claim(self, limit, now):
        if self.failures > 0:
            self.failures -= 1
            raise self.error
        return await super().claim(limit, now)


def _worker(queue, executor, settings, logger):
    dispatcher = TaskDispatcher({JobType.CRAWL: executor}, logger=logger)
    return Worker(queue=queue, dispatcher=dispatcher, settings=settings, logger=logger, metrics=MetricsRegistry())


def test_concurrency_never_exceeds_limit(db_path, settings, logger):
    queue = SQLiteJobQueue(path=db_path)
    executor = _SlowExecutor()
    jobs = [Job(domain_id=f"d-{index}", job_type=JobType.CRAWL) for index in range(6)]

    async def _run():
        await queue.insert(jobs)
        worker = _worker(queue, executor, settings, logger)
        loop_task = asyncio.create_task(worker.start())

        async def _all_done():
            return (await queue.counts_by_status())[JobStatus.COMPLETED] == len(jobs)

        await wait_until(_all_done)
        await worker.stop()
        await loop_task
        return worker

    worker = asyncio.run(_run())

    assert executor.calls == 6
    assert 1 <= executor.peak <= settings.concurrency
    assert worker.metrics.get("jobs_completed") == 6
    assert worker.active_count == 0


def test_failures_retry_until_attempts_are_exhausted(db_path, settings, logger):
    settings = settings.model_copy(update={"retry_delay_ms": 0})
    queue = SQLiteJobQueue(path=db_path)
    executor = _SlowExecutor(delay=0, result=TaskResult.failure("HTTP 500"))
    job = Job(domain_id="d-1", job_type=JobType.CRAWL, max_attempts=3)

    async def _run():
        await queue.insert([job])
        worker = _worker(queue, executor, settings, logger)
        loop_task = asyncio.create_task(worker.start())

        async def _exhausted():
            stored = await queue.get(job.id)
            return stored.attempts == 3 and stored.status == JobStatus.FAILED

        await wait_until(_exhausted)
        await worker.stop()
        await loop_task
        return worker, await queue.get(job.id)

    worker, stored = asyncio.run(_run())

    assert executor.calls == 3
    assert stored.is_terminal()
    assert stored.error_message == "HTTP 500"
    assert stored.finished_at is not None
    assert stored.next_retry_at is None
    assert stored.worker_id is None
    assert worker.metrics.get("jobs_retried") == 2
    assert worker.metrics.get("jobs_failed") == 1


def test_backing_off_job_is_not_reclaimed(db_path, settings, logger):
    settings = settings.model_copy(update={"retry_delay_ms": 60_000})
    queue = SQLiteJobQueue(path=db_path)
    executor = _SlowExecutor(delay=0, result=TaskResult.failure("timeout"))
    job = Job(domain_id="d-1", job_type=JobType.CRAWL)

    async def _run():
        await queue.insert([job])
        worker = _worker(queue, executor, settings, logger)
        loop_task = asyncio.create_task(worker.start())

        async def _retried():
            return (await queue.get(job.id)).attempts == 1

        await wait_until(_retried)
        # several poll intervals pass without the job becoming eligible
        await asyncio.sleep(0.1)
        await worker.stop()
        await loop_task
        return await queue.get(job.id)

    stored = asyncio.run(_run())

    assert executor.calls == 1
    assert stored.status == JobStatus.PENDING
    assert stored.next_retry_at > stored.updated_at


def test_stop_waits_for_in_flight_jobs(db_path, settings, logger):
    queue = SQLiteJobQueue(path=db_path)
    job = Job(domain_id="d-1", job_type=JobType.CRAWL)

    async def _run():
        executor = _GatedExecutor()
        await queue.insert([job])
        worker = _worker(queue, executor, settings, logger)
        loop_task = asyncio.create_task(worker.start())
        await asyncio.wait_for(executor.started.wait(), timeout=5)

        stop_task = asyncio.create_task(worker.stop())
        await asyncio.sleep(0.05)
        stopped_early = stop_task.done()
        running_flag = worker.is_running

        executor.release.set()
        await stop_task
        await loop_task
        return stopped_early, running_flag, await queue.get(job.id)

    stopped_early, running_flag, stored = asyncio.run(_run())

    assert stopped_early is False
    assert running_flag is False
    assert stored.status == JobStatus.COMPLETED
    assert stored.result == {"released": True}


def test_claim_errors_do_not_stop_the_loop(db_path, settings, logger):
    queue = _FlakyQueue(path=db_path, failures=2)
    executor = _SlowExecutor(delay=0)
    job = Job(domain_id="d-1", job_type=JobType.CRAWL)

    async def _run():
        await queue.insert([job])
        worker = _worker(queue, executor, settings, logger)
        loop_task = asyncio.create_task(worker.start())

        async def _completed():
            return (await queue.get(job.id)).status == JobStatus.COMPLETED

        await wait_until(_completed)
        await worker.stop()
        await loop_task
        return worker

    worker = asyncio.run(_run())

    assert worker.metrics.get("claim_errors") == 2
    assert executor.calls == 1


def test_unsupported_job_type_is_failed_through_retries(db_path, settings, logger):
    settings = settings.model_copy(update={"retry_delay_ms": 0})
    queue = SQLiteJobQueue(path=db_path)
    job = Job(domain_id="d-1", job_type=JobType.WHOIS, max_attempts=2)

    async def _run():
        await queue.insert([job])
        worker = _worker(queue, _SlowExecutor(delay=0), settings, logger)
        loop_task = asyncio.create_task(worker.start())

        async def _failed():
            return (await queue.get(job.id)).status == JobStatus.FAILED

        await wait_until(_failed)
        await worker.stop()
        await loop_task
        return await queue.get(job.id)

    stored = asyncio.run(_run())

    assert stored.attempts == 2
    assert stored.error_message == "No executor registered for job type: whois"


def test_unexpected_claim_errors_do_not_stop_the_loop(db_path, settings, logger):
    queue = _FlakyQueue(path=db_path, failures=1, error=RuntimeError("driver bug"))
    executor = _SlowExecutor(delay=0)
    job = Job(domain_id="d-1", job_type=JobType.CRAWL)

    async def _run():
        await queue.insert([job])
        worker = _worker(queue, executor, settings, logger)
        loop_task = asyncio.create_task(worker.start())

        async def _completed():
            return (await queue.get(job.id)).status == JobStatus.COMPLETED

        await wait_until(_completed)
        await worker.stop()
        await loop_task
        return worker

    worker = asyncio.run(_run())

    assert worker.metrics.get("claim_errors") == 1
    assert executor.calls == 1


def test_corrupted_row_does_not_block_other_jobs(db_path, settings, logger):
    queue = SQLiteJobQueue(path=db_path, logger=logger)
    executor = _SlowExecutor(delay=0)
    good = Job(domain_id="d-1", job_type=JobType.CRAWL, priority=1)
    corrupted = Job(domain_id="d-2", job_type=JobType.CRAWL, priority=9)

    async def _run():
        await queue.insert([good, corrupted])
        with sqlite3.connect(db_path) as connection:
            connection.execute("UPDATE jobs SET payload_json = 'not json' WHERE id = ?", (corrupted.id,))
        worker = _worker(queue, executor, settings, logger)
        loop_task = asyncio.create_task(worker.start())

        async def _good_done():
            return (await queue.get(good.id)).status == JobStatus.COMPLETED

        await wait_until(_good_done)
        await worker.stop()
        await loop_task
        return worker

    worker = asyncio.run(_run())

    assert executor.calls == 1
    assert worker.metrics.get("claim_errors") == 0
    with sqlite3.connect(db_path) as connection:
        status, error_message = connection.execute(
            "SELECT status, error_message FROM jobs WHERE id = ?", (corrupted.id,)
        ).fetchone()
    assert status == JobStatus.FAILED
    assert error_message.startswith("Malformed job row: ")
