import asyncio

from domainwatch.orchestrator.dispatcher import TaskDispatcher, TaskResult
from domainwatch.orchestrator.jobs import Job, JobType


class _Recorder:
    def __init__(self, result=None, exc=None):
        self.result = result or TaskResult.ok({"done": True})
        self.exc = exc
        self.seen = []

    async def process(self, job):
        self.seen.append(job.id)
        if self.exc is not None:
            raise self.exc
        return self.result


def test_dispatch_routes_by_job_type(logger):
    crawl = _Recorder()
    dispatcher = TaskDispatcher({JobType.CRAWL: crawl}, logger=logger)
    job = Job(domain_id="d-1", job_type=JobType.CRAWL)

    result = asyncio.run(dispatcher.dispatch(job))

    assert result == TaskResult.ok({"done": True})
    assert crawl.seen == [job.id]
    assert dispatcher.supported_types == (JobType.CRAWL,)


def test_known_type_without_executor_fails(logger):
    dispatcher = TaskDispatcher({JobType.CRAWL: _Recorder()}, logger=logger)

    result = asyncio.run(dispatcher.dispatch(Job(domain_id="d-1", job_type=JobType.WHOIS)))

    assert not result.success
    assert result.error == "No executor registered for job type: whois"


def test_unknown_type_fails(logger):
    dispatcher = TaskDispatcher(logger=logger)

    result = asyncio.run(dispatcher.dispatch(Job(domain_id="d-1", job_type="screenshot")))

    assert not result.success
    assert result.error == "Unknown job type: screenshot"


def test_executor_exception_becomes_failure(logger):
    dispatcher = TaskDispatcher(logger=logger)
    dispatcher.register(JobType.CRAWL, _Recorder(exc=RuntimeError("parser exploded")))

    result = asyncio.run(dispatcher.dispatch(Job(domain_id="d-1", job_type=JobType.CRAWL)))

    assert result == TaskResult.failure("parser exploded")


def test_executor_failure_is_passed_through(logger):
    failure = TaskResult.failure("HTTP 503")
    dispatcher = TaskDispatcher({JobType.CRAWL: _Recorder(result=failure)}, logger=logger)

    assert asyncio.run(dispatcher.dispatch(Job(domain_id="d-1", job_type=JobType.CRAWL))) is failure
