from pathlib import Path

import pytest
import structlog

from domainwatch.config import WorkerSettings
from domainwatch.storage.database import initialise


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()


@pytest.fixture()
def logger():
    return structlog.get_logger("tests")


@pytest.fixture()
def db_path(tmp_path) -> Path:
    path = tmp_path / "domainwatch.db"
    initialise(path)
    return path


@pytest.fixture()
def settings(db_path) -> WorkerSettings:
    return WorkerSettings(
        worker_id="worker-test",
        database_path=db_path,
        concurrency=2,
        poll_interval_ms=10,
        shutdown_poll_ms=10,
        retry_delay_ms=1000,
        backoff_multiplier=2.0,
        health_enabled=False,
    )
