"""HTTP health endpoint polled by the external process monitor."""
from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Callable, Dict, Iterator, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

StatusProvider = Callable[[], Dict[str, Any]]


def create_health_app(status_provider: StatusProvider) -> FastAPI:
    app = FastAPI(title="domainwatch worker", docs_url=None, redoc_url=None, openapi_url=None)

    @app.get("/health")
    def health() -> JSONResponse:
        snapshot = status_provider()
        status_code = 200 if snapshot.get("status") == "healthy" else 503
        return JSONResponse(snapshot, status_code=status_code)

    return app


class _EmbeddedServer(uvicorn.Server):
    """Uvicorn server that leaves SIGINT/SIGTERM to the worker."""

    def install_signal_handlers(self) -> None:
        return None

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class HealthReporter:
    """Serves the worker's status snapshot while the worker runs."""

    def __init__(self, *, host: str, port: int, logger: Any, enabled: bool = True) -> None:
        self._host = host
        self._port = port
        self._logger = logger
        self._enabled = enabled
        self._server: Optional[_EmbeddedServer] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, status_provider: StatusProvider) -> None:
        if not self._enabled or self._server is not None:
            return
        config = uvicorn.Config(
            create_health_app(status_provider),
            host=self._host,
            port=self._port,
            log_level="warning",
            access_log=False,
            lifespan="off",
        )
        self._server = _EmbeddedServer(config)
        self._task = asyncio.create_task(self._server.serve(), name="health-server")
        self._logger.info("health_server_started", host=self._host, port=self._port)

    async def stop(self) -> None:
        if self._server is None or self._task is None:
            return
        self._server.should_exit = True
        await self._task
        self._server = None
        self._task = None
        self._logger.info("health_server_stopped")
