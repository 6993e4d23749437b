"""Tracing helpers for the fetch stages."""
from __future__ import annotations

import contextlib
import time
from typing import Any, Iterator, Optional


@contextlib.contextmanager
def span(logger: Any, *, name: str, url: Optional[str] = None) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        logger.debug("trace_span", span=name, url=url, elapsed_ms=elapsed_ms)


def log_fetch_result(logger: Any, *, url: str, status: int, bytes_read: int, elapsed_ms: int) -> None:
    logger.info(
        "fetch_result",
        url=url,
        status=status,
        bytes=bytes_read,
        elapsed_ms=elapsed_ms,
    )


def log_fetch_error(logger: Any, *, url: str, reason: str, elapsed_ms: int) -> None:
    logger.warning("fetch_error", url=url, reason=reason, elapsed_ms=elapsed_ms)
