"""Lightweight in-process metrics exposed through the health snapshot."""
from __future__ import annotations

import contextlib
import time
from collections import defaultdict
from typing import Dict, Iterator


class MetricsRegistry:
    """Holds mutable counters for the current process."""

    def __init__(self) -> None:
        self._counters: Dict[str, int] = defaultdict(int)
        self._register_defaults()

    def _register_defaults(self) -> None:
        defaults = [
            "jobs_claimed",
            "jobs_completed",
            "jobs_retried",
            "jobs_failed",
            "job_duration_ms",
            "claim_conflicts",
            "claim_errors",
            "pages_fetched",
            "fetch_errors",
            "http_2xx",
            "http_3xx",
            "http_4xx",
            "http_5xx",
            "robots_disallow",
            "rule_blocks",
        ]
        for key in defaults:
            self._counters[key] = 0

    def incr(self, name: str, value: int = 1) -> None:
        """Increment the named counter by the supplied value."""
        self._counters[name] += value

    def get(self, name: str) -> int:
        """Return the current value for the counter, defaulting to zero."""
        return self._counters.get(name, 0)

    def snapshot(self) -> Dict[str, int]:
        """Return a shallow copy of all counters for reporting."""
        return dict(self._counters)


@contextlib.contextmanager
def record_duration(registry: MetricsRegistry, metric_name: str) -> Iterator[None]:
    """Accumulate elapsed milliseconds for a block into the named counter."""
    start = time.perf_counter()
    try:
        yield
    finally:
        registry.incr(metric_name, int((time.perf_counter() - start) * 1000))
