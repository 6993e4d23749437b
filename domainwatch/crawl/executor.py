"""Crawl task: fetch a domain's homepage, analyse it and store a crawl record."""
from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import httpx
from bs4 import BeautifulSoup

from domainwatch.crawl.headers import sanitize_headers
from domainwatch.crawl.metadata import extract_metadata
from domainwatch.crawl.scoring import accessibility_score, seo_score
from domainwatch.crawl.technologies import detect_technologies
from domainwatch.errors import PersistenceError
from domainwatch.fetch.robots import RobotsCache
from domainwatch.fetch.session import CrawlSession
from domainwatch.observability.metrics import MetricsRegistry
from domainwatch.observability.tracing import log_fetch_error, log_fetch_result, span
from domainwatch.orchestrator.dispatcher import TaskResult
from domainwatch.orchestrator.jobs import Job, utcnow
from domainwatch.rules.registry import RulePolicy
from domainwatch.storage.models import CrawlRecord, Domain, PerformanceMetrics
from domainwatch.storage.repository import CrawlRepository, DomainRepository

ROBOTS_DISALLOWED = "Crawling disallowed by robots.txt"


class CrawlExecutor:
    """Executes ``crawl`` jobs.

    :meth:`crawl_domain` never raises: network and parse errors end up in the
    record's ``error_message`` with ``http_status`` 0. :meth:`process` turns
    refusals, non-2xx responses and storage errors into failed task results.
    """

    def __init__(
        self,
        *,
        session: CrawlSession,
        domains: DomainRepository,
        crawls: CrawlRepository,
        logger: Any,
        metrics: MetricsRegistry,
        timeout: float = 30.0,
        robots: Optional[RobotsCache] = None,
        rule_policy: Optional[RulePolicy] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._domains = domains
        self._crawls = crawls
        self._logger = logger
        self._metrics = metrics
        self._timeout = timeout
        self._robots = robots
        self._rule_policy = rule_policy
        self._clock = clock

    async def process(self, job: Job) -> TaskResult:
        domain = await self._domains.get(job.domain_id)
        if domain is None:
            return TaskResult.failure(f"Domain not found: {job.domain_id}")
        log = self._logger.bind(job_id=job.id, domain=domain.domain)

        if self._rule_policy is not None:
            decision = self._rule_policy.evaluate(domain.domain)
            if not decision.allowed:
                self._metrics.incr("rule_blocks")
                log.info("rule_blocked", rule_id=decision.rule_id, reason=decision.reason)
                return TaskResult.failure(f"Blocked by rule {decision.rule_id}: {decision.reason}")

        if self._robots is not None and not await self._robots.allowed(domain.domain):
            self._metrics.incr("robots_disallow")
            log.info("robots_disallow")
            return TaskResult.failure(ROBOTS_DISALLOWED)

        record = await self.crawl_domain(domain)

        try:
            await self._crawls.insert(record)
            await self._domains.mark_crawled(domain.id, crawled_at=self._clock(), status=record.domain_status)
        except PersistenceError as exc:
            log.error("crawl_persist_failed", error=str(exc))
            return TaskResult.failure(str(exc))

        if record.http_status == 0:
            return TaskResult.failure(record.error_message or "Unknown crawl error")
        if not record.succeeded:
            return TaskResult.failure(f"HTTP {record.http_status}")
        return TaskResult.ok(_result_payload(record))

    async def crawl_domain(self, domain: Domain) -> CrawlRecord:
        url = f"https://{domain.domain}"
        start = time.perf_counter()
        try:
            with span(self._logger, name="fetch", url=url):
                response = await self._session.fetch(url, timeout=self._timeout)
        except httpx.HTTPError as exc:
            elapsed_ms = int((time.perf_counter() - start) * 1000)
            reason = str(exc) or type(exc).__name__
            self._metrics.incr("fetch_errors")
            log_fetch_error(self._logger, url=url, reason=reason, elapsed_ms=elapsed_ms)
            return self._failure_record(domain, url, reason, elapsed_ms)

        elapsed_ms = int((time.perf_counter() - start) * 1000)
        body = response.content or b""
        self._metrics.incr("pages_fetched")
        self._metrics.incr(f"http_{response.status_code // 100}xx")
        log_fetch_result(self._logger, url=url, status=response.status_code, bytes_read=len(body), elapsed_ms=elapsed_ms)

        try:
            return self._analyse(domain, url, response, elapsed_ms)
        except Exception as exc:
            self._logger.exception("crawl_parse_failed", url=url)
            return self._failure_record(domain, url, f"Failed to parse response: {exc}", elapsed_ms)

    def _analyse(self, domain: Domain, url: str, response: httpx.Response, elapsed_ms: int) -> CrawlRecord:
        soup = BeautifulSoup(response.text, "html.parser")
        metadata = extract_metadata(soup, base_url=str(response.url), response_headers=response.headers)
        content_length = len(response.content or b"")
        return CrawlRecord(
            domain_id=domain.id,
            url=url,
            title=metadata.title,
            description=metadata.description,
            http_status=response.status_code,
            response_time_ms=elapsed_ms,
            content_length=content_length,
            content_type=response.headers.get("content-type"),
            meta_keywords=metadata.keywords,
            meta_author=metadata.author,
            language=metadata.language,
            favicon_url=metadata.favicon_url,
            headers=sanitize_headers(response.headers),
            technologies=detect_technologies(soup, response.headers),
            performance_metrics=PerformanceMetrics(
                response_time_ms=elapsed_ms,
                content_length=content_length,
                redirect_count=len(response.history),
            ),
            accessibility_score=accessibility_score(soup),
            seo_score=seo_score(soup, metadata),
            crawled_at=self._clock(),
        )

    def _failure_record(self, domain: Domain, url: str, reason: str, elapsed_ms: int) -> CrawlRecord:
        return CrawlRecord(
            domain_id=domain.id,
            url=url,
            http_status=0,
            response_time_ms=elapsed_ms,
            content_length=0,
            error_message=reason,
            performance_metrics=PerformanceMetrics(response_time_ms=elapsed_ms),
            crawled_at=self._clock(),
        )


def _result_payload(record: CrawlRecord) -> Dict[str, Any]:
    payload = record.model_dump(mode="json")
    payload["technologies"] = record.technologies.detected()
    return payload
