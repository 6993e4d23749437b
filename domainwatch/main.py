"""Command-line entrypoints for the domainwatch worker."""
from __future__ import annotations

import argparse
import asyncio
import json
import re
import sys
from pathlib import Path
from typing import Any, List, Optional

import httpx
import yaml
from pydantic import ValidationError

try:
    import uvloop
except ImportError:  # pragma: no cover - uvloop optional on some platforms
    uvloop = None

from domainwatch.config import DEFAULT_SETTINGS_PATH, WorkerSettings, load_settings
from domainwatch.crawl.executor import CrawlExecutor
from domainwatch.errors import ConfigError, DomainwatchError
from domainwatch.fetch.robots import RobotsCache
from domainwatch.fetch.session import CrawlSession, create_crawl_session
from domainwatch.observability.health import HealthReporter
from domainwatch.observability.log import build_logger, configure_logging, shutdown_logging
from domainwatch.observability.metrics import MetricsRegistry
from domainwatch.orchestrator.dispatcher import TaskDispatcher
from domainwatch.orchestrator.jobs import Job, JobType
from domainwatch.orchestrator.queue import SQLiteJobQueue
from domainwatch.orchestrator.worker import Worker
from domainwatch.rules.registry import RulePolicy, RuleRegistry
from domainwatch.storage.models import Domain
from domainwatch.storage.repository import CrawlRepository, DomainRepository


def build_arg_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(prog="domainwatch", description="Domain monitoring job worker")
    parser.add_argument("--config", default=str(DEFAULT_SETTINGS_PATH), help="Path to settings.toml")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("work", help="Run the job worker until interrupted")
    sub.add_parser("init-db", help="Create the queue and crawl tables")

    add_domain = sub.add_parser("add-domain", help="Register a domain for monitoring")
    add_domain.add_argument("domain", help="Host name, e.g. example.com")
    add_domain.add_argument("--priority", type=int, default=0)
    add_domain.add_argument("--frequency-hours", type=int, default=24)
    add_domain.add_argument("--tags", nargs="*", default=[])

    enqueue = sub.add_parser("enqueue", help="Queue a job for a registered domain")
    enqueue.add_argument("target", help="Domain id or host name")
    enqueue.add_argument("--type", default=JobType.CRAWL, choices=JobType.ALL)
    enqueue.add_argument("--priority", type=int, help="Defaults to the domain's priority")
    enqueue.add_argument("--max-attempts", type=int, help="Defaults to retry.max_attempts")

    sub.add_parser("status", help="Print job counts by status")

    health = sub.add_parser("health", help="Query a running worker's health endpoint")
    health.add_argument("--url", help="Defaults to the configured health host and port")

    return parser


def build_rule_policy(settings: WorkerSettings) -> Optional[RulePolicy]:
    if settings.ruleset is None:
        return None
    try:
        registry = RuleRegistry.load(settings.rules_dir)
    except (ValueError, re.error, yaml.YAMLError, OSError) as exc:
        raise ConfigError(f"Could not load rule sets from {settings.rules_dir}: {exc}") from exc
    if settings.ruleset not in registry.names():
        raise ConfigError(f"Unknown rule set {settings.ruleset!r}; available: {', '.join(registry.names()) or 'none'}")
    return registry.policy(settings.ruleset)


def build_worker(
    settings: WorkerSettings,
    *,
    session: CrawlSession,
    logger: Any,
    metrics: Optional[MetricsRegistry] = None,
) -> Worker:
    """Wire queue, repositories, executor, dispatcher and health reporter into a worker."""
    metrics = metrics or MetricsRegistry()
    robots = None
    if settings.respect_robots_txt:
        robots = RobotsCache(
            session=session,
            user_agent=settings.user_agent,
            logger=logger,
            timeout=settings.robots_timeout_seconds,
            ttl_seconds=settings.robots_cache_ttl_seconds,
        )
    executor = CrawlExecutor(
        session=session,
        domains=DomainRepository(settings.database_path),
        crawls=CrawlRepository(settings.database_path),
        logger=logger,
        metrics=metrics,
        timeout=settings.request_timeout_seconds,
        robots=robots,
        rule_policy=build_rule_policy(settings),
    )
    dispatcher = TaskDispatcher({JobType.CRAWL: executor}, logger=logger)
    health = HealthReporter(
        host=settings.health_host,
        port=settings.health_port,
        logger=logger,
        enabled=settings.health_enabled,
    )
    return Worker(
        queue=SQLiteJobQueue(path=settings.database_path, logger=logger),
        dispatcher=dispatcher,
        settings=settings,
        logger=logger,
        metrics=metrics,
        health=health,
    )


async def run_worker(settings: WorkerSettings, logger: Any) -> None:
    async with create_crawl_session(
        user_agent=settings.user_agent,
        timeout=settings.request_timeout_seconds,
        max_connections=settings.concurrency,
        max_redirects=settings.max_redirects,
    ) as session:
        worker = build_worker(settings, session=session, logger=logger)
        await worker.run_until_signalled()


async def add_domain(settings: WorkerSettings, args: argparse.Namespace) -> Domain:
    try:
        domain = Domain(
            domain=args.domain,
            priority=args.priority,
            crawl_frequency_hours=args.frequency_hours,
            tags=list(args.tags),
        )
    except ValidationError as exc:
        raise DomainwatchError(f"Invalid domain {args.domain!r}: {exc.errors()[0]['msg']}") from exc
    return await DomainRepository(settings.database_path).add(domain)


async def enqueue_job(settings: WorkerSettings, args: argparse.Namespace) -> Job:
    repository = DomainRepository(settings.database_path)
    domain = await repository.get(args.target) or await repository.find_by_host(args.target)
    if domain is None:
        raise DomainwatchError(f"No registered domain matches {args.target!r}")
    job = Job(
        domain_id=domain.id,
        job_type=args.type,
        priority=domain.priority if args.priority is None else args.priority,
        max_attempts=args.max_attempts or settings.max_attempts,
        payload={"url": f"https://{domain.domain}", "domain": domain.domain},
    )
    await SQLiteJobQueue(path=settings.database_path).insert([job])
    return job


def query_health(settings: WorkerSettings, url: Optional[str]) -> int:
    target = url or f"http://{settings.health_host}:{settings.health_port}/health"
    try:
        response = httpx.get(target, timeout=5.0)
    except httpx.HTTPError as exc:
        print(json.dumps({"url": target, "status": "unreachable", "error": str(exc)}, indent=2))
        return 1
    print(json.dumps(response.json(), indent=2))
    return 0 if response.status_code == 200 else 1


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI."""
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    try:
        settings = load_settings(Path(args.config))
    except ConfigError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        raise SystemExit(1)

    configure_logging(level=settings.log_level, fmt=settings.log_format, config_path=settings.logging_config)
    logger = build_logger(settings.worker_id)

    if uvloop is not None:
        uvloop.install()

    try:
        if args.command == "work":
            logger.info("worker_process_starting", database=str(settings.database_path))
            asyncio.run(run_worker(settings, logger))
            return

        if args.command == "init-db":
            asyncio.run(SQLiteJobQueue(path=settings.database_path).initialise())
            print(json.dumps({"database": str(settings.database_path), "initialised": True}, indent=2))
            return

        if args.command == "add-domain":
            domain = asyncio.run(add_domain(settings, args))
            print(domain.model_dump_json(indent=2))
            return

        if args.command == "enqueue":
            job = asyncio.run(enqueue_job(settings, args))
            print(json.dumps({"job_id": job.id, "domain_id": job.domain_id, "type": job.job_type}, indent=2))
            return

        if args.command == "status":
            counts = asyncio.run(SQLiteJobQueue(path=settings.database_path).counts_by_status())
            print(json.dumps(counts, indent=2))
            return

        if args.command == "health":
            raise SystemExit(query_health(settings, args.url))
    except DomainwatchError as exc:
        logger.error("command_failed", command=args.command, error=str(exc))
        raise SystemExit(1)
    finally:
        shutdown_logging()


if __name__ == "__main__":
    main()
