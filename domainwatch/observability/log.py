"""Structured logging initialisation utilities."""
from __future__ import annotations

import logging
import logging.config
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
import yaml

SERVICE_NAME = "domainwatch-worker"


def configure_logging(*, level: str = "INFO", fmt: str = "json", config_path: Optional[Path] = None) -> None:
    """Configure stdlib and structlog logging, using the YAML definition when present."""
    if config_path is not None and config_path.exists():
        with config_path.open("r", encoding="utf-8") as handle:
            config: Dict[str, Any] = yaml.safe_load(handle)
        logging.config.dictConfig(config)
    else:
        logging.basicConfig(level=level, format="%(message)s", stream=sys.stdout, force=True)
    logging.getLogger().setLevel(level)
    logging.getLogger("domainwatch").setLevel(level)

    renderer = structlog.processors.JSONRenderer() if fmt == "json" else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def build_logger(worker_id: str) -> structlog.stdlib.BoundLogger:
    """Create the process logger handed to every worker component."""
    return structlog.get_logger("domainwatch").bind(service=SERVICE_NAME, worker_id=worker_id)


def shutdown_logging() -> None:
    """Flush and close all handlers; call once when the process exits."""
    logging.shutdown()
