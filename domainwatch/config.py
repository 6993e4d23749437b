"""Worker settings loaded from TOML with environment overrides."""
from __future__ import annotations

import os
import secrets
import string
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import tomllib
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from domainwatch.errors import ConfigError

DEFAULT_SETTINGS_PATH = Path("config/settings.toml")
DEFAULT_USER_AGENT = "domainwatch-bot/1.0 (+https://github.com/domainwatch/domainwatch)"


def _random_worker_id() -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "worker-" + "".join(secrets.choice(alphabet) for _ in range(9))


class WorkerSettings(BaseModel):
    """Validated configuration consumed by the worker process."""

    worker_id: str = Field(default_factory=_random_worker_id, min_length=1)
    concurrency: int = Field(default=5, gt=0)
    poll_interval_ms: int = Field(default=5000, ge=0)
    shutdown_poll_ms: int = Field(default=1000, ge=0)

    max_attempts: int = Field(default=3, gt=0)
    retry_delay_ms: int = Field(default=1000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)

    request_timeout_ms: int = Field(default=30000, gt=0)
    robots_timeout_ms: int = Field(default=5000, gt=0)
    robots_cache_ttl_seconds: int = Field(default=3600, ge=0)
    max_redirects: int = Field(default=5, ge=0)
    respect_robots_txt: bool = True
    user_agent: str = Field(default=DEFAULT_USER_AGENT, min_length=1)

    health_enabled: bool = True
    health_host: str = "127.0.0.1"
    health_port: int = Field(default=3001, gt=0, lt=65536)

    log_level: str = "info"
    log_format: str = Field(default="json", pattern=r"^(json|console)$")
    logging_config: Optional[Path] = None

    database_path: Path
    rules_dir: Path = Path("config/rules")
    ruleset: Optional[str] = None

    @field_validator("log_level")
    @classmethod
    def _normalise_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unsupported log level: {value}")
        return level

    @field_validator("ruleset", mode="before")
    @classmethod
    def _blank_ruleset(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not str(value).strip():
            return None
        return str(value).strip()

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000

    @property
    def shutdown_poll_seconds(self) -> float:
        return self.shutdown_poll_ms / 1000

    @property
    def request_timeout_seconds(self) -> float:
        return self.request_timeout_ms / 1000

    @property
    def robots_timeout_seconds(self) -> float:
        return self.robots_timeout_ms / 1000


# (section, key) in settings.toml -> field name
_TOML_KEYS: Dict[tuple[str, str], str] = {
    ("worker", "id"): "worker_id",
    ("worker", "concurrency"): "concurrency",
    ("worker", "poll_interval_ms"): "poll_interval_ms",
    ("worker", "shutdown_poll_ms"): "shutdown_poll_ms",
    ("retry", "max_attempts"): "max_attempts",
    ("retry", "delay_ms"): "retry_delay_ms",
    ("retry", "backoff_multiplier"): "backoff_multiplier",
    ("fetch", "timeout_ms"): "request_timeout_ms",
    ("fetch", "robots_timeout_ms"): "robots_timeout_ms",
    ("fetch", "robots_cache_ttl_seconds"): "robots_cache_ttl_seconds",
    ("fetch", "max_redirects"): "max_redirects",
    ("fetch", "respect_robots_txt"): "respect_robots_txt",
    ("fetch", "user_agent"): "user_agent",
    ("health", "enabled"): "health_enabled",
    ("health", "host"): "health_host",
    ("health", "port"): "health_port",
    ("logging", "level"): "log_level",
    ("logging", "format"): "log_format",
    ("logging", "config"): "logging_config",
    ("storage", "database_path"): "database_path",
    ("rules", "dir"): "rules_dir",
    ("rules", "ruleset"): "ruleset",
}

_ENV_KEYS: Dict[str, str] = {
    "WORKER_ID": "worker_id",
    "WORKER_CONCURRENCY": "concurrency",
    "POLL_INTERVAL_MS": "poll_interval_ms",
    "RETRY_MAX_ATTEMPTS": "max_attempts",
    "RETRY_DELAY_MS": "retry_delay_ms",
    "RETRY_BACKOFF_MULTIPLIER": "backoff_multiplier",
    "REQUEST_TIMEOUT_MS": "request_timeout_ms",
    "ROBOTS_TIMEOUT_MS": "robots_timeout_ms",
    "MAX_REDIRECTS": "max_redirects",
    "RESPECT_ROBOTS_TXT": "respect_robots_txt",
    "USER_AGENT": "user_agent",
    "HEALTH_CHECK_ENABLED": "health_enabled",
    "HEALTH_CHECK_HOST": "health_host",
    "HEALTH_CHECK_PORT": "health_port",
    "LOG_LEVEL": "log_level",
    "LOG_FORMAT": "log_format",
    "DATABASE_PATH": "database_path",
    "RULESET": "ruleset",
}


def _flatten(raw: Mapping[str, Any]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for (section, key), field in _TOML_KEYS.items():
        block = raw.get(section, {})
        if isinstance(block, Mapping) and key in block:
            values[field] = block[key]
    return values


def _env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for env_key, field in _ENV_KEYS.items():
        value = environ.get(env_key)
        if value is None or value == "":
            continue
        if field == "respect_robots_txt":
            # only an explicit "false" disables robots compliance
            values[field] = value.strip().lower() != "false"
        elif field == "health_enabled":
            values[field] = value.strip().lower() in {"1", "true", "yes", "on"}
        else:
            values[field] = value
    return values


def settings_from_mapping(raw: Mapping[str, Any], environ: Optional[Mapping[str, str]] = None) -> WorkerSettings:
    """Build settings from a parsed TOML mapping plus environment overrides."""
    values = _flatten(raw)
    values.update(_env_overrides(environ if environ is not None else os.environ))
    if not str(values.get("database_path") or "").strip():
        raise ConfigError("Missing required configuration: DATABASE_PATH")
    try:
        return WorkerSettings(**values)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc


def load_settings(path: Path = DEFAULT_SETTINGS_PATH, environ: Optional[Mapping[str, str]] = None) -> WorkerSettings:
    """Read the TOML configuration file (optional) and apply `.env`/environment overrides."""
    load_dotenv()
    raw: Dict[str, Any] = {}
    if path.exists():
        try:
            with path.open("rb") as handle:
                raw = tomllib.load(handle)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Could not parse {path}: {exc}") from exc
    return settings_from_mapping(raw, environ)
