"""Pydantic models for monitored domains and crawl records."""
from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

_HOST_LABEL = r"(?!-)[a-z0-9-]{1,63}(?<!-)"
HOST_PATTERN = re.compile(rf"^{_HOST_LABEL}(?:\.{_HOST_LABEL})*$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Domain(BaseModel):
    """A monitored host. Only ``last_crawled`` and ``status`` are written by the worker."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    domain: str = Field(min_length=1)
    status: str = Field(default="pending", pattern=r"^(active|inactive|pending|error)$")
    priority: int = 0
    crawl_frequency_hours: int = Field(default=24, gt=0)
    last_crawled: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("domain")
    @classmethod
    def _normalise_host(cls, value: str) -> str:
        host = value.strip().lower().rstrip(".")
        if len(host) > 253 or not HOST_PATTERN.match(host):
            raise ValueError(f"Not a bare host name: {value!r}")
        return host


class Technologies(BaseModel):
    """Best-effort fingerprint of the stack serving a page."""

    server: Optional[str] = None
    generator: Optional[str] = None
    react: bool = False
    vue: bool = False
    angular: bool = False
    jquery: bool = False
    bootstrap: bool = False
    tailwind: bool = False
    google_analytics: bool = False
    wordpress: bool = False
    drupal: bool = False

    def detected(self) -> Dict[str, object]:
        """Only the flags that were actually set."""
        return self.model_dump(exclude_defaults=True)


class PerformanceMetrics(BaseModel):
    response_time_ms: int = 0
    content_length: int = 0
    redirect_count: int = 0


class PageMetadata(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    keywords: Optional[str] = None
    author: Optional[str] = None
    language: Optional[str] = None
    favicon_url: Optional[str] = None


class CrawlRecord(BaseModel):
    """Outcome of one crawl attempt, successful or not."""

    domain_id: str
    url: str
    title: Optional[str] = None
    description: Optional[str] = None
    http_status: int = 0
    response_time_ms: int = 0
    content_length: int = 0
    content_type: Optional[str] = None
    meta_keywords: Optional[str] = None
    meta_author: Optional[str] = None
    language: Optional[str] = None
    favicon_url: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    technologies: Technologies = Field(default_factory=Technologies)
    performance_metrics: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    accessibility_score: Optional[int] = Field(default=None, ge=0, le=100)
    seo_score: Optional[int] = Field(default=None, ge=0, le=100)
    error_message: Optional[str] = None
    crawled_at: datetime = Field(default_factory=_utcnow)

    @property
    def succeeded(self) -> bool:
        return 200 <= self.http_status < 300

    @property
    def domain_status(self) -> str:
        """Coarse status written back to the domain after this attempt."""
        return "active" if 0 < self.http_status < 400 else "inactive"
