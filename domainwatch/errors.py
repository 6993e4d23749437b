"""Exception hierarchy shared by the worker components."""
from __future__ import annotations


class DomainwatchError(Exception):
    """Base class for errors raised by domainwatch."""


class ConfigError(DomainwatchError):
    """Raised when required configuration is missing or invalid."""


class QueueUnavailableError(DomainwatchError):
    """Raised when the job queue storage cannot be reached or queried."""


class PersistenceError(DomainwatchError):
    """Raised when a crawl result or domain update cannot be written."""
