from __future__ import annotations

from typing import Optional


class CrawlerError(Exception):
    """Base class for all crawler errors."""


class ConfigurationError(CrawlerError, ValueError):
    """Invalid configuration; fatal for the run."""


class UnknownLabelError(ConfigurationError):
    def __init__(self, label: object, site: str = "") -> None:
        self.label = label
        self.site = site
        where = f" for site {site!r}" if site else ""
        super().__init__(f"No handler registered for label {label!r}{where}")


class FetchError(CrawlerError):
    """
    A single fetch attempt failed (timeout, connection reset, non-2xx status).
    The engine retries these up to the configured limit.
    """

    def __init__(self, url: str, message: str, status: Optional[int] = None) -> None:
        self.url = url
        self.status = status
        super().__init__(f"{url}: {message}" + (f" (HTTP {status})" if status is not None else ""))


class ExtractionError(CrawlerError):
    """Expected markup or JSON field missing on a fetched page."""


class PersistenceError(CrawlerError):
    """Checkpoint state could not be read or written."""
