from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List

from ..models import Request
from ..utils.http import FetchedPage

# Anything that turns a Request into a page or raises FetchError.
Fetcher = Callable[[Request], Awaitable[FetchedPage]]
FailureCallback = Callable[[Request, BaseException], None]


@dataclass
class CrawlReport:
    stats: Dict[str, int] = field(default_factory=dict)  # persisted counters after the run
    visited_count: int = 0
    failed: List[Request] = field(default_factory=list)
    extraction_errors: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "stats": dict(self.stats),
            "visited": self.visited_count,
            "failed": [r.url for r in self.failed],
            "extractionErrors": self.extraction_errors,
        }


class CrawlEngine(ABC):
    """
    Abstract engine interface. Implementations own the crawl lifecycle.
    """
    @abstractmethod
    async def crawl(self) -> CrawlReport:  # pragma: no cover - interface
        ...
