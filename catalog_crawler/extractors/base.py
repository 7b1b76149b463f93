from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, FrozenSet, List, Mapping, Optional, Protocol
from urllib.parse import urlparse

from ..errors import UnknownLabelError
from ..models import Item, Label, Request
from ..pagination import PaginationPolicy, build_planner
from ..utils.http import FetchedPage
from ..utils.parsing import parse_html, parse_json


@dataclass
class ExtractResult:
    items: List[Item] = field(default_factory=list)
    next_requests: List[Request] = field(default_factory=list)
    # Extra counter increments, e.g. {"categories": 3}
    counters: Dict[str, int] = field(default_factory=dict)


Handler = Callable[[Any, Request], ExtractResult]


class SiteExtractor(Protocol):
    """
    Interface for site-specific extraction logic.
    The engine owns HTTP, queueing, retries and dedup; extractors only read pages.
    """

    name: str
    domains: List[str]
    labels: FrozenSet[Label]

    def matches(self, url: str) -> bool:
        ...

    def start_requests(self) -> List[Request]:
        ...

    def handlers(self) -> Mapping[Label, Handler]:
        """Label -> handler table; must cover exactly ``labels``."""
        ...

    def parse(self, label: Label, page: FetchedPage) -> Any:
        """Turn a raw body into what the handler for ``label`` expects."""
        ...

    def extract(self, label: Label, document: Any, request: Request) -> ExtractResult:
        ...


class BaseExtractor:
    """
    Shared plumbing for built-in extractors: domain matching, body parsing and
    handler lookup. Subclasses set the class attributes and implement handlers().
    """

    name: ClassVar[str] = ""
    domains: ClassVar[List[str]] = []
    labels: ClassVar[FrozenSet[Label]] = frozenset()
    json_labels: ClassVar[FrozenSet[Label]] = frozenset()
    default_pagination: ClassVar[str] = ""
    default_pagination_options: ClassVar[Dict[str, Any]] = {}

    def __init__(
        self,
        planner: Optional[PaginationPolicy] = None,
        *,
        start_urls: Optional[List[Any]] = None,
        page_size: int = 500,
    ) -> None:
        self.page_size = page_size
        self.planner = planner or build_planner(self.default_pagination, **self.default_pagination_options)
        self._start_urls = start_urls

    @classmethod
    def matches(cls, url: str) -> bool:
        netloc = urlparse(url).netloc.lower()
        return any(netloc == d or netloc.endswith("." + d) for d in cls.domains)

    def start_requests(self) -> List[Request]:
        if self._start_urls:
            return [Request.from_start(entry) for entry in self._start_urls]
        return self.default_start_requests()

    def default_start_requests(self) -> List[Request]:  # pragma: no cover - interface
        raise NotImplementedError

    def handlers(self) -> Mapping[Label, Handler]:  # pragma: no cover - interface
        raise NotImplementedError

    def parse(self, label: Label, page: FetchedPage) -> Any:
        if label in self.json_labels or page.is_json:
            return parse_json(page.body)
        return parse_html(page.body)

    def extract(self, label: Label, document: Any, request: Request) -> ExtractResult:
        handler = self.handlers().get(label)
        if handler is None:
            raise UnknownLabelError(label, self.name)
        return handler(document, request)
