"""
Pagination planners.

Two page-count arithmetics are supported, picked per site by name:

``counted-total``
    JSON APIs that report ``total`` and the ``count`` returned for a page
    requested with ``pageSize``. One more page exists iff
    ``total > pageSize and count == pageSize``; each page plans only its
    successor, so a category's pages are discovered strictly in order.

``derived-page-count``
    HTML listings that show an overall item counter. The first page derives
    ``ceil(total / items_on_page)`` and plans pages ``2..N`` in one go from a
    URL template keyed by the category id.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Type

from .errors import ConfigurationError, ExtractionError
from .models import Label, Request, UserData
from .utils.parsing import set_query_param

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PageContext:
    """What a planner needs to know about the page that was just processed."""

    request: Request
    category_id: Optional[str] = None


class PaginationPolicy(ABC):
    name: str = ""

    @abstractmethod
    def plan_next_pages(
        self, observed: int, reported_total: Optional[int], context: PageContext
    ) -> List[Request]:  # pragma: no cover - interface
        ...


class CountedTotalPolicy(PaginationPolicy):
    name = "counted-total"

    def __init__(self, *, page_param: str = "page", default_page_size: int = 500) -> None:
        self.page_param = page_param
        self.default_page_size = default_page_size

    def plan_next_pages(
        self, observed: int, reported_total: Optional[int], context: PageContext
    ) -> List[Request]:
        request = context.request
        page = request.user_data.page or 0
        page_size = request.user_data.page_size or self.default_page_size
        if reported_total is None:
            logger.warning("%s - no total reported, not paginating", request.url)
            return []
        if not (reported_total > page_size and observed == page_size):
            return []
        url = set_query_param(request.url, self.page_param, page + 1)
        return [request.follow(url, page=page + 1, page_size=page_size)]


class DerivedPageCountPolicy(PaginationPolicy):
    name = "derived-page-count"

    def __init__(self, *, url_template: str, label: Label = Label.PAGE) -> None:
        if "{category_id}" not in url_template or "{page}" not in url_template:
            raise ConfigurationError(
                f"url_template needs {{category_id}} and {{page}} placeholders: {url_template!r}"
            )
        self.url_template = url_template
        self.label = Label.parse(label)

    @staticmethod
    def pages_needed(observed: int, reported_total: int) -> int:
        return -(-reported_total // observed)

    def plan_next_pages(
        self, observed: int, reported_total: Optional[int], context: PageContext
    ) -> List[Request]:
        request = context.request
        # Only the first page of a listing plans; later pages were already enqueued by it.
        if (request.user_data.page or 1) != 1:
            return []
        if observed <= 0:
            logger.warning("%s - no items on page, cannot derive page count", request.url)
            return []
        if reported_total is None or reported_total <= observed:
            return []
        if not context.category_id:
            raise ExtractionError(f"{request.url} - paginated listing without a category id")

        pages = self.pages_needed(observed, reported_total)
        logger.debug("%s - %d items of %d, %d pages", request.url, observed, reported_total, pages)
        return [
            Request(
                url=self.url_template.format(category_id=context.category_id, page=page),
                label=self.label,
                headers=request.headers,
                user_data=UserData(
                    page=page,
                    page_size=observed,
                    category_path=request.user_data.category_path,
                ),
            )
            for page in range(2, pages + 1)
        ]


POLICIES: Dict[str, Type[PaginationPolicy]] = {
    CountedTotalPolicy.name: CountedTotalPolicy,
    DerivedPageCountPolicy.name: DerivedPageCountPolicy,
}


def build_planner(name: str, **options: Any) -> PaginationPolicy:
    try:
        policy_cls = POLICIES[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown pagination policy {name!r}; expected one of {sorted(POLICIES)}"
        ) from None
    try:
        return policy_cls(**options)
    except TypeError as exc:
        raise ConfigurationError(f"Bad options for pagination policy {name!r}: {exc}") from exc
