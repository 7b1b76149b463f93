from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from bs4 import BeautifulSoup

from ..errors import ExtractionError
from ..models import Item, Label, Request, UserData
from ..pagination import PageContext
from .base import BaseExtractor, ExtractResult, Handler

logger = logging.getLogger(__name__)

ROOT_URL = "https://shop.billa.cz/"
API_URL = "https://shop.billa.cz/api/categories/{slug}/products?pageSize={page_size}&page=0"


def to_czk(value: Optional[float]) -> Optional[float]:
    """API prices are integers in hundredths of a crown."""
    if not value:
        return None
    return round(value / 100, 2)


class BillaExtractor(BaseExtractor):
    """
    shop.billa.cz: the HTML home page only lists categories, products come
    from a paginated JSON API that reports ``total`` and ``count``.
    """

    name = "billa"
    domains = ["shop.billa.cz"]
    labels = frozenset({Label.START, Label.CATEGORY})
    json_labels = frozenset({Label.CATEGORY})
    default_pagination = "counted-total"

    def default_start_requests(self) -> List[Request]:
        return [Request(url=ROOT_URL, label=Label.START)]

    def handlers(self) -> Mapping[Label, Handler]:
        return {
            Label.START: self.handle_start,
            Label.CATEGORY: self.handle_category,
        }

    # ---- Handlers -----------------------------------------------------------

    def handle_start(self, soup: BeautifulSoup, request: Request) -> ExtractResult:
        requests = [self.category_request(slug) for slug in self.category_slugs(soup)]
        logger.info("%s - Found %d categories", request.url, len(requests))
        return ExtractResult(next_requests=requests)

    def handle_category(self, data: Any, request: Request) -> ExtractResult:
        if not isinstance(data, dict):
            raise ExtractionError(f"{request.url} - expected a JSON object")
        total = data.get("total")
        count = data.get("count")
        results = data.get("results") or []
        page = request.user_data.page or 0

        result = ExtractResult()
        if page == 0:
            # count only the first page of a category
            result.counters["categories"] = 1
        if count is None:
            count = len(results)
        result.next_requests = self.planner.plan_next_pages(count, total, PageContext(request))
        result.items = [self.to_item(x) for x in results]
        logger.debug("%s - page %d: %d products of %s", request.url, page, len(result.items), total)
        return result

    # ---- Extraction helpers -------------------------------------------------

    def category_slugs(self, soup: BeautifulSoup) -> List[str]:
        slugs: List[str] = []
        for link in soup.select('a[href*="/produkty/"].ws-card[data-teaser-name]'):
            href = (link.get("href") or "").rstrip("/")
            slug = href.split("/")[-1]
            if slug:
                slugs.append(slug)
        return slugs

    def category_request(self, slug: str) -> Request:
        return Request(
            url=API_URL.format(slug=slug, page_size=self.page_size),
            label=Label.CATEGORY,
            headers={"Accept": "application/json"},
            user_data=UserData(page=0, page_size=self.page_size),
        )

    def to_item(self, result: Dict[str, Any]) -> Item:
        try:
            item_id = str(result["sku"]).replace("-", "")
            price = result["price"]
            regular = price.get("regular") or {}
        except (KeyError, TypeError, AttributeError) as exc:
            raise ExtractionError(f"Malformed product record: {exc!r}") from exc

        parents = result.get("parentCategories") or [[]]
        breadcrumbs = " > ".join(x.get("name", "") for x in parents[0]) if parents else ""
        images = result.get("images") or []
        # Promotion prices exist in the payload but are not shown on the web, so they are not used.
        return Item(
            item_id=item_id,
            slug=item_id,
            name=result.get("name"),
            url=f"https://shop.billa.cz/produkt/{result.get('slug')}",
            img=images[0] if images else None,
            current_price=to_czk(regular.get("value")),
            original_price=None,
            currency="CZK",
            discounted=False,
            use_unit_price=bool(result.get("weightPieceArticle") or False),
            current_unit_price=to_czk(regular.get("perStandardizedQuantity")),
            original_unit_price=None,
            unit=price.get("baseUnitShort"),
            category=breadcrumbs or None,
            in_stock=True,
        )
