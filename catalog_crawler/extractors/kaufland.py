from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Mapping, Sequence
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from ..errors import ExtractionError
from ..models import Item, Label, Request, UserData
from ..pagination import PageContext
from ..utils.parsing import clean_price, iter_jsonld_items, parse_count, text_or_none
from .base import BaseExtractor, ExtractResult, Handler

logger = logging.getLogger(__name__)

ROOT_URL = "https://www.kaufland.cz/"
PAGE_URL_TEMPLATE = "https://www.kaufland.cz/category/{category_id}/p{page}/"
IN_STOCK = "https://schema.org/InStock"

# The category id sits in an inline Nuxt state script, with "/" escaped as \u002F.
_CATEGORY_ID_RE = re.compile(r'url:"(?:\\u002F|/)category(?:\\u002F|/)(\d+)')


class KauflandExtractor(BaseExtractor):
    """
    kaufland.cz: server-rendered HTML. Category pages either list
    subcategories or products; product listings show a total count and are
    paginated under /category/<id>/p<n>/.
    """

    name = "kaufland"
    domains = ["kaufland.cz"]
    labels = frozenset({Label.START, Label.CATEGORY, Label.PAGE})
    default_pagination = "derived-page-count"
    default_pagination_options = {"url_template": PAGE_URL_TEMPLATE, "label": Label.PAGE}

    def default_start_requests(self) -> List[Request]:
        return [Request(url=ROOT_URL, label=Label.START)]

    def handlers(self) -> Mapping[Label, Handler]:
        return {
            Label.START: self.handle_start,
            Label.CATEGORY: self.handle_category,
            Label.PAGE: self.handle_page,
        }

    # ---- Handlers -----------------------------------------------------------

    def handle_start(self, soup: BeautifulSoup, request: Request) -> ExtractResult:
        requests: List[Request] = []
        for anchor in soup.select("li.rd-footer_navigation-link-list-item > a[href]"):
            name = text_or_none(anchor.select_one("span")) or text_or_none(anchor)
            if not name:
                continue
            requests.append(self._category_request(anchor["href"], (name,)))
        logger.info("%s - Found %d categories", request.url, len(requests))
        return ExtractResult(next_requests=requests, counters={"categories": len(requests)})

    def handle_category(self, soup: BeautifulSoup, request: Request) -> ExtractResult:
        path = request.user_data.category_path
        if soup.select_one("div.rd-category-tree__nav") is not None:
            requests = [
                self._category_request(anchor["href"], (*path, anchor.get_text(strip=True)))
                for anchor in soup.select(
                    "li.rd-category-tree__list-item > a.rd-category-tree__anchor--level-1[href]"
                )
            ]
            logger.info("%s - Found %d categories", request.url, len(requests))
            return ExtractResult(next_requests=requests, counters={"categories": len(requests)})

        items = self.extract_products(soup, path)
        total = parse_count(text_or_none(soup.select_one(".product-count")))
        category_id = None
        if items and total is not None and total > len(items):
            category_id = self.category_id(request.url, soup)
            logger.debug("%s - Found category ID: %s", request.url, category_id)
        next_requests = self.planner.plan_next_pages(
            len(items), total, PageContext(request, category_id=category_id)
        )
        logger.info("%s - Found %d products", request.url, len(items))
        return ExtractResult(items=items, next_requests=next_requests)

    def handle_page(self, soup: BeautifulSoup, request: Request) -> ExtractResult:
        items = self.extract_products(soup, request.user_data.category_path)
        logger.info("%s - Found %d products", request.url, len(items))
        return ExtractResult(items=items)

    # ---- Extraction helpers -------------------------------------------------

    def _category_request(self, href: str, path: Sequence[str]) -> Request:
        return Request(
            url=urljoin(ROOT_URL, href),
            label=Label.CATEGORY,
            user_data=UserData(category_path=tuple(path)),
        )

    def _script_products(self, soup: BeautifulSoup) -> Dict[str, Dict[str, Any]]:
        """JSON-LD product data keyed by image URL, which is what the cards share with it."""
        by_image: Dict[str, Dict[str, Any]] = {}
        for script in soup.select("script[data-n-head]"):
            try:
                data = json.loads(script.string or "")
            except json.JSONDecodeError:
                continue
            for product in iter_jsonld_items(data):
                if not isinstance(product, dict) or "sku" not in product:
                    continue
                image = product.get("image")
                key = image[0] if isinstance(image, list) and image else image
                if not key:
                    continue
                offers = product.get("offers") or {}
                by_image[str(key)] = {
                    "item_id": str(product["sku"]),
                    "url": offers.get("url"),
                    "in_stock": offers.get("availability") == IN_STOCK,
                    "price": offers.get("price"),
                }
        return by_image

    def extract_products(self, soup: BeautifulSoup, category_path: Sequence[str]) -> List[Item]:
        info_by_image = self._script_products(soup)
        breadcrumbs = " > ".join(category_path) or None
        items: List[Item] = []
        for card in soup.select("article.product:not(:has(.product__sponsored-ad-label))"):
            source = card.select_one("source")
            img = (source.get("srcset") or "").strip() if source else ""
            info = info_by_image.get(img)
            if info is None:
                logger.debug("Product card without script data (img=%r), skipping", img)
                continue
            rrp = card.select_one(".price__note--rrp")
            price = info["price"]
            items.append(
                Item(
                    item_id=info["item_id"],
                    name=text_or_none(card.select_one(".product__title")),
                    url=info["url"],
                    img=img,
                    current_price=float(price) if price is not None else None,
                    original_price=clean_price(rrp.get_text()) if rrp else None,
                    currency="CZK",
                    discounted=rrp is not None,
                    category=breadcrumbs,
                    in_stock=info["in_stock"],
                )
            )
        return items

    def category_id(self, url: str, soup: BeautifulSoup) -> str:
        parts = [p for p in urlparse(url).path.split("/") if p]
        if len(parts) >= 2 and parts[0] == "category":
            return parts[1]
        for script in soup.select("script:not([src]):not([data-n-head]):not([type])"):
            match = _CATEGORY_ID_RE.search(script.string or "")
            if match:
                return match.group(1)
        raise ExtractionError(f"{url} - category id not found in URL or page scripts")
