"""
Shared fixtures: an in-memory sink, a scripted fetcher and a tiny JSON
catalog extractor, so engine tests run without network access.
"""

from __future__ import annotations

import json
from collections import defaultdict
from typing import Any, Dict, List, Mapping, Optional

import pytest

from catalog_crawler.config import CrawlConfig
from catalog_crawler.errors import FetchError
from catalog_crawler.extractors.base import BaseExtractor, ExtractResult, Handler
from catalog_crawler.models import Item, Label, Request, UserData
from catalog_crawler.pagination import PageContext
from catalog_crawler.state.store import KeyValueStore
from catalog_crawler.utils.http import FetchedPage
from catalog_crawler.utils.parsing import normalize_url

SHOP = "https://shop.test/"


class ListSink:
    def __init__(self) -> None:
        self.batches: List[List[Item]] = []

    def push(self, items) -> None:
        self.batches.append(list(items))

    @property
    def ids(self) -> List[str]:
        return [item.item_id for batch in self.batches for item in batch]


class ScriptedFetcher:
    """
    Serves JSON payloads by URL. A payload that is an exception instance is
    raised on every attempt; unknown URLs raise a 404 FetchError.
    """

    def __init__(self, pages: Mapping[str, Any]) -> None:
        self.pages = {normalize_url(url): payload for url, payload in pages.items()}
        self.calls: Dict[str, int] = defaultdict(int)
        self.order: List[str] = []

    async def __call__(self, request: Request) -> FetchedPage:
        url = normalize_url(request.url)
        self.calls[url] += 1
        self.order.append(url)
        if url not in self.pages:
            raise FetchError(request.url, "not found", status=404)
        payload = self.pages[url]
        if isinstance(payload, Exception):
            raise payload
        return FetchedPage(
            url=request.url,
            status=200,
            body=json.dumps(payload).encode("utf-8"),
            content_type="application/json",
        )


class JsonCatalogExtractor(BaseExtractor):
    """
    START payload: {"categories": [url, ...]}
    CATEGORY payload: {"total": int, "count": int, "results": [id, ...]}
    """

    name = "json-catalog"
    domains = ["shop.test"]
    labels = frozenset({Label.START, Label.CATEGORY})
    json_labels = frozenset({Label.START, Label.CATEGORY})
    default_pagination = "counted-total"

    def default_start_requests(self) -> List[Request]:
        return [Request(url=SHOP, label=Label.START)]

    def handlers(self) -> Mapping[Label, Handler]:
        return {Label.START: self.handle_start, Label.CATEGORY: self.handle_category}

    def handle_start(self, data: Any, request: Request) -> ExtractResult:
        return ExtractResult(
            next_requests=[
                Request(url=url, label=Label.CATEGORY, user_data=UserData(page=0, page_size=self.page_size))
                for url in data["categories"]
            ]
        )

    def handle_category(self, data: Any, request: Request) -> ExtractResult:
        result = ExtractResult(items=[Item(item_id=str(x), name=f"item {x}") for x in data["results"]])
        if (request.user_data.page or 0) == 0:
            result.counters["categories"] = 1
        result.next_requests = self.planner.plan_next_pages(
            data["count"], data["total"], PageContext(request)
        )
        return result


def category_page(total: int, results: List[str]) -> Dict[str, Any]:
    return {"total": total, "count": len(results), "results": results}


@pytest.fixture()
def sink() -> ListSink:
    return ListSink()


@pytest.fixture()
def storage_dir(tmp_path) -> str:
    return str(tmp_path / "kv")


@pytest.fixture()
def store(storage_dir) -> KeyValueStore:
    return KeyValueStore(storage_dir)


@pytest.fixture()
def config(storage_dir) -> CrawlConfig:
    return CrawlConfig(
        site="json-catalog",
        max_retries=3,
        retry_backoff=0,
        max_requests_per_minute=0,
        max_concurrency=4,
        page_size=2,
        checkpoint_interval=3600,
        storage_dir=storage_dir,
    )


def make_extractor(page_size: int = 2, start_urls: Optional[list] = None) -> JsonCatalogExtractor:
    return JsonCatalogExtractor(page_size=page_size, start_urls=start_urls)
