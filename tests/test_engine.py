"""
tests/test_engine.py

End-to-end tests of CatalogCrawlEngine against a scripted fetcher.

Coverage
--------
- Pagination chain, category counting and cross-category duplicates
- products + duplicates == extraction results observed
- Idempotence of a second run over the same input
- Resume from persisted processedIds
- Retry exhaustion does not stop the crawl
- Extraction failures are scoped to one request
- Unknown labels abort the crawl but state is still flushed
- Checkpoint write failure at shutdown is fatal
"""

from __future__ import annotations

import asyncio
import json

import pytest

from catalog_crawler.engines.catalog_engine import CatalogCrawlEngine
from catalog_crawler.errors import FetchError, PersistenceError, UnknownLabelError
from catalog_crawler.models import Label, Request
from catalog_crawler.state.store import KeyValueStore
from catalog_crawler.utils.parsing import normalize_url

from conftest import SHOP, JsonCatalogExtractor, ScriptedFetcher, category_page, make_extractor

CAT_A = "https://shop.test/api/a?page=0"
CAT_B = "https://shop.test/api/b?page=0"


def catalog_pages():
    return {
        SHOP: {"categories": [CAT_A, CAT_B]},
        CAT_A: category_page(5, ["1", "2"]),
        "https://shop.test/api/a?page=1": category_page(5, ["3", "4"]),
        "https://shop.test/api/a?page=2": category_page(5, ["5"]),
        # "1" also shows up in category b
        CAT_B: category_page(2, ["6", "1"]),
    }


def run(engine: CatalogCrawlEngine):
    return asyncio.run(engine.crawl())


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


class TestFullCrawl:
    def test_emits_every_item_once(self, config, sink) -> None:
        fetcher = ScriptedFetcher(catalog_pages())
        engine = CatalogCrawlEngine(config, extractor=make_extractor(), fetcher=fetcher, sink=sink)

        report = run(engine)

        assert sorted(sink.ids) == ["1", "2", "3", "4", "5", "6"]
        assert report.stats["products"] == 6
        assert report.stats["duplicates"] == 1
        assert report.stats["categories"] == 2
        assert report.visited_count == 5
        assert report.failed == []

    def test_counters_match_observed_results(self, config, sink) -> None:
        pages = catalog_pages()
        observed = sum(len(p["results"]) for p in pages.values() if "results" in p)
        engine = CatalogCrawlEngine(
            config, extractor=make_extractor(), fetcher=ScriptedFetcher(pages), sink=sink
        )

        report = run(engine)

        assert report.stats["products"] + report.stats["duplicates"] == observed

    def test_pages_of_one_category_are_fetched_in_order(self, config, sink) -> None:
        fetcher = ScriptedFetcher(catalog_pages())
        run(CatalogCrawlEngine(config, extractor=make_extractor(), fetcher=fetcher, sink=sink))

        chain = [u for u in fetcher.order if "/api/a" in u]
        assert chain == [
            normalize_url(CAT_A),
            normalize_url("https://shop.test/api/a?page=1"),
            normalize_url("https://shop.test/api/a?page=2"),
        ]

    def test_state_is_persisted(self, config, sink, store) -> None:
        run(
            CatalogCrawlEngine(
                config, extractor=make_extractor(), fetcher=ScriptedFetcher(catalog_pages()), sink=sink
            )
        )

        assert sorted(store.get_value("processedIds")) == ["1", "2", "3", "4", "5", "6"]
        assert store.get_value("stats")["products"] == 6


# ---------------------------------------------------------------------------
# Cross-run deduplication
# ---------------------------------------------------------------------------


class TestAcrossRuns:
    def test_second_run_emits_nothing(self, config) -> None:
        first_sink, second_sink = [], []

        class Sink:
            def __init__(self, out):
                self.out = out

            def push(self, items):
                self.out.extend(items)

        first = run(
            CatalogCrawlEngine(
                config, extractor=make_extractor(),
                fetcher=ScriptedFetcher(catalog_pages()), sink=Sink(first_sink),
            )
        )
        second = run(
            CatalogCrawlEngine(
                config, extractor=make_extractor(),
                fetcher=ScriptedFetcher(catalog_pages()), sink=Sink(second_sink),
            )
        )

        assert len(first_sink) == 6
        assert second_sink == []
        # counters resume from the first run
        assert second.stats["products"] - first.stats["products"] == 0
        assert second.stats["duplicates"] - first.stats["duplicates"] == 7

    def test_resume_from_persisted_ids(self, config, sink, store) -> None:
        store.set_value("processedIds", ["A", "B"])
        pages = {
            SHOP: {"categories": [CAT_A]},
            CAT_A: category_page(3, ["A", "B", "C"]),
        }
        extractor = make_extractor(page_size=500)

        report = run(CatalogCrawlEngine(config, extractor=extractor, fetcher=ScriptedFetcher(pages), sink=sink))

        assert sink.ids == ["C"]
        assert report.stats["products"] == 1
        assert report.stats["duplicates"] == 2
        assert sorted(store.get_value("processedIds")) == ["A", "B", "C"]


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------


class TestFailures:
    def test_retry_exhaustion_abandons_only_that_request(self, config, sink) -> None:
        pages = catalog_pages()
        pages[CAT_B] = FetchError(CAT_B, "connection reset")
        fetcher = ScriptedFetcher(pages)
        failures = []

        report = run(
            CatalogCrawlEngine(
                config, extractor=make_extractor(), fetcher=fetcher, sink=sink,
                on_failure=lambda request, error: failures.append((request.url, error)),
            )
        )

        assert fetcher.calls[normalize_url(CAT_B)] == config.max_retries
        assert [url for url, _ in failures] == [CAT_B]
        assert isinstance(failures[0][1], FetchError)
        assert [r.url for r in report.failed] == [CAT_B]
        assert sorted(sink.ids) == ["1", "2", "3", "4", "5"]

    def test_transient_failure_recovers(self, config, sink) -> None:
        pages = catalog_pages()
        fetcher = ScriptedFetcher(pages)
        flaky = {"left": 2}
        inner = fetcher.__call__

        async def flaky_fetch(request: Request):
            if request.url == CAT_B and flaky["left"]:
                flaky["left"] -= 1
                raise FetchError(request.url, "503", status=503)
            return await inner(request)

        report = run(CatalogCrawlEngine(config, extractor=make_extractor(), fetcher=flaky_fetch, sink=sink))

        assert report.failed == []
        assert "6" in sink.ids

    def test_extraction_failure_is_scoped_to_request(self, config, sink) -> None:
        pages = catalog_pages()
        pages[CAT_B] = {"total": 1}  # no "results"/"count"
        report = run(
            CatalogCrawlEngine(config, extractor=make_extractor(), fetcher=ScriptedFetcher(pages), sink=sink)
        )

        assert report.extraction_errors == 1
        assert sorted(sink.ids) == ["1", "2", "3", "4", "5"]

    def test_unknown_label_is_fatal_but_state_is_flushed(self, config, sink, store) -> None:
        class StrayLabelExtractor(JsonCatalogExtractor):
            def handle_start(self, data, request):
                result = super().handle_start(data, request)
                result.next_requests.append(Request(url="https://shop.test/p/1", label=Label.PAGE))
                return result

        engine = CatalogCrawlEngine(
            config, extractor=StrayLabelExtractor(page_size=2),
            fetcher=ScriptedFetcher(catalog_pages()), sink=sink,
        )
        with pytest.raises(UnknownLabelError):
            run(engine)

        assert store.get_value("processedIds") is not None
        assert store.get_value("stats") is not None

    def test_checkpoint_failure_at_shutdown_is_fatal(self, config, sink, storage_dir) -> None:
        class BrokenStore(KeyValueStore):
            def set_value(self, key, value):
                raise PersistenceError(f"disk full while writing {key}")

        engine = CatalogCrawlEngine(
            config, extractor=make_extractor(), fetcher=ScriptedFetcher(catalog_pages()),
            sink=sink, store=BrokenStore(storage_dir),
        )
        with pytest.raises(PersistenceError):
            run(engine)
        # the crawl itself still completed before the final flush
        assert len(sink.ids) == 6


class TestConfiguredExtractor:
    def test_site_is_resolved_from_start_url(self, config, sink, tmp_path) -> None:
        config.site = None
        config.start_urls = ["https://shop.billa.cz/"]
        engine = CatalogCrawlEngine(config, fetcher=ScriptedFetcher({}), sink=sink)
        assert engine.extractor.name == "billa"

    def test_pagination_override(self, config) -> None:
        config.site = "kaufland"
        config.pagination = "derived-page-count"
        config.page_url_template = "https://www.kaufland.cz/c/{category_id}/{page}"
        engine = CatalogCrawlEngine(config, fetcher=ScriptedFetcher({}))
        assert engine.extractor.planner.url_template == config.page_url_template

    def test_default_sink_writes_json_lines(self, config, tmp_path) -> None:
        config.output_path = str(tmp_path / "out" / "items.jsonl")
        run(CatalogCrawlEngine(config, extractor=make_extractor(), fetcher=ScriptedFetcher(catalog_pages())))

        lines = (tmp_path / "out" / "items.jsonl").read_text(encoding="utf-8").splitlines()
        assert sorted(json.loads(line)["itemId"] for line in lines) == ["1", "2", "3", "4", "5", "6"]
