from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from .base import CrawlEngine, CrawlReport, FailureCallback, Fetcher
from .frontier import Frontier
from .router import Router
from ..config import CrawlConfig
from ..errors import ConfigurationError, CrawlerError, FetchError
from ..export.base import Sink
from ..extractors.base import SiteExtractor
from ..extractors.registry import ExtractorRegistry
from ..models import Request
from ..pagination import build_planner
from ..state.dedup import Deduplicator
from ..state.keeper import StateKeeper
from ..state.stats import Stats
from ..state.store import KeyValueStore
from ..utils.http import AiohttpFetcher, FetchedPage, create_session
from ..utils.loader import load_symbol
from ..utils.ratelimit import RateLimiter

logger = logging.getLogger(__name__)


def log_failed_request(request: Request, error: BaseException) -> None:
    logger.error("Request %s failed multiple times: %s", request.url, error)


class CatalogCrawlEngine(CrawlEngine):
    """
    Incremental catalog crawler.
    - Engine owns HTTP, retries, queueing and the crawl lifecycle.
    - Extractors own page parsing; the router picks the handler by label.
    - A StateKeeper task is the only writer of processed ids and counters.
    - Concurrency capped by the worker count, throughput by a requests-per-minute limiter.
    """

    def __init__(
        self,
        config: CrawlConfig,
        registry: ExtractorRegistry | None = None,
        *,
        extractor: Optional[SiteExtractor] = None,
        fetcher: Optional[Fetcher] = None,
        sink: Optional[Sink] = None,
        store: Optional[KeyValueStore] = None,
        on_failure: Optional[FailureCallback] = None,
    ) -> None:
        self.config = config
        self.registry = registry or ExtractorRegistry()
        self.extractor = extractor or self._build_extractor()
        self.fetcher = fetcher
        self.sink = sink
        self.store = store or KeyValueStore(config.storage_dir)
        self.on_failure = on_failure or log_failed_request

    def _build_extractor(self) -> SiteExtractor:
        cfg = self.config
        if cfg.site:
            extractor_cls = self.registry.get(cfg.site)
        else:
            first = cfg.start_urls[0] if cfg.start_urls else ""
            url = first if isinstance(first, str) else first.get("url", "")
            extractor_cls = self.registry.match(url)
            if extractor_cls is None:
                raise ConfigurationError(f"No extractor handles {url!r}; set 'site' explicitly")

        planner = None
        if cfg.pagination:
            planner = build_planner(cfg.pagination, **cfg.pagination_options())
        return extractor_cls(planner, start_urls=cfg.start_urls or None, page_size=cfg.page_size)

    async def crawl(self) -> CrawlReport:
        cfg = self.config
        report = CrawlReport()

        dedup = Deduplicator(self.store).load()
        stats = Stats(self.store, persist_interval=cfg.checkpoint_interval).load()
        router = Router(self.extractor)
        frontier = Frontier()
        for request in self.extractor.start_requests():
            router.ensure(request.label)
            frontier.add(request)

        sink = self.sink if self.sink is not None else load_symbol(cfg.sink)(cfg.output_path)
        limiter = RateLimiter(max_requests_per_minute=cfg.max_requests_per_minute)

        session = None
        fetcher = self.fetcher
        if fetcher is None:
            session = create_session()
            fetcher = AiohttpFetcher(session, timeout=cfg.request_timeout, user_agent=cfg.user_agent)

        try:
            async with StateKeeper(dedup, stats, sink) as keeper:
                workers = [
                    asyncio.create_task(
                        self._worker(frontier, router, keeper, fetcher, limiter, report),
                        name=f"crawl-worker-{i}",
                    )
                    for i in range(cfg.max_concurrency)
                ]
                try:
                    await self._until_drained(frontier, workers)
                finally:
                    for w in workers:
                        w.cancel()
                    await asyncio.gather(*workers, return_exceptions=True)
            logger.info("Crawler finished")
        finally:
            if session is not None:
                await session.close()

        report.stats = stats.as_dict()
        logger.info(
            "Visited: %s | Failed: %s | Stats: %s",
            report.visited_count, len(report.failed), report.stats,
        )
        return report

    async def _until_drained(self, frontier: Frontier, workers: List[asyncio.Task]) -> None:
        """Return once the frontier is empty and idle; re-raise if a worker died first."""
        drained = asyncio.create_task(frontier.join())
        await asyncio.wait([drained, *workers], return_when=asyncio.FIRST_COMPLETED)
        # A dying worker acknowledges its request first, so the join may finish alongside it.
        for task in workers:
            if task.done() and not task.cancelled() and task.exception() is not None:
                drained.cancel()
                task.result()

    # ---- Per-request pipeline -------------------------------------------------

    async def _worker(
        self,
        frontier: Frontier,
        router: Router,
        keeper: StateKeeper,
        fetcher: Fetcher,
        limiter: RateLimiter,
        report: CrawlReport,
    ) -> None:
        while True:
            request = await frontier.get()
            try:
                await self._process(request, frontier, router, keeper, fetcher, limiter, report)
            finally:
                frontier.task_done()

    async def _process(
        self,
        request: Request,
        frontier: Frontier,
        router: Router,
        keeper: StateKeeper,
        fetcher: Fetcher,
        limiter: RateLimiter,
        report: CrawlReport,
    ) -> None:
        page = await self._fetch_with_retries(request, fetcher, limiter, report)
        if page is None:
            return
        report.visited_count += 1

        try:
            result = router.dispatch(page, request, frontier)
        except ConfigurationError:
            raise
        except Exception as exc:  # broad catch: one broken page must not stop the crawl
            report.extraction_errors += 1
            logger.error("Extraction failed for [%s] %s: %r", request.label.value, request.url, exc)
            return

        await keeper.bump(result.counters)
        if not result.items:
            return
        try:
            outcome = await keeper.record(result.items)
        except OSError as exc:
            logger.error("Sink rejected %d items from %s: %r", len(result.items), request.url, exc)
            return
        logger.info(
            "%s - Found %d products, saved %d, duplicates %d",
            request.url, len(result.items), outcome.emitted, outcome.duplicates,
        )

    async def _fetch_with_retries(
        self,
        request: Request,
        fetcher: Fetcher,
        limiter: RateLimiter,
        report: CrawlReport,
    ) -> Optional[FetchedPage]:
        """
        Attempt a request at most max_retries times. Exhausted requests go to
        the failure callback and are dropped; siblings are unaffected.
        """
        attempts = self.config.max_retries
        last_exc: Optional[BaseException] = None
        for attempt in range(1, attempts + 1):
            await limiter.wait()
            try:
                return await fetcher(request)
            except (FetchError, asyncio.TimeoutError, OSError) as exc:
                last_exc = exc
                logger.warning(
                    "Request %s failed (attempt %d/%d): %r", request.url, attempt, attempts, exc
                )
            if attempt < attempts and self.config.retry_backoff > 0:
                await asyncio.sleep(min(self.config.retry_backoff * 2 ** (attempt - 1), 30.0))

        report.failed.append(request)
        try:
            self.on_failure(request, last_exc or CrawlerError("unknown failure"))
        except Exception:
            logger.exception("Failure callback raised for %s", request.url)
        return None
