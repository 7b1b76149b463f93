from __future__ import annotations

import argparse
import asyncio
import logging
from typing import List

from ..config import CrawlConfig
from ..engines.base import CrawlReport
from ..errors import ConfigurationError, PersistenceError
from ..extractors.registry import ExtractorRegistry
from ..utils.loader import load_symbol
from ..utils.logging import setup_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_PERSISTENCE = 2


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Incremental product catalog crawler")
    p.add_argument("urls", nargs="*", help="Start URLs (space-separated); default is the site's home page")
    p.add_argument("--site", type=str, default=None, help="Site extractor name or dotted path (module:ClassName)")
    p.add_argument("--config", type=str, help="Path to config JSON", default=None)
    p.add_argument("--max-retries", type=int, default=None, help="Attempts per request before giving up")
    p.add_argument("--max-rpm", type=int, default=None, help="Requests-per-minute ceiling (0 = unlimited)")
    p.add_argument("--max-concurrency", type=int, default=None, help="Max in-flight requests")
    p.add_argument("--pagination", type=str, default=None,
                   help="Override pagination policy (counted-total, derived-page-count)")
    p.add_argument("--page-url-template", type=str, default=None,
                   help="Page URL template for derived-page-count, e.g. https://x/category/{category_id}/p{page}/")
    p.add_argument("--storage-dir", type=str, default=None, help="Where processed ids and stats are persisted")
    p.add_argument("--sink", type=str, default=None, help="Sink dotted path (module:ClassName)")
    p.add_argument("--extra-extractors", type=str, default=None,
                   help="Comma-separated dotted paths for additional extractors")
    p.add_argument("--output", type=str, default=None, help="Output file path")
    p.add_argument("--log-level", type=str, default=None, help="Log level (DEBUG, INFO, WARNING, ERROR)")
    p.add_argument("--debug", action="store_true", help="Shortcut for --log-level DEBUG")
    p.add_argument("--list-sites", action="store_true", help="Print registered site extractors and exit")
    p.add_argument("--serve", action="store_true", help="Run REST API server instead of CLI crawl")
    p.add_argument("--host", type=str, default="127.0.0.1", help="API host (when --serve)")
    p.add_argument("--port", type=int, default=8000, help="API port (when --serve)")
    return p


def _load_config(args: argparse.Namespace) -> CrawlConfig:
    if args.config:
        cfg = CrawlConfig.from_file(args.config)
    else:
        cfg = CrawlConfig.from_env()

    if args.urls:
        cfg.start_urls = list(args.urls)
    if args.site:
        cfg.site = args.site
    if args.max_retries is not None:
        cfg.max_retries = args.max_retries
    if args.max_rpm is not None:
        cfg.max_requests_per_minute = args.max_rpm
    if args.max_concurrency is not None:
        cfg.max_concurrency = args.max_concurrency
    if args.pagination:
        cfg.pagination = args.pagination
    if args.page_url_template:
        cfg.page_url_template = args.page_url_template
    if args.storage_dir:
        cfg.storage_dir = args.storage_dir
    if args.sink:
        cfg.sink = args.sink
    if args.extra_extractors:
        cfg.extra_extractors = [a.strip() for a in args.extra_extractors.split(",") if a.strip()]
    if args.output:
        cfg.output_path = args.output
    if args.log_level:
        cfg.log_level = args.log_level
    if args.debug:
        cfg.debug = True

    cfg.validate()
    return cfg


def build_registry(cfg: CrawlConfig) -> ExtractorRegistry:
    registry = ExtractorRegistry()
    registry.discover_entry_points()
    # Allow runtime registration of additional extractors
    for dotted in cfg.extra_extractors:
        try:
            registry.register_dotted(dotted)
        except ConfigurationError as exc:
            logger.warning("Failed to load extractor %s: %s", dotted, exc)
    return registry


def run_server(host: str, port: int) -> None:
    try:
        import uvicorn  # type: ignore
    except Exception as exc:  # pragma: no cover - optional dep
        raise SystemExit("To run the API, install dependencies: pip install fastapi uvicorn pydantic") from exc
    uvicorn.run("catalog_crawler.apis.app:app", host=host, port=port)


def run_cli(argv: List[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    setup_logging(args.log_level, debug=args.debug)

    if args.serve:
        run_server(args.host, args.port)
        return EXIT_OK

    if args.list_sites:
        for name in build_registry(CrawlConfig()).names:
            print(name)
        return EXIT_OK

    try:
        cfg = _load_config(args)
        setup_logging(cfg.log_level, debug=cfg.debug)
        registry = build_registry(cfg)
        # Dynamic engine loading so upgrades don't require code edits.
        engine_cls = load_symbol(cfg.engine)
        engine = engine_cls(cfg, registry=registry)
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return EXIT_CONFIG

    try:
        report: CrawlReport = asyncio.run(engine.crawl())
    except PersistenceError as exc:
        logger.critical("Could not persist crawl state, next run may re-emit items: %s", exc)
        return EXIT_PERSISTENCE
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return EXIT_CONFIG

    logger.info("Finished. Visited: %s | Failed: %s | Stats: %s | Output: %s",
                report.visited_count, len(report.failed), report.stats, cfg.output_path)
    return EXIT_OK
