from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Union
import os
import json

from .errors import ConfigurationError
from .pagination import POLICIES
from .version import __version__, CONFIG_SCHEMA_VERSION

# A start URL is either a bare string (site's default label) or {"url": ..., "label": ...}.
StartUrl = Union[str, Dict[str, Any]]


@dataclass
class CrawlConfig:
    """
    Canonical configuration object passed throughout the system.
    Keep it dataclass-only (no heavy deps) to stay upgrade-friendly.
    """
    schema_version: int = CONFIG_SCHEMA_VERSION
    # Registered extractor name ("billa", "kaufland") or a dotted class path.
    site: Optional[str] = None
    start_urls: List[StartUrl] = field(default_factory=list)
    max_retries: int = 5
    max_requests_per_minute: int = 400
    max_concurrency: int = 10
    request_timeout: float = 30.0
    # Base delay between attempts of one request; doubles per attempt.
    retry_backoff: float = 1.0
    user_agent: str = f"catalog_crawler/{__version__}"
    # "counted-total" / "derived-page-count"; None keeps the site's own policy.
    pagination: Optional[str] = None
    page_size: int = 500
    page_url_template: Optional[str] = None
    # Persisted processedIds/stats live here between runs.
    storage_dir: str = "storage/key_value_store"
    checkpoint_interval: float = 60.0
    # Dotted paths for engine/sink to allow runtime swapping without code changes.
    engine: str = "catalog_crawler.engines.catalog_engine:CatalogCrawlEngine"
    sink: str = "catalog_crawler.export.json_exporter:JSONLinesSink"
    # Extra extractors (dotted class paths) to register at startup
    extra_extractors: List[str] = field(default_factory=list)
    output_path: str = "output/items.jsonl"
    log_level: Optional[str] = None
    debug: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    # ---------- Loaders ----------

    @classmethod
    def from_env(cls) -> "CrawlConfig":
        """
        Build config from environment variables (all optional).
        """
        def _get(name: str, default: str) -> str:
            return os.getenv(name, default)

        def _list(name: str) -> List[str]:
            return [x.strip() for x in _get(name, "").split(",") if x.strip()]

        try:
            return cls(
                site=os.getenv("CRAWLER_SITE") or None,
                start_urls=list(_list("CRAWLER_START_URLS")),
                max_retries=int(_get("CRAWLER_MAX_RETRIES", "5")),
                max_requests_per_minute=int(_get("CRAWLER_MAX_REQUESTS_PER_MINUTE", "400")),
                max_concurrency=int(_get("CRAWLER_MAX_CONCURRENCY", "10")),
                request_timeout=float(_get("CRAWLER_REQUEST_TIMEOUT", "30.0")),
                retry_backoff=float(_get("CRAWLER_RETRY_BACKOFF", "1.0")),
                user_agent=_get("CRAWLER_USER_AGENT", f"catalog_crawler/{__version__}"),
                pagination=os.getenv("CRAWLER_PAGINATION") or None,
                page_size=int(_get("CRAWLER_PAGE_SIZE", "500")),
                page_url_template=os.getenv("CRAWLER_PAGE_URL_TEMPLATE") or None,
                storage_dir=_get("CRAWLER_STORAGE_DIR", "storage/key_value_store"),
                checkpoint_interval=float(_get("CRAWLER_CHECKPOINT_INTERVAL", "60")),
                engine=_get("CRAWLER_ENGINE", "catalog_crawler.engines.catalog_engine:CatalogCrawlEngine"),
                sink=_get("CRAWLER_SINK", "catalog_crawler.export.json_exporter:JSONLinesSink"),
                extra_extractors=_list("CRAWLER_EXTRA_EXTRACTORS"),
                output_path=_get("CRAWLER_OUTPUT_PATH", "output/items.jsonl"),
                log_level=os.getenv("CRAWLER_LOG_LEVEL") or None,
                debug=_get("CRAWLER_DEBUG", "").lower() in ("1", "true", "yes"),
            )
        except ValueError as exc:
            raise ConfigurationError(f"Invalid CRAWLER_* environment value: {exc}") from exc

    @classmethod
    def from_file(cls, path: str | os.PathLike[str]) -> "CrawlConfig":
        """
        Load configuration from a JSON file. Supports schema migration for future versions.
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Cannot read config {path}: {exc}") from exc
        data = migrate_config(data)
        try:
            return cls(**data)
        except TypeError as exc:
            raise ConfigurationError(f"Unknown option in {path}: {exc}") from exc

    # ---------- Validation ----------

    def validate(self) -> None:
        if not self.site and not self.start_urls:
            raise ConfigurationError("Provide a site or at least one start URL.")
        if self.max_retries < 1:
            raise ConfigurationError("max_retries must be >= 1")
        if self.max_concurrency <= 0:
            raise ConfigurationError("max_concurrency must be > 0")
        if self.max_requests_per_minute < 0:
            raise ConfigurationError("max_requests_per_minute must be >= 0 (0 disables the ceiling)")
        if self.page_size <= 0:
            raise ConfigurationError("page_size must be > 0")
        if self.pagination is not None and self.pagination not in POLICIES:
            raise ConfigurationError(
                f"pagination must be one of {sorted(POLICIES)}, got {self.pagination!r}"
            )
        if self.pagination == "derived-page-count" and not self.page_url_template:
            raise ConfigurationError("derived-page-count pagination needs page_url_template")
        for entry in self.start_urls:
            if isinstance(entry, dict) and "url" not in entry:
                raise ConfigurationError(f"start URL entry without 'url': {entry!r}")

    def pagination_options(self) -> Dict[str, Any]:
        if self.pagination == "counted-total":
            return {"default_page_size": self.page_size}
        if self.pagination == "derived-page-count":
            return {"url_template": self.page_url_template}
        return {}


def migrate_config(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Migrate config dict to the latest schema version.
    Keep this pure and additive. Add migrations here as you bump schema.
    """
    raw = dict(raw)
    schema = raw.get("schema_version", 1)

    if schema < 2:
        # v1 called max_retries "retries"
        if "retries" in raw:
            raw.setdefault("max_retries", raw.pop("retries"))
        raw["schema_version"] = 2

    raw.setdefault("schema_version", CONFIG_SCHEMA_VERSION)
    return raw
