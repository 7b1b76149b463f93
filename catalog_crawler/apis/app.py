from __future__ import annotations

from typing import Any, Dict, List, Optional, Union
import logging

try:
    from fastapi import FastAPI, HTTPException
    from pydantic import BaseModel
except Exception as exc:  # pragma: no cover - optional dependency
    raise RuntimeError(
        "FastAPI not installed. Install with `pip install fastapi pydantic uvicorn` "
        "or avoid using the API server."
    ) from exc

from ..config import CrawlConfig
from ..engines.base import CrawlReport
from ..errors import ConfigurationError, PersistenceError
from ..extractors.registry import ExtractorRegistry
from ..utils.loader import load_symbol
from ..version import __version__

logger = logging.getLogger(__name__)

app = FastAPI(title="catalog_crawler API", version=__version__)


class CrawlRequest(BaseModel):
    site: Optional[str] = None
    start_urls: List[Union[str, Dict[str, Any]]] = []
    max_retries: Optional[int] = None
    max_requests_per_minute: Optional[int] = None
    max_concurrency: Optional[int] = None
    pagination: Optional[str] = None
    page_url_template: Optional[str] = None
    storage_dir: Optional[str] = None
    output_path: Optional[str] = None
    extra_extractors: Optional[List[str]] = None


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/sites")
async def sites() -> Dict[str, List[str]]:
    return {"sites": ExtractorRegistry().names}


@app.post("/crawl")
async def crawl(req: CrawlRequest) -> Dict[str, Any]:
    cfg = CrawlConfig.from_env()
    overrides = req.model_dump(exclude_none=True, exclude={"extra_extractors"})
    for name, value in overrides.items():
        if value or name != "start_urls":
            setattr(cfg, name, value)
    if req.extra_extractors:
        cfg.extra_extractors = req.extra_extractors

    registry = ExtractorRegistry()
    try:
        cfg.validate()
        for dotted in cfg.extra_extractors:
            registry.register_dotted(dotted)
        engine_cls = load_symbol(cfg.engine)
        engine = engine_cls(cfg, registry=registry)
        report: CrawlReport = await engine.crawl()
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PersistenceError as exc:
        logger.error("Crawl state not persisted: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return report.to_dict()
