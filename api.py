from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from content_migrator import db
from content_migrator.config import settings
from content_migrator.crawl import crawl
from content_migrator.errors import (
    ConfigurationError,
    ContentMigratorError,
    FetchError,
    UpstreamUnavailable,
    classify_fetch_error,
)
from content_migrator.export import PLATFORM_FORMATS, export_records
from content_migrator.schema import SCHEMA_TEMPLATES, default_schema, infer_schema, normalize_schema, template_schema
from content_migrator.tree import SiteMap, ensure_scheme, is_valid_url
from content_migrator.types import CrawlOptions, Schema
from content_migrator.web import PageFetcher, get_fetcher

logging.basicConfig(level=settings.log_level, format="%(asctime)s | %(levelname)s | %(name)s | %(message)s")
log = logging.getLogger("content_migrator.api")


@asynccontextmanager
async def lifespan(_: FastAPI):
    db.init_db()
    yield


app = FastAPI(title="Content Migrator API", lifespan=lifespan)


class CrawlRequest(BaseModel):
    url: Optional[str] = None
    schema_: Optional[Schema] = Field(default=None, alias="schema")
    autoInfer: bool = False
    includeRaw: bool = False
    selectedUrls: List[str] = []
    maxAge: int = 0
    sessionId: Optional[str] = None

    model_config = {"populate_by_name": True}


class MapRequest(BaseModel):
    url: str
    limit: int = settings.map_limit
    sessionId: Optional[str] = None


class MapNodeRequest(BaseModel):
    sessionId: str
    path: str
    limit: int = settings.map_limit


class SelectRequest(BaseModel):
    sessionId: str
    path: str


class ExportRequest(BaseModel):
    records: List[Dict[str, Any]]
    format: str = "json"
    platform: Optional[str] = None
    batchSize: Optional[int] = None


def get_page_fetcher() -> PageFetcher:
    return get_fetcher(settings)


# one lock per session: stored URL set and selection are read, changed and written back as one step
_session_locks: Dict[str, asyncio.Lock] = {}


def session_lock(session_id: str) -> asyncio.Lock:
    return _session_locks.setdefault(session_id, asyncio.Lock())


@app.exception_handler(ContentMigratorError)
async def migrator_error_handler(_: Request, exc: ContentMigratorError) -> JSONResponse:
    body: Dict[str, Any] = {"error": exc.message}
    if exc.fallback_schema is not None:
        body["fallbackSchema"] = exc.fallback_schema.model_dump(exclude_none=True)
    return JSONResponse(body, status_code=exc.status_code)


def _checked_url(url: Optional[str]) -> str:
    if not url:
        raise ConfigurationError("URL is required")
    url = ensure_scheme(url)
    if not is_valid_url(url):
        raise ConfigurationError("Invalid URL format")
    return url


def _sitemap_body(sitemap: SiteMap, new_urls: Optional[List[str]] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "success": True,
        "urls": list(sitemap.urls),
        "total": sitemap.total,
        "tree": {key: node.to_dict() for key, node in sitemap.tree.items()},
        "selected": sitemap.selected_urls(),
        "expanded": sorted(sitemap.expanded),
    }
    if new_urls is not None:
        body["newUrls"] = new_urls
    return body


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/crawl")
async def infer(url: Optional[str] = None, fetcher: PageFetcher = Depends(get_page_fetcher)) -> Dict[str, Any]:
    """Sample one page and infer a field schema from it.

    Failures carry `fallbackSchema` so the caller can continue with the default fields.
    """
    url = _checked_url(url)
    log.info("infer: sampling | url=%s", url)
    try:
        sample = await fetcher.sample(
            url,
            formats=["markdown", "html"],
            only_main_content=True,
            timeout=settings.sample_timeout_ms,
            max_age=settings.schema_max_age_ms,
        )
    except ContentMigratorError as e:
        e.fallback_schema = e.fallback_schema or default_schema()
        raise
    except Exception as e:
        raise classify_fetch_error(str(e) or "Failed to analyze website", fallback_schema=default_schema()) from e

    if not sample.success:
        err = classify_fetch_error(sample.error or "Unknown scraping error", fallback_schema=default_schema())
        if not isinstance(err, UpstreamUnavailable):
            err = FetchError(f"Failed to analyze website: {err.message}", fallback_schema=default_schema())
        raise err

    schema = infer_schema(sample.markdown, sample.html)
    log.info("infer: done | url=%s fields=%s", url, schema.field_names())
    return {
        "success": True,
        "schema": schema.model_dump(exclude_none=True),
        "sampleContent": (sample.markdown or "")[:1000] + "...",
    }


@app.post("/api/crawl")
async def crawl_pages(req: CrawlRequest, fetcher: PageFetcher = Depends(get_page_fetcher)) -> Dict[str, Any]:
    """Extract one record per selected URL; see content_migrator.crawl.crawl."""
    url = _checked_url(req.url)
    selected = list(req.selectedUrls)
    if req.sessionId and not selected:
        stored = db.load_sitemap(req.sessionId)
        selected = list(stored["selected"]) if stored else []

    options = CrawlOptions(
        include_raw=req.includeRaw,
        max_age=req.maxAge,
        auto_infer=req.autoInfer,
        timeout=float(settings.crawl_timeout_s),
        page_timeout=settings.page_timeout_ms,
        sample_timeout=settings.sample_timeout_ms,
        workers=settings.fallback_workers,
    )
    log.info("crawl: request | url=%s selected=%d auto_infer=%s", url, len(selected), req.autoInfer)
    try:
        schema = normalize_schema(req.schema_) if req.schema_ is not None else None
        result = await crawl(fetcher, schema, selected, options, sample_url=url)
    except ContentMigratorError:
        raise
    except Exception as e:
        log.exception("crawl: failed | url=%s", url)
        raise ContentMigratorError(str(e) or "Failed to crawl website") from e

    if req.sessionId:
        db.save_results(
            req.sessionId,
            result.schema.model_dump(exclude_none=True) if result.schema else {},
            list(result.records),
            result.total_completed,
            result.strategy_used.value,
        )
    return result.to_response()


@app.post("/api/map")
async def map_site(req: MapRequest, fetcher: PageFetcher = Depends(get_page_fetcher)) -> Dict[str, Any]:
    url = _checked_url(req.url)
    sitemap = SiteMap()
    await sitemap.map_site(fetcher, url, limit=req.limit)
    if req.sessionId:
        async with session_lock(req.sessionId):
            db.save_sitemap(req.sessionId, url, sitemap.urls, sitemap.selected_urls())
    return _sitemap_body(sitemap)


def _stored_sitemap(session_id: str) -> Dict[str, Any]:
    stored = db.load_sitemap(session_id)
    if stored is None:
        raise ConfigurationError(f"Unknown session '{session_id}'. Map the site first.")
    return stored


@app.post("/api/map/node")
async def map_node(req: MapNodeRequest, fetcher: PageFetcher = Depends(get_page_fetcher)) -> Dict[str, Any]:
    """Discover deeper under one tree node of a stored session and merge the result."""
    path = _checked_url(req.path)
    async with session_lock(req.sessionId):
        stored = _stored_sitemap(req.sessionId)
        sitemap = SiteMap(stored["urls"], selected=stored["selected"])
        new_urls = await sitemap.map_node(fetcher, path, limit=req.limit)
        db.save_sitemap(req.sessionId, stored["root_url"], sitemap.urls, sitemap.selected_urls())
    return _sitemap_body(sitemap, new_urls=new_urls)


@app.post("/api/select")
async def select_node(req: SelectRequest) -> Dict[str, Any]:
    """Toggle a tree node's whole subtree in or out of the session's selection."""
    async with session_lock(req.sessionId):
        stored = _stored_sitemap(req.sessionId)
        sitemap = SiteMap(stored["urls"], selected=stored["selected"])
        try:
            state = sitemap.toggle(ensure_scheme(req.path))
        except KeyError:
            raise ConfigurationError(f"No tree node at '{req.path}'") from None
        db.save_sitemap(req.sessionId, stored["root_url"], sitemap.urls, sitemap.selected_urls())
    body = _sitemap_body(sitemap)
    body["state"] = state.value
    return body


@app.get("/api/templates/{name}")
async def schema_template(name: str) -> Dict[str, Any]:
    if name not in SCHEMA_TEMPLATES:
        raise ConfigurationError(f"Unknown schema template '{name}'. Available: {', '.join(SCHEMA_TEMPLATES)}")
    return {"success": True, "schema": template_schema(name).model_dump(exclude_none=True)}


@app.post("/api/export")
async def export(req: ExportRequest) -> Response:
    if not req.records:
        raise ConfigurationError("Nothing to export. Crawl a website first.")
    target = PLATFORM_FORMATS.get(req.platform, req.format) if req.platform else req.format
    exported = export_records(req.records, target, batch_size=req.batchSize or settings.export_batch_size)
    log.info("export: %s | records=%d bytes=%d", exported.filename, len(req.records), len(exported.content))
    return Response(
        content=exported.content,
        media_type=exported.media_type,
        headers={"Content-Disposition": f'attachment; filename="{exported.filename}"'},
    )
