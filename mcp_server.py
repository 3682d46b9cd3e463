from __future__ import annotations

from typing import Any, Dict, List, Optional
import logging

from fastmcp import FastMCP

from content_migrator.config import settings
from content_migrator.crawl import crawl, sample_schema
from content_migrator.errors import ConfigurationError
from content_migrator.export import export_records, format_records, split_batches
from content_migrator.schema import SCHEMA_TEMPLATES, normalize_schema, template_schema
from content_migrator.tree import SiteMap, ensure_scheme
from content_migrator.types import CrawlOptions, Schema
from content_migrator.web import get_fetcher

logging.basicConfig(level=settings.log_level, format="%(asctime)s | %(levelname)s | mcp | %(message)s")
log = logging.getLogger("content_migrator.mcp")

app = FastMCP(name="content-migrator-mcp", version="0.1.0")


@app.tool()
async def tool_map_site(url: str, limit: int = settings.map_limit) -> Dict[str, Any]:
    """Discover a site's URLs and return them with per-domain tree counts."""
    url = ensure_scheme(url)
    log.info("tool_map_site | url=%s limit=%d", url, limit)
    sitemap = SiteMap()
    urls = await sitemap.map_site(get_fetcher(), url, limit=limit)
    log.info("tool_map_site | urls=%d", len(urls))
    return {"urls": urls, "counts": {key: node.count for key, node in sitemap.tree.items()}}


@app.tool()
async def tool_infer_schema(url: str) -> Dict[str, Any]:
    """Sample one page and infer a field schema (default schema if sampling fails)."""
    url = ensure_scheme(url)
    log.info("tool_infer_schema | url=%s", url)
    schema = await sample_schema(get_fetcher(), url, timeout=settings.sample_timeout_ms, max_age=settings.schema_max_age_ms)
    log.info("tool_infer_schema | fields=%s", schema.field_names())
    return {"schema": schema.model_dump(exclude_none=True)}


@app.tool()
async def tool_schema_template(name: str) -> Dict[str, Any]:
    """Return a ready-made schema for a target platform (shopify, wordpress, woocommerce, blog, ecommerce)."""
    log.info("tool_schema_template | name=%s", name)
    if name not in SCHEMA_TEMPLATES:
        raise ConfigurationError(f"Unknown schema template '{name}'. Available: {', '.join(SCHEMA_TEMPLATES)}")
    return {"schema": template_schema(name).model_dump(exclude_none=True)}


@app.tool()
async def tool_crawl(urls: List[str], schema: Optional[Dict[str, Any]] = None, include_raw: bool = False) -> Dict[str, Any]:
    """Extract one record per URL. Without a schema one is inferred from the first URL."""
    log.info("tool_crawl | urls=%d schema=%s", len(urls), bool(schema))
    options = CrawlOptions(
        include_raw=include_raw,
        auto_infer=schema is None,
        timeout=float(settings.crawl_timeout_s),
        page_timeout=settings.page_timeout_ms,
        sample_timeout=settings.sample_timeout_ms,
        workers=settings.fallback_workers,
    )
    parsed = normalize_schema(Schema.model_validate(schema)) if schema is not None else None
    result = await crawl(get_fetcher(), parsed, urls, options)
    log.info("tool_crawl | completed=%d strategy=%s", result.total_completed, result.strategy_used.value)
    return result.to_response()


@app.tool()
async def tool_export(records: List[Dict[str, Any]], format: str = "json", batch_size: Optional[int] = None) -> Dict[str, Any]:
    """Serialize records to an export format. Batched exports return only the archive name and part count."""
    log.info("tool_export | format=%s records=%d batch_size=%s", format, len(records), batch_size)
    exported = export_records(records, format, batch_size=batch_size)
    if exported.media_type == "application/zip":
        return {"filename": exported.filename, "parts": len(split_batches(records, batch_size or len(records)))}
    return {"filename": exported.filename, "content": format_records(records, format)}


if __name__ == "__main__":
    # When run as a script, serve the MCP server on stdio
    app.run()
