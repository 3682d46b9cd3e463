from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence, Tuple, TYPE_CHECKING

from content_migrator.errors import BulkFetchFailure, CancellationError, ConfigurationError
from content_migrator.extract import page_to_record, raw_entry
from content_migrator.schema import default_schema, infer_schema, to_json_schema
from content_migrator.tree import dedupe_urls
from content_migrator.types import CrawlOptions, CrawlResult, PageResult, Schema, ScrapeOptions, Strategy

if TYPE_CHECKING:
    from content_migrator.web import PageFetcher

logger = logging.getLogger("content_migrator.crawl")

# one credit per page plus the mapping overhead
MAP_CREDIT_OVERHEAD = 2


def estimate_credits(url_count: int) -> int:
    return url_count + MAP_CREDIT_OVERHEAD


async def sample_schema(fetcher: "PageFetcher", url: str, timeout: int = 30000, max_age: int = 0) -> Schema:
    """Infer a schema from one sampled page, or the default schema if sampling fails."""
    try:
        sample = await fetcher.sample(
            url,
            formats=["markdown", "html"],
            only_main_content=True,
            timeout=timeout,
            max_age=max_age,
        )
    except Exception as e:
        logger.warning("crawl: schema sample raised, using default schema | url=%s error=%s", url, e)
        return default_schema()
    if not sample.success:
        logger.warning("crawl: schema sample failed, using default schema | url=%s error=%s", url, sample.error)
        return default_schema()
    schema = infer_schema(sample.markdown, sample.html)
    logger.info("crawl: inferred schema | url=%s fields=%s", url, schema.field_names())
    return schema


async def resolve_schema(
    fetcher: "PageFetcher",
    schema: Optional[Schema],
    options: CrawlOptions,
    sample_url: str,
) -> Tuple[Schema, bool]:
    """Return (schema, inferred)."""
    if schema is not None:
        if not schema.properties:
            raise ConfigurationError("Schema must define at least one field")
        return schema, False
    if options.auto_infer:
        return await sample_schema(fetcher, sample_url, timeout=options.sample_timeout), True
    raise ConfigurationError("Schema is required or auto-inference failed")


def scrape_options_for(schema: Schema, options: CrawlOptions) -> ScrapeOptions:
    return ScrapeOptions(
        formats=["markdown", "json"],
        only_main_content=True,
        timeout=options.page_timeout,
        max_age=options.max_age,
        json_schema=to_json_schema(schema),
    )


async def fetch_each(
    fetcher: "PageFetcher",
    urls: Sequence[str],
    scrape_options: ScrapeOptions,
    workers: int = 1,
) -> List[Tuple[str, Optional[PageResult]]]:
    """Per-URL fetches with at most `workers` in flight. A failed URL yields None, in input order."""
    semaphore = asyncio.Semaphore(max(1, workers))

    async def _one(url: str) -> Tuple[str, Optional[PageResult]]:
        async with semaphore:
            try:
                page = await fetcher.fetch_one(url, scrape_options)
            except Exception as e:
                logger.warning("crawl: skipping url=%s error=%s", url, e)
                return url, None
        if page.url is None:
            page.url = url
        return url, page

    if workers <= 1:
        return [await _one(u) for u in urls]
    return list(await asyncio.gather(*(_one(u) for u in urls)))


async def _run(
    fetcher: "PageFetcher",
    schema: Optional[Schema],
    urls: List[str],
    options: CrawlOptions,
    sample_url: str,
) -> CrawlResult:
    final_schema, inferred = await resolve_schema(fetcher, schema, options, sample_url)
    scrape_options = scrape_options_for(final_schema, options)

    pages: List[Tuple[str, PageResult]]
    skipped: List[str] = []
    logger.info("crawl: bulk fetch start | urls=%d fields=%s", len(urls), final_schema.field_names())
    try:
        batch = await fetcher.batch_fetch(urls, scrape_options)
        if not batch.success:
            raise BulkFetchFailure(batch.error or "Batch scrape failed")
        pages = [(page.url or "", page) for page in batch.data]
        strategy = Strategy.BULK
        logger.info("crawl: bulk fetch ok | pages=%d", len(pages))
    except Exception as e:
        logger.warning("crawl: bulk fetch failed, falling back to per-url fetches | error=%s", e)
        strategy = Strategy.BULK_WITH_FALLBACK
        pages = []
        for url, page in await fetch_each(fetcher, urls, scrape_options, workers=options.workers):
            if page is None:
                skipped.append(url)
            else:
                pages.append((url, page))

    records = tuple(page_to_record(page, final_schema, url) for url, page in pages)
    raw = tuple(raw_entry(page, url) for url, page in pages) if options.include_raw else None
    logger.info(
        "crawl: done | strategy=%s requested=%d completed=%d skipped=%d",
        strategy.value,
        len(urls),
        len(records),
        len(skipped),
    )
    return CrawlResult(
        records=records,
        total_requested=len(urls),
        total_completed=len(records),
        credits_used=estimate_credits(len(urls)),
        strategy_used=strategy,
        schema=final_schema,
        inferred=inferred,
        raw=raw,
        skipped=tuple(skipped),
    )


async def crawl(
    fetcher: "PageFetcher",
    schema: Optional[Schema],
    selected_urls: Sequence[str],
    options: Optional[CrawlOptions] = None,
    sample_url: Optional[str] = None,
) -> CrawlResult:
    """Extract one record per selected page.

    Tries a single bulk fetch first and degrades to per-URL fetches when it
    fails; a page that fails on its own is skipped, never the whole crawl.
    Exceeding `options.timeout` aborts the crawl with CancellationError and
    discards whatever was collected.
    """
    options = options or CrawlOptions()
    urls = dedupe_urls(selected_urls or [])
    if not urls:
        raise ConfigurationError("No URLs selected for scraping")
    sample = sample_url or urls[0]

    if options.timeout is None:
        return await _run(fetcher, schema, urls, options, sample)
    try:
        return await asyncio.wait_for(_run(fetcher, schema, urls, options, sample), timeout=options.timeout)
    except asyncio.TimeoutError as e:
        logger.error("crawl: aborted after %.1fs | urls=%d", options.timeout, len(urls))
        raise CancellationError(f"Crawl did not finish within {options.timeout:g}s and was aborted") from e
