from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from content_migrator.config import settings
from content_migrator.crawl import crawl
from content_migrator.export import export_records
from content_migrator.tree import SiteMap
from content_migrator.types import CrawlOptions
from content_migrator.web import get_fetcher

logging.basicConfig(level=settings.log_level, format="%(asctime)s | %(levelname)s | %(name)s | %(message)s")


async def demo():
    url = "https://firecrawl.dev"
    fetcher = get_fetcher()

    sitemap = SiteMap()
    await sitemap.map_site(fetcher, url, limit=25)
    for key, node in sitemap.tree.items():
        print(f"[tree] {key}: {node.count} urls")

    blog = f"{url}/blog"
    if blog in sitemap.urls or any(u.startswith(blog + "/") for u in sitemap.urls):
        await sitemap.map_node(fetcher, blog)
    else:
        sitemap.selected = set(sitemap.urls[:5])

    result = await crawl(fetcher, None, sitemap.selected_urls(), CrawlOptions(auto_infer=True, timeout=180))
    print(f"[crawl] strategy={result.strategy_used.value} completed={result.total_completed}/{result.total_requested}")
    print("[schema]", result.schema.field_names() if result.schema else [])

    exported = export_records(list(result.records), "wordpress", batch_size=settings.export_batch_size)
    Path(exported.filename).write_bytes(exported.content)
    print("[export]", exported.filename)


if __name__ == "__main__":
    asyncio.run(demo())
