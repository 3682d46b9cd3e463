"""
Test helpers: an in-memory page fetcher with scripted outcomes.
"""
from typing import Dict, List, Optional, Sequence

from content_migrator.types import BatchResult, MapResult, PageResult, SampleResult, ScrapeOptions


class FakeFetcher:
    def __init__(
        self,
        pages: Optional[Dict[str, PageResult]] = None,
        failing: Sequence[str] = (),
        batch_ok: bool = True,
        batch_raises: bool = False,
        map_urls: Optional[List[str]] = None,
        map_ok: bool = True,
        sample: Optional[SampleResult] = None,
    ):
        self.pages = pages or {}
        self.failing = set(failing)
        self.batch_ok = batch_ok
        self.batch_raises = batch_raises
        self.map_urls = map_urls or []
        self.map_ok = map_ok
        self.sample_result = sample or SampleResult(success=False, error="no sample scripted")
        self.calls: List[tuple] = []

    async def sample(self, url, *, formats=("markdown", "html"), only_main_content=True, timeout=30000, max_age=0):
        self.calls.append(("sample", url))
        return self.sample_result

    async def map_site(self, url, *, limit=200):
        self.calls.append(("map", url))
        if not self.map_ok:
            return MapResult(success=False, error="map failed")
        return MapResult(success=True, urls=list(self.map_urls))

    async def batch_fetch(self, urls, options: ScrapeOptions):
        self.calls.append(("batch", tuple(urls)))
        if self.batch_raises:
            raise RuntimeError("batch endpoint exploded")
        if not self.batch_ok:
            return BatchResult(success=False, error="Batch scrape failed")
        return BatchResult(success=True, data=[self.pages[u] for u in urls if u in self.pages and u not in self.failing])

    async def fetch_one(self, url, options: ScrapeOptions):
        self.calls.append(("fetch", url))
        if url in self.failing or url not in self.pages:
            raise RuntimeError(f"could not fetch {url}")
        return self.pages[url]


def make_page(url: str, markdown: str = "", json: Optional[dict] = None, **metadata) -> PageResult:
    return PageResult(json=json, markdown=markdown, metadata={"sourceURL": url, **metadata}, url=url)
