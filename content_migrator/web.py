from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple
from urllib.parse import urljoin, urldefrag, urlparse

import requests
from bs4 import BeautifulSoup
from markdownify import markdownify as md

from content_migrator.config import Settings, settings as default_settings
from content_migrator.errors import FetchError, PerPageFetchFailure, ServerConfigurationError
from content_migrator.tree import dedupe_urls, domain_key
from content_migrator.types import BatchResult, MapResult, PageResult, SampleResult, ScrapeOptions

logger = logging.getLogger("content_migrator.web")


class PageFetcher(Protocol):
    """External capability that turns URLs into page content."""

    async def sample(
        self,
        url: str,
        *,
        formats: Sequence[str] = ("markdown", "html"),
        only_main_content: bool = True,
        timeout: int = 30000,
        max_age: int = 0,
    ) -> SampleResult: ...

    async def map_site(self, url: str, *, limit: int = 200) -> MapResult: ...

    async def batch_fetch(self, urls: Sequence[str], options: ScrapeOptions) -> BatchResult: ...

    async def fetch_one(self, url: str, options: ScrapeOptions) -> PageResult: ...


class FirecrawlFetcher:
    """Hosted Firecrawl v1 REST API. Blocking HTTP calls run in worker threads."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.firecrawl.dev",
        poll_interval: float = 2.0,
        max_wait: float = 600.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            }
        )

    def _request(self, method: str, url: str, payload: Optional[Dict[str, Any]] = None, timeout: float = 90.0) -> Dict[str, Any]:
        if not url.startswith("http"):
            url = f"{self.base_url}{url}"
        resp = self.session.request(method, url, json=payload, timeout=timeout)
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("error") or resp.reason
            except ValueError:
                detail = resp.reason
            raise FetchError(f"{resp.status_code} {detail}")
        return resp.json()

    @staticmethod
    def _http_timeout(timeout_ms: int) -> float:
        return timeout_ms / 1000.0 + 15.0

    async def sample(
        self,
        url: str,
        *,
        formats: Sequence[str] = ("markdown", "html"),
        only_main_content: bool = True,
        timeout: int = 30000,
        max_age: int = 0,
    ) -> SampleResult:
        payload = {
            "url": url,
            "formats": list(formats),
            "onlyMainContent": only_main_content,
            "timeout": timeout,
            "maxAge": max_age,
        }
        try:
            body = await asyncio.to_thread(self._request, "POST", "/v1/scrape", payload, self._http_timeout(timeout))
        except Exception as e:
            logger.warning("firecrawl: sample failed | url=%s error=%s", url, e)
            return SampleResult(success=False, error=str(e))
        if not body.get("success"):
            return SampleResult(success=False, error=body.get("error") or "Unknown scraping error")
        data = body.get("data") or {}
        return SampleResult(success=True, markdown=data.get("markdown"), html=data.get("html"))

    async def map_site(self, url: str, *, limit: int = 200) -> MapResult:
        try:
            body = await asyncio.to_thread(self._request, "POST", "/v1/map", {"url": url, "limit": limit})
        except Exception as e:
            logger.warning("firecrawl: map failed | url=%s error=%s", url, e)
            return MapResult(success=False, error=str(e))
        if not body.get("success"):
            return MapResult(success=False, error=body.get("error") or "Failed to map website")
        links = []
        for link in body.get("links") or []:
            href = link.get("url") if isinstance(link, dict) else link
            if isinstance(href, str) and href:
                links.append(href)
        return MapResult(success=True, urls=links)

    def _batch_blocking(self, urls: List[str], options: ScrapeOptions, stop: threading.Event) -> BatchResult:
        """Submit a batch job and poll it until it finishes, fails, or `stop` is set."""
        submit = self._request("POST", "/v1/batch/scrape", {"urls": urls, **options.to_payload()})
        if not submit.get("success") or not submit.get("id"):
            return BatchResult(success=False, error=submit.get("error") or "Batch scrape failed")
        job_id = submit["id"]
        logger.info("firecrawl: batch submitted | id=%s urls=%d", job_id, len(urls))

        deadline = time.monotonic() + self.max_wait
        while True:
            if stop.is_set():
                logger.info("firecrawl: batch polling stopped | id=%s", job_id)
                return BatchResult(success=False, error=f"Batch scrape {job_id} cancelled")
            status = self._request("GET", f"/v1/batch/scrape/{job_id}")
            state = status.get("status")
            if state == "completed":
                break
            if state == "failed" or status.get("success") is False or not state:
                return BatchResult(success=False, error=status.get("error") or "Batch scrape failed")
            if time.monotonic() > deadline:
                return BatchResult(success=False, error=f"Batch scrape {job_id} timed out")
            stop.wait(self.poll_interval)

        pages = list(status.get("data") or [])
        next_url = status.get("next")
        while next_url and not stop.is_set():
            more = self._request("GET", next_url)
            pages.extend(more.get("data") or [])
            next_url = more.get("next")
        return BatchResult(
            success=True,
            data=[PageResult.from_payload(p) for p in pages],
            credits_used=status.get("creditsUsed"),
        )

    async def batch_fetch(self, urls: Sequence[str], options: ScrapeOptions) -> BatchResult:
        stop = threading.Event()
        try:
            return await asyncio.to_thread(self._batch_blocking, list(urls), options, stop)
        finally:
            # a cancelled await leaves the worker thread running; tell it to quit polling
            stop.set()

    async def fetch_one(self, url: str, options: ScrapeOptions) -> PageResult:
        payload = {"url": url, **options.to_payload()}
        body = await asyncio.to_thread(self._request, "POST", "/v1/scrape", payload, self._http_timeout(options.timeout))
        if not body.get("success"):
            raise PerPageFetchFailure(url, body.get("error") or "Scrape failed")
        return PageResult.from_payload(body.get("data") or {}, url=url)


def html_to_markdown(html: str, only_main_content: bool = True) -> str:
    """Strip non-content tags and convert the main element to ATX markdown."""
    soup = BeautifulSoup(html, "lxml")
    for t in soup.select('script, style, noscript, template, script[type="application/json"]'):
        t.decompose()
    if only_main_content:
        for t in soup.select("nav, header, footer, aside"):
            t.decompose()
    main = soup.select_one("main") or soup.body or soup
    return md(str(main), heading_style="ATX", strip=["script", "style"]).strip()


def page_metadata(soup: BeautifulSoup, url: str) -> Dict[str, Any]:
    meta: Dict[str, Any] = {"sourceURL": url}
    if soup.title and soup.title.string:
        meta["title"] = soup.title.string.strip()
    for key, selector in (
        ("description", 'meta[name="description"]'),
        ("publishedTime", 'meta[property="article:published_time"]'),
        ("ogImage", 'meta[property="og:image"]'),
    ):
        tag = soup.select_one(selector)
        if tag and tag.get("content"):
            meta[key] = tag["content"].strip()
    return meta


def page_links(soup: BeautifulSoup, url: str) -> List[str]:
    out: List[str] = []
    for a in soup.find_all("a", href=True):
        href, _ = urldefrag(urljoin(url, a["href"]))
        if urlparse(href).scheme in ("http", "https"):
            out.append(href)
    return out


class LocalFetcher:
    """Direct HTTP fetcher. No bulk endpoint and no structured JSON extraction."""

    def __init__(self, session: Optional[requests.Session] = None, user_agent: str = "Mozilla/5.0 (compatible; ContentMigrator/1.0)"):
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": user_agent})

    def _get(self, url: str, timeout_ms: int) -> Tuple[str, str]:
        try:
            resp = self.session.get(url, timeout=timeout_ms / 1000.0)
            resp.raise_for_status()
        except requests.HTTPError as e:
            raise FetchError(str(e)) from e
        except requests.Timeout as e:
            raise FetchError(f"timeout fetching {url}") from e
        return resp.text, resp.url or url

    def _page(self, url: str, options: ScrapeOptions) -> PageResult:
        html, final_url = self._get(url, options.timeout)
        soup = BeautifulSoup(html, "lxml")
        return PageResult(
            markdown=html_to_markdown(html, options.only_main_content),
            html=html if "html" in options.formats else None,
            metadata=page_metadata(soup, final_url),
            url=url,
            links=page_links(soup, final_url),
        )

    async def sample(
        self,
        url: str,
        *,
        formats: Sequence[str] = ("markdown", "html"),
        only_main_content: bool = True,
        timeout: int = 30000,
        max_age: int = 0,
    ) -> SampleResult:
        options = ScrapeOptions(formats=list(formats), only_main_content=only_main_content, timeout=timeout, max_age=max_age)
        try:
            page = await asyncio.to_thread(self._page, url, options)
        except Exception as e:
            logger.warning("local: sample failed | url=%s error=%s", url, e)
            return SampleResult(success=False, error=str(e))
        return SampleResult(success=True, markdown=page.markdown, html=page.html)

    async def map_site(self, url: str, *, limit: int = 200) -> MapResult:
        """Same-site links found on the page, the page itself first."""
        try:
            page = await asyncio.to_thread(self._page, url, ScrapeOptions(formats=["markdown"], only_main_content=False))
        except Exception as e:
            logger.warning("local: map failed | url=%s error=%s", url, e)
            return MapResult(success=False, error=str(e))
        site = domain_key(url)
        found = [u for u in [url, *page.links] if domain_key(u) == site]
        return MapResult(success=True, urls=dedupe_urls(found)[:limit])

    async def batch_fetch(self, urls: Sequence[str], options: ScrapeOptions) -> BatchResult:
        return BatchResult(success=False, error="Bulk fetch is not supported by the local fetcher")

    async def fetch_one(self, url: str, options: ScrapeOptions) -> PageResult:
        try:
            return await asyncio.to_thread(self._page, url, options)
        except (requests.RequestException, FetchError) as e:
            raise PerPageFetchFailure(url, str(e)) from e


def get_fetcher(cfg: Optional[Settings] = None) -> PageFetcher:
    cfg = cfg or default_settings
    if cfg.fetcher == "firecrawl" or (cfg.fetcher == "auto" and cfg.firecrawl_configured):
        if not cfg.firecrawl_configured:
            raise ServerConfigurationError("Firecrawl API key not configured. Please check server configuration.")
        return FirecrawlFetcher(
            cfg.firecrawl_api_key or "",
            base_url=cfg.firecrawl_base_url,
            poll_interval=cfg.batch_poll_interval_s,
        )
    return LocalFetcher()
