import asyncio

import pytest
import requests

from content_migrator.config import Settings
from content_migrator.crawl import crawl
from content_migrator.errors import CancellationError, PerPageFetchFailure, ServerConfigurationError
from content_migrator.schema import default_schema
from content_migrator.types import CrawlOptions, ScrapeOptions
from content_migrator.web import FirecrawlFetcher, LocalFetcher, get_fetcher, html_to_markdown

API = "https://api.firecrawl.dev"

PAGE_HTML = """
<html>
  <head>
    <title>Site Page</title>
    <meta name="description" content="A page">
    <meta property="article:published_time" content="2024-02-03">
  </head>
  <body>
    <nav>menu</nav>
    <main>
      <h1>Title</h1>
      <p>Hello <b>world</b></p>
      <a href="/a">A</a>
      <a href="https://site.test/b#top">B</a>
      <a href="https://other.test/c">C</a>
      <a href="mailto:me@site.test">mail</a>
    </main>
    <footer>footer</footer>
    <script>var x = 1;</script>
  </body>
</html>
"""


class FakeResponse:
    def __init__(self, payload=None, text: str = "", status_code: int = 200, url: str = "", reason: str = "OK"):
        self._payload = payload
        self.text = text
        self.status_code = status_code
        self.url = url
        self.reason = reason

    def json(self):
        if self._payload is None:
            raise ValueError("no json body")
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error for url: {self.url}")


class FakeSession:
    """Replays scripted responses per (method, url); the last one repeats."""

    def __init__(self, routes):
        self.routes = {key: list(value) for key, value in routes.items()}
        self.headers = {}
        self.calls = []

    def _next(self, method, url):
        queue = self.routes.get((method, url))
        if not queue:
            raise AssertionError(f"Unexpected request: {method} {url}")
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def request(self, method, url, json=None, timeout=None):
        self.calls.append((method, url, json))
        return self._next(method, url)

    def get(self, url, timeout=None):
        self.calls.append(("GET", url, None))
        resp = self._next("GET", url)
        resp.url = resp.url or url
        return resp


def firecrawl(routes):
    session = FakeSession(routes)
    return FirecrawlFetcher("fc-test", base_url=API, poll_interval=0, session=session), session


@pytest.mark.asyncio
async def test_firecrawl_map_accepts_strings_and_objects():
    fetcher, session = firecrawl(
        {
            ("POST", f"{API}/v1/map"): [
                FakeResponse({"success": True, "links": ["https://a.com/x", {"url": "https://a.com/y"}, {"title": "no url"}]})
            ]
        }
    )
    result = await fetcher.map_site("https://a.com", limit=10)
    assert result.success
    assert result.urls == ["https://a.com/x", "https://a.com/y"]
    assert session.headers["Authorization"] == "Bearer fc-test"
    assert session.calls[0][2] == {"url": "https://a.com", "limit": 10}


@pytest.mark.asyncio
async def test_firecrawl_fetch_one():
    fetcher, session = firecrawl(
        {
            ("POST", f"{API}/v1/scrape"): [
                FakeResponse(
                    {
                        "success": True,
                        "data": {"markdown": "# Hi", "json": {"title": "Hi"}, "metadata": {"sourceURL": "https://a.com/x"}},
                    }
                )
            ]
        }
    )
    options = ScrapeOptions(formats=["markdown", "json"], json_schema={"type": "object"})
    page = await fetcher.fetch_one("https://a.com/x", options)
    assert page.json == {"title": "Hi"}
    assert page.url == "https://a.com/x"
    sent = session.calls[0][2]
    assert sent["url"] == "https://a.com/x"
    assert sent["jsonOptions"] == {"schema": {"type": "object"}}
    assert sent["onlyMainContent"] is True


@pytest.mark.asyncio
async def test_firecrawl_fetch_one_failure():
    fetcher, _ = firecrawl({("POST", f"{API}/v1/scrape"): [FakeResponse({"success": False, "error": "blocked"})]})
    with pytest.raises(PerPageFetchFailure, match="blocked"):
        await fetcher.fetch_one("https://a.com/x", ScrapeOptions())


@pytest.mark.asyncio
async def test_firecrawl_batch_polls_and_pages():
    fetcher, session = firecrawl(
        {
            ("POST", f"{API}/v1/batch/scrape"): [FakeResponse({"success": True, "id": "job1"})],
            ("GET", f"{API}/v1/batch/scrape/job1"): [
                FakeResponse({"status": "scraping"}),
                FakeResponse(
                    {
                        "status": "completed",
                        "creditsUsed": 2,
                        "data": [{"markdown": "one", "metadata": {"sourceURL": "https://a.com/1"}}],
                        "next": f"{API}/v1/batch/scrape/job1?skip=1",
                    }
                ),
            ],
            ("GET", f"{API}/v1/batch/scrape/job1?skip=1"): [
                FakeResponse({"data": [{"markdown": "two", "metadata": {"sourceURL": "https://a.com/2"}}]})
            ],
        }
    )

    result = await fetcher.batch_fetch(["https://a.com/1", "https://a.com/2"], ScrapeOptions())
    assert result.success
    assert [p.source_url for p in result.data] == ["https://a.com/1", "https://a.com/2"]
    assert result.credits_used == 2
    assert [c[1] for c in session.calls].count(f"{API}/v1/batch/scrape/job1") == 2


@pytest.mark.asyncio
async def test_firecrawl_batch_failed_status():
    fetcher, _ = firecrawl(
        {
            ("POST", f"{API}/v1/batch/scrape"): [FakeResponse({"success": True, "id": "job2"})],
            ("GET", f"{API}/v1/batch/scrape/job2"): [FakeResponse({"status": "failed", "error": "quota"})],
        }
    )
    result = await fetcher.batch_fetch(["https://a.com/1"], ScrapeOptions())
    assert not result.success
    assert result.error == "quota"


@pytest.mark.asyncio
async def test_firecrawl_sample_reports_upstream_status():
    fetcher, _ = firecrawl(
        {("POST", f"{API}/v1/scrape"): [FakeResponse({"error": "Bad Gateway"}, status_code=502, reason="Bad Gateway")]}
    )
    result = await fetcher.sample("https://a.com")
    assert not result.success
    assert result.error == "502 Bad Gateway"


def test_html_to_markdown_keeps_main_content():
    out = html_to_markdown(PAGE_HTML)
    assert "# Title" in out
    assert "**world**" in out
    assert "menu" not in out
    assert "footer" not in out
    assert "var x" not in out


@pytest.mark.asyncio
async def test_local_map_returns_same_site_links():
    session = FakeSession({("GET", "https://site.test/"): [FakeResponse(text=PAGE_HTML)]})
    result = await LocalFetcher(session=session).map_site("https://site.test/")
    assert result.success
    assert result.urls == ["https://site.test/", "https://site.test/a", "https://site.test/b"]
    assert "ContentMigrator" in session.headers["User-Agent"]


@pytest.mark.asyncio
async def test_local_fetch_one_reads_metadata():
    session = FakeSession({("GET", "https://site.test/post"): [FakeResponse(text=PAGE_HTML)]})
    page = await LocalFetcher(session=session).fetch_one("https://site.test/post", ScrapeOptions())
    assert page.metadata["title"] == "Site Page"
    assert page.metadata["publishedTime"] == "2024-02-03"
    assert page.metadata["sourceURL"] == "https://site.test/post"
    assert page.html is None
    assert page.json is None


@pytest.mark.asyncio
async def test_local_fetch_one_http_error():
    session = FakeSession({("GET", "https://site.test/missing"): [FakeResponse(status_code=404)]})
    with pytest.raises(PerPageFetchFailure, match="404"):
        await LocalFetcher(session=session).fetch_one("https://site.test/missing", ScrapeOptions())


@pytest.mark.asyncio
async def test_local_has_no_bulk_endpoint():
    result = await LocalFetcher(session=FakeSession({})).batch_fetch(["https://site.test/"], ScrapeOptions())
    assert not result.success


def test_get_fetcher_selection():
    assert isinstance(get_fetcher(Settings()), LocalFetcher)
    assert isinstance(get_fetcher(Settings(firecrawl_api_key="fc-YOUR_API_KEY")), LocalFetcher)
    assert isinstance(get_fetcher(Settings(firecrawl_api_key="fc-real")), FirecrawlFetcher)
    assert isinstance(get_fetcher(Settings(fetcher="local", firecrawl_api_key="fc-real")), LocalFetcher)
    with pytest.raises(ServerConfigurationError):
        get_fetcher(Settings(fetcher="firecrawl"))


@pytest.mark.asyncio
async def test_firecrawl_batch_stops_on_unsuccessful_poll():
    fetcher, session = firecrawl(
        {
            ("POST", f"{API}/v1/batch/scrape"): [FakeResponse({"success": True, "id": "job3"})],
            ("GET", f"{API}/v1/batch/scrape/job3"): [FakeResponse({"success": False, "error": "Job not found"})],
        }
    )
    result = await fetcher.batch_fetch(["https://a.com/1"], ScrapeOptions())
    assert not result.success
    assert result.error == "Job not found"
    assert len(session.calls) == 2


@pytest.mark.asyncio
async def test_aborted_crawl_stops_batch_polling():
    session = FakeSession(
        {
            ("POST", f"{API}/v1/batch/scrape"): [FakeResponse({"success": True, "id": "job4"})],
            ("GET", f"{API}/v1/batch/scrape/job4"): [FakeResponse({"status": "scraping"})],
        }
    )
    fetcher = FirecrawlFetcher("fc-test", base_url=API, poll_interval=0.02, session=session)

    with pytest.raises(CancellationError):
        await crawl(fetcher, default_schema(), ["https://a.com/1"], CrawlOptions(timeout=0.1))

    await asyncio.sleep(0.1)
    settled = len(session.calls)
    await asyncio.sleep(0.2)
    assert len(session.calls) == settled
