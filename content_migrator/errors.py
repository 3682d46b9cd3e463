from __future__ import annotations

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from content_migrator.types import Schema


class ContentMigratorError(Exception):
    """Base error. `fallback_schema` lets a caller retry without re-inferring."""

    status_code = 500

    def __init__(self, message: str, fallback_schema: Optional["Schema"] = None):
        super().__init__(message)
        self.message = message
        self.fallback_schema = fallback_schema


class ConfigurationError(ContentMigratorError):
    status_code = 400


class ServerConfigurationError(ContentMigratorError):
    """Server-side setup is incomplete (e.g. missing API credentials)."""


class FetchError(ContentMigratorError):
    pass


class UpstreamUnavailable(FetchError):
    status_code = 503


class PerPageFetchFailure(FetchError):
    def __init__(self, url: str, message: str):
        super().__init__(f"{url}: {message}")
        self.url = url


class BulkFetchFailure(FetchError):
    pass


class CancellationError(ContentMigratorError):
    pass


def classify_fetch_error(message: str, fallback_schema: Optional["Schema"] = None) -> FetchError:
    text = message or "Unknown scraping error"
    if "502" in text or "503" in text or "Bad Gateway" in text:
        return UpstreamUnavailable(
            "The website is temporarily unavailable. Please try again later or try a different URL.",
            fallback_schema=fallback_schema,
        )
    if "timeout" in text.lower() or "timed out" in text.lower():
        return FetchError("The website took too long to respond. Please try again.", fallback_schema=fallback_schema)
    return FetchError(text, fallback_schema=fallback_schema)
