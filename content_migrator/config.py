"""
Runtime settings read from the environment (a local .env is honoured).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv(override=True)

PLACEHOLDER_API_KEY = "fc-YOUR_API_KEY"


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class Settings:
    firecrawl_api_key: Optional[str] = None
    firecrawl_base_url: str = "https://api.firecrawl.dev"
    fetcher: str = "auto"
    map_limit: int = 200
    sample_timeout_ms: int = 30000
    page_timeout_ms: int = 60000
    crawl_timeout_s: int = 180
    schema_max_age_ms: int = 86400000
    batch_poll_interval_s: float = 2.0
    export_batch_size: int = 50
    fallback_workers: int = 1
    db_path: str = "sessions.sqlite"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            firecrawl_api_key=os.getenv("FIRECRAWL_API_KEY"),
            firecrawl_base_url=os.getenv("FIRECRAWL_BASE_URL", "https://api.firecrawl.dev"),
            fetcher=os.getenv("FETCHER", "auto").lower(),
            map_limit=_int("MAP_LIMIT", 200),
            sample_timeout_ms=_int("SAMPLE_TIMEOUT_MS", 30000),
            page_timeout_ms=_int("PAGE_TIMEOUT_MS", 60000),
            crawl_timeout_s=_int("CRAWL_TIMEOUT_S", 180),
            schema_max_age_ms=_int("SCHEMA_MAX_AGE_MS", 86400000),
            batch_poll_interval_s=float(_int("BATCH_POLL_INTERVAL_S", 2)),
            export_batch_size=max(1, _int("EXPORT_BATCH_SIZE", 50)),
            fallback_workers=max(1, _int("FALLBACK_WORKERS", 1)),
            db_path=os.getenv("CONTENT_MIGRATOR_DB", os.path.abspath("sessions.sqlite")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    @property
    def firecrawl_configured(self) -> bool:
        key = self.firecrawl_api_key
        return bool(key) and key != PLACEHOLDER_API_KEY


settings = Settings.from_env()
