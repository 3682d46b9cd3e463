"""
Content Migrator package

Modules:
- tree: site URL tree, selection and incremental node mapping
- schema: pattern-based schema inference and schema helpers
- extract: markdown field heuristics and page-to-record conversion
- crawl: bulk crawl with per-URL fallback
- export: CMS export formats and batched archives
- web: page fetchers (Firecrawl API, local HTTP)
- db: session persistence
"""

__all__ = [
    "tree",
    "schema",
    "extract",
    "crawl",
    "export",
    "web",
    "db",
]
