from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional

from content_migrator.types import PageResult, Schema

logger = logging.getLogger("content_migrator.extract")

RAW_MARKDOWN_LIMIT = 2000

_MONTHS = "January|February|March|April|May|June|July|August|September|October|November|December"
_MON = "Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec"

# First match wins; the whole matched text is the value.
DATE_PATTERNS = (
    re.compile(r"\d{4}-\d{2}-\d{2}"),
    re.compile(r"\d{1,2}/\d{1,2}/\d{4}"),
    re.compile(rf"\b(?:{_MONTHS})\s+\d{{1,2}},?\s+\d{{4}}", re.I),
    re.compile(rf"\b\d{{1,2}}\s+(?:{_MON})\s+\d{{4}}", re.I),
    re.compile(rf"\b(?:{_MON})\s+\d{{1,2}},?\s+\d{{4}}", re.I),
)

_H1 = re.compile(r"^#\s+(.+)$", re.M)
_H2 = re.compile(r"^##\s+(.+)$", re.M)
_LEADING_FLOAT = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def extract_title(markdown: str) -> str:
    for pattern in (_H1, _H2):
        m = pattern.search(markdown)
        if m:
            return m.group(1).strip()
    for line in markdown.splitlines():
        if line.strip():
            return line.strip()
    return ""


def extract_date(markdown: str) -> str:
    for pattern in DATE_PATTERNS:
        m = pattern.search(markdown)
        if m:
            return m.group(0)
    return ""


def parse_float(value: str) -> Optional[float]:
    """Leading-number parse: '12.5 kg' -> 12.5, 'n/a' -> None."""
    m = _LEADING_FLOAT.match(value.strip())
    if not m:
        return None
    return float(m.group(0))


def coerce_value(value: str, field_type: str) -> Any:
    if field_type == "number":
        return parse_float(value)
    if field_type == "boolean":
        return value.lower() in ("true", "yes")
    if field_type == "array":
        return [part.strip() for part in value.split(",")]
    return value


def extract_field(markdown: str, field_name: str, field_type: str) -> Any:
    """Find `<field_name>: value` on a single line and coerce the value to the field type."""
    pattern = re.compile(rf"{re.escape(field_name)}(?:[:]|[^\S\r\n])+(.+)", re.I)
    m = pattern.search(markdown)
    if m:
        return coerce_value(m.group(1).strip(), field_type)
    return [] if field_type == "array" else ""


def record_from_markdown(page: PageResult, schema: Schema, requested_url: str = "") -> Dict[str, Any]:
    markdown = page.markdown or ""
    record: Dict[str, Any] = {}
    for key, spec in schema.properties.items():
        if key == "title":
            record[key] = page.metadata.get("title") or extract_title(markdown)
        elif key == "date":
            record[key] = page.metadata.get("publishedTime") or extract_date(markdown)
        elif key == "content":
            record[key] = markdown
        elif key == "url":
            record[key] = page.source_url or requested_url
        else:
            record[key] = extract_field(markdown, key, spec.type)
    return record


def order_record(data: Dict[str, Any], schema: Schema) -> Dict[str, Any]:
    """Schema fields first in schema order, then any extra keys the fetcher returned."""
    record = {key: data[key] for key in schema.properties if key in data}
    for key, value in data.items():
        if key not in record:
            record[key] = value
    return record


def page_to_record(page: PageResult, schema: Schema, requested_url: str = "") -> Dict[str, Any]:
    """Structured JSON from the fetcher when present, otherwise markdown heuristics."""
    if page.json:
        return order_record(page.json, schema)
    logger.debug("extract: no structured json, using markdown heuristics | url=%s", page.source_url or requested_url)
    return record_from_markdown(page, schema, requested_url)


def raw_entry(page: PageResult, requested_url: str = "") -> Dict[str, Any]:
    markdown = page.markdown or ""
    if len(markdown) > RAW_MARKDOWN_LIMIT:
        markdown = markdown[:RAW_MARKDOWN_LIMIT] + "..."
    return {
        "extractedJson": page.json,
        "metadata": dict(page.metadata),
        "url": str(page.url or page.metadata.get("sourceURL") or requested_url),
        "markdown": markdown,
        "links": list(page.links),
        "screenshot": page.screenshot,
    }
