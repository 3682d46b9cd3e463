from __future__ import annotations

import io
import json
import logging
import math
import re
import time
import zipfile
from datetime import datetime, timezone
from email.utils import format_datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Sequence, Union

from content_migrator.errors import ConfigurationError

logger = logging.getLogger("content_migrator.export")

Record = Mapping[str, Any]


class ExportFormat(str, Enum):
    JSON = "json"
    WEBFLOW = "webflow"
    CSV = "csv"
    WOOCOMMERCE = "woocommerce"
    DRUPAL = "drupal"
    WIX = "wix"
    SHOPIFY = "shopify"
    WORDPRESS = "wordpress"
    SQUARESPACE = "squarespace"


EXTENSIONS: Dict[ExportFormat, str] = {
    ExportFormat.JSON: "json",
    ExportFormat.WEBFLOW: "json",
    ExportFormat.CSV: "csv",
    ExportFormat.WOOCOMMERCE: "csv",
    ExportFormat.DRUPAL: "csv",
    ExportFormat.WIX: "csv",
    ExportFormat.SHOPIFY: "csv",
    ExportFormat.WORDPRESS: "xml",
    ExportFormat.SQUARESPACE: "xml",
}

MEDIA_TYPES = {
    "json": "application/json",
    "csv": "text/csv",
    "xml": "application/xml",
    "zip": "application/zip",
}

PLATFORM_FORMATS: Dict[str, ExportFormat] = {
    "wordpress": ExportFormat.WORDPRESS,
    "shopify": ExportFormat.SHOPIFY,
    "webflow": ExportFormat.WEBFLOW,
    "drupal": ExportFormat.DRUPAL,
    "csv": ExportFormat.CSV,
    "squarespace": ExportFormat.SQUARESPACE,
    "wix": ExportFormat.WIX,
    "woocommerce": ExportFormat.WOOCOMMERCE,
    "custom": ExportFormat.JSON,
}

SHOPIFY_COLUMNS = (
    "Handle", "Title", "Body (HTML)", "Vendor", "Type", "Tags", "Published",
    "Option1 Name", "Option1 Value", "Variant SKU", "Variant Grams",
    "Variant Inventory Tracker", "Variant Inventory Qty", "Variant Inventory Policy",
    "Variant Fulfillment Service", "Variant Price", "Variant Compare At Price",
    "Variant Requires Shipping", "Variant Taxable", "Variant Barcode",
    "Image Src", "Image Position", "Image Alt Text", "Gift Card",
    "SEO Title", "SEO Description", "Variant Weight Unit", "Status",
)

# keys with a dedicated WXR element; everything else becomes postmeta
WP_STANDARD_KEYS = ("title", "content", "description", "date")


class ExportFile(NamedTuple):
    filename: str
    content: bytes
    media_type: str


def resolve_format(target: Union[str, ExportFormat]) -> ExportFormat:
    if isinstance(target, ExportFormat):
        return target
    try:
        return ExportFormat(str(target).strip().lower())
    except ValueError:
        raise ConfigurationError(f"Unknown export format '{target}'") from None


def text_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ", ".join(text_value(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _first(item: Record, *keys: str, default: str = "") -> str:
    for key in keys:
        value = item.get(key)
        if value:
            return text_value(value)
    return default


def slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def _collapse_newlines(text: str) -> str:
    return re.sub(r"\r?\n", " ", text)


def to_json(records: Sequence[Record]) -> str:
    return json.dumps(list(records), indent=2, ensure_ascii=False)


def to_webflow(records: Sequence[Record]) -> str:
    return json.dumps({"items": list(records)}, indent=2, ensure_ascii=False)


def to_csv(records: Sequence[Record]) -> str:
    """Generic CSV. Columns come from the first record; text cells are always quoted."""
    if not records:
        return ""
    headers = list(records[0].keys())
    lines = [",".join(headers)]
    for item in records:
        cells = []
        for key in headers:
            value = item.get(key)
            if isinstance(value, (str, list, tuple, dict)):
                cleaned = _collapse_newlines(text_value(value)).replace('"', '""')
                cells.append(f'"{cleaned}"')
            else:
                cells.append(text_value(value))
        lines.append(",".join(cells))
    return "\n".join(lines)


def shopify_row(item: Record, index: int) -> Dict[str, str]:
    title = _first(item, "title", default=f"Product {index + 1}")
    body = _first(item, "description", "content")
    image = _first(item, "image_url", "image")
    return {
        "Handle": slugify(title),
        "Title": title,
        "Body (HTML)": body,
        "Vendor": _first(item, "vendor", default="Default Vendor"),
        "Type": _first(item, "product_type", "type"),
        "Tags": _first(item, "tags"),
        "Published": "TRUE",
        "Option1 Name": "Title",
        "Option1 Value": "Default Title",
        "Variant SKU": _first(item, "sku"),
        "Variant Grams": _first(item, "weight", default="0"),
        "Variant Inventory Tracker": "shopify",
        "Variant Inventory Qty": _first(item, "inventory_quantity", "stock", default="0"),
        "Variant Inventory Policy": "deny",
        "Variant Fulfillment Service": "manual",
        "Variant Price": _first(item, "price", default="0"),
        "Variant Compare At Price": _first(item, "compare_at_price"),
        "Variant Requires Shipping": "TRUE",
        "Variant Taxable": "TRUE",
        "Variant Barcode": _first(item, "barcode"),
        "Image Src": image,
        "Image Position": "1" if image else "",
        "Image Alt Text": title if image else "",
        "Gift Card": "FALSE",
        "SEO Title": title[:70],
        "SEO Description": body[:320],
        "Variant Weight Unit": "g",
        "Status": "active",
    }


def _shopify_cell(value: str) -> str:
    if any(ch in value for ch in ('"', ",", "\n", "\r")):
        return '"' + _collapse_newlines(value.replace('"', '""')).replace("\r", " ") + '"'
    return value


def to_shopify_csv(records: Sequence[Record]) -> str:
    """Shopify product import CSV: always the same 28 columns, in Shopify's order."""
    if not records:
        return ""
    lines = [",".join(SHOPIFY_COLUMNS)]
    for index, item in enumerate(records):
        row = shopify_row(item, index)
        lines.append(",".join(_shopify_cell(row[col]) for col in SHOPIFY_COLUMNS))
    return "\n".join(lines)


# characters XML 1.0 does not allow anywhere in a document
_XML_ILLEGAL = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")


def cdata(value: Any) -> str:
    text = _XML_ILLEGAL.sub("", text_value(value)).replace("]]>", "]]]]><![CDATA[>")
    return f"<![CDATA[{text}]]>"


def post_slug(title: str) -> str:
    return re.sub(r"[^a-z0-9-]", "", re.sub(r"\s+", "-", title.lower()))


def _postmeta(key: str, value: Any) -> List[str]:
    return [
        "      <wp:postmeta>",
        f"        <wp:meta_key>{cdata(key)}</wp:meta_key>",
        f"        <wp:meta_value>{cdata(value)}</wp:meta_value>",
        "      </wp:postmeta>",
    ]


def to_wordpress_xml(records: Sequence[Record], now: Optional[datetime] = None, site_url: str = "https://example.com") -> str:
    """WordPress eXtended RSS (WXR 1.2).

    Source dates come in too many shapes to trust as post dates, so every post
    gets the export timestamp and the scraped date is kept as `original_date`
    postmeta.
    """
    now = now or datetime.now()
    wp_date = now.strftime("%Y-%m-%d %H:%M:%S")
    now_utc = now.astimezone(timezone.utc)
    wp_date_gmt = now_utc.strftime("%Y-%m-%d %H:%M:%S")
    pub_date = format_datetime(now_utc, usegmt=True)

    items: List[str] = []
    for index, item in enumerate(records):
        post_id = index + 1
        title = _first(item, "title", default=f"Post {post_id}")
        content = _first(item, "content", "description")
        lines = [
            "    <item>",
            f"      <title>{cdata(title)}</title>",
            f"      <link>{site_url}/?p={post_id}</link>",
            f"      <pubDate>{pub_date}</pubDate>",
            f"      <dc:creator>{cdata('admin')}</dc:creator>",
            f'      <guid isPermaLink="false">{site_url}/?p={post_id}</guid>',
            "      <description></description>",
            f"      <content:encoded>{cdata(content)}</content:encoded>",
            f"      <excerpt:encoded>{cdata('')}</excerpt:encoded>",
            f"      <wp:post_id>{post_id}</wp:post_id>",
            f"      <wp:post_date>{cdata(wp_date)}</wp:post_date>",
            f"      <wp:post_date_gmt>{cdata(wp_date_gmt)}</wp:post_date_gmt>",
            f"      <wp:post_modified>{cdata(wp_date)}</wp:post_modified>",
            f"      <wp:post_modified_gmt>{cdata(wp_date_gmt)}</wp:post_modified_gmt>",
            f"      <wp:comment_status>{cdata('closed')}</wp:comment_status>",
            f"      <wp:ping_status>{cdata('closed')}</wp:ping_status>",
            f"      <wp:post_name>{cdata(post_slug(title))}</wp:post_name>",
            f"      <wp:status>{cdata('publish')}</wp:status>",
            "      <wp:post_parent>0</wp:post_parent>",
            "      <wp:menu_order>0</wp:menu_order>",
            f"      <wp:post_type>{cdata('post')}</wp:post_type>",
            f"      <wp:post_password>{cdata('')}</wp:post_password>",
            "      <wp:is_sticky>0</wp:is_sticky>",
        ]
        for key, value in item.items():
            if key not in WP_STANDARD_KEYS:
                lines.extend(_postmeta(key, value))
        if item.get("date"):
            lines.extend(_postmeta("original_date", item["date"]))
        lines.append("    </item>")
        items.append("\n".join(lines))

    header = f"""<?xml version="1.0" encoding="UTF-8"?>
<!-- This is a WordPress eXtended RSS file generated by Content Migrator -->
<!-- generator="Content Migrator" created="{wp_date}" -->
<rss version="2.0"
  xmlns:excerpt="http://wordpress.org/export/1.2/excerpt/"
  xmlns:content="http://purl.org/rss/1.0/modules/content/"
  xmlns:wfw="http://wellformedweb.org/CommentAPI/"
  xmlns:dc="http://purl.org/dc/elements/1.1/"
  xmlns:wp="http://wordpress.org/export/1.2/"
>
  <channel>
    <title>Imported Content</title>
    <link>{site_url}</link>
    <description>Content imported by Content Migrator</description>
    <pubDate>{pub_date}</pubDate>
    <language>en-US</language>
    <wp:wxr_version>1.2</wp:wxr_version>
    <wp:base_site_url>{site_url}</wp:base_site_url>
    <wp:base_blog_url>{site_url}</wp:base_blog_url>
    <wp:author>
      <wp:author_id>1</wp:author_id>
      <wp:author_login>{cdata('admin')}</wp:author_login>
      <wp:author_email>{cdata('admin@example.com')}</wp:author_email>
      <wp:author_display_name>{cdata('Admin')}</wp:author_display_name>
      <wp:author_first_name>{cdata('')}</wp:author_first_name>
      <wp:author_last_name>{cdata('')}</wp:author_last_name>
    </wp:author>
    <generator>Content Migrator 1.0</generator>
"""
    return header + "\n".join(items) + ("\n" if items else "") + "  </channel>\n</rss>\n"


def format_records(records: Sequence[Record], target: Union[str, ExportFormat], now: Optional[datetime] = None) -> str:
    fmt = resolve_format(target)
    if fmt is ExportFormat.JSON:
        return to_json(records)
    if fmt is ExportFormat.WEBFLOW:
        return to_webflow(records)
    if fmt is ExportFormat.SHOPIFY:
        return to_shopify_csv(records)
    if fmt in (ExportFormat.WORDPRESS, ExportFormat.SQUARESPACE):
        return to_wordpress_xml(records, now=now)
    return to_csv(records)


def split_batches(records: Sequence[Record], batch_size: int) -> List[List[Record]]:
    if batch_size < 1:
        raise ConfigurationError("Batch size must be at least 1")
    return [list(records[i : i + batch_size]) for i in range(0, len(records), batch_size)]


def format_batched(
    records: Sequence[Record],
    batch_size: int,
    target: Union[str, ExportFormat],
    now: Optional[datetime] = None,
) -> bytes:
    """Zip archive with one independently formatted `export-part{n}.{ext}` per batch."""
    fmt = resolve_format(target)
    ext = EXTENSIONS[fmt]
    batches = split_batches(records, batch_size)
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for n, batch in enumerate(batches, 1):
            zf.writestr(f"export-part{n}.{ext}", format_records(batch, fmt, now=now))
    logger.info("export: batched | format=%s records=%d parts=%d", fmt.value, len(records), len(batches))
    return buf.getvalue()


def export_filename(target: Union[str, ExportFormat], timestamp_ms: Optional[int] = None, archive: bool = False) -> str:
    ts = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    ext = "zip" if archive else EXTENSIONS[resolve_format(target)]
    return f"export-{ts}.{ext}"


def export_records(
    records: Sequence[Record],
    target: Union[str, ExportFormat],
    batch_size: Optional[int] = None,
    timestamp_ms: Optional[int] = None,
) -> ExportFile:
    """Single file when everything fits in one batch, otherwise a zip of parts."""
    fmt = resolve_format(target)
    if batch_size is not None and batch_size < 1:
        raise ConfigurationError("Batch size must be at least 1")
    parts = math.ceil(len(records) / batch_size) if batch_size else 1
    if parts <= 1:
        ext = EXTENSIONS[fmt]
        return ExportFile(
            export_filename(fmt, timestamp_ms),
            format_records(records, fmt).encode("utf-8"),
            MEDIA_TYPES[ext],
        )
    return ExportFile(
        export_filename(fmt, timestamp_ms, archive=True),
        format_batched(records, batch_size, fmt),
        MEDIA_TYPES["zip"],
    )
