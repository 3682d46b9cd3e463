from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional, Pattern

from content_migrator.types import FieldSpec, FieldType, Schema

VALID_TYPES = ("string", "number", "boolean", "array")


class FieldPattern(NamedTuple):
    regex: Pattern[str]
    field: str
    type: FieldType
    description: str


# Ordered: the first pattern to match a field decides its position and description.
PATTERNS: tuple[FieldPattern, ...] = (
    # commerce
    FieldPattern(re.compile(r"\$[\d,]+\.?\d*"), "price", "string", "Product price"),
    FieldPattern(re.compile(r"price[:\s]*\$?[\d,]+\.?\d*", re.I), "price", "string", "Price information"),
    # headings and body text
    FieldPattern(re.compile(r"<h[1-3][^>]*>([^<]+)</h[1-3]>", re.I), "title", "string", "Main title or heading"),
    FieldPattern(re.compile(r"<p[^>]*>([^<]{50,})</p>", re.I), "description", "string", "Content description"),
    # images
    FieldPattern(re.compile(r"<img[^>]*src=\"([^\"]+)\"", re.I), "image_url", "string", "Image URL"),
    FieldPattern(re.compile(r"!\[([^\]]*)\]\(([^)]+)\)"), "image_url", "string", "Image URL from markdown"),
    # taxonomy
    FieldPattern(re.compile(r"category[:\s]*([^,\n]+)", re.I), "category", "string", "Product or content category"),
    FieldPattern(re.compile(r"tags?[:\s]*([^,\n]+)", re.I), "tags", "array", "Content tags"),
    # contact
    FieldPattern(re.compile(r"phone[:\s]*([^,\n]+)", re.I), "phone", "string", "Phone number"),
    FieldPattern(re.compile(r"email[:\s]*([^,\s]+@[^,\s]+)", re.I), "email", "string", "Email address"),
    FieldPattern(re.compile(r"address[:\s]*([^,\n]{10,})", re.I), "address", "string", "Physical address"),
    # dates
    FieldPattern(re.compile(r"\d{1,2}/\d{1,2}/\d{4}"), "date", "string", "Date information"),
    FieldPattern(re.compile(r"\d{4}-\d{2}-\d{2}"), "date", "string", "Date in ISO format"),
    # ratings
    FieldPattern(re.compile(r"rating[:\s]*(\d+\.?\d*)", re.I), "rating", "number", "Rating score"),
    FieldPattern(re.compile(r"(\d+\.?\d*)\s*stars?", re.I), "rating", "number", "Star rating"),
    # stock
    FieldPattern(re.compile(r"in\s+stock", re.I), "availability", "string", "Stock availability"),
    FieldPattern(re.compile(r"out\s+of\s+stock", re.I), "availability", "string", "Stock availability"),
    # authorship
    FieldPattern(re.compile(r"author[:\s]*([^,\n]+)", re.I), "author", "string", "Content author"),
    FieldPattern(re.compile(r"by\s+([A-Z][a-z]+\s+[A-Z][a-z]+)"), "author", "string", "Author name"),
    # identifiers
    FieldPattern(re.compile(r"id[:\s]*([A-Za-z0-9_-]+)", re.I), "id", "string", "Unique identifier"),
    FieldPattern(re.compile(r"sku[:\s]*([A-Za-z0-9_-]+)", re.I), "sku", "string", "Product SKU"),
)

# (trigger substrings, trigger fields, fields to ensure)
CONTENT_TYPE_RULES: tuple[tuple[tuple[str, ...], tuple[str, ...], tuple[tuple[str, FieldType, str], ...]], ...] = (
    (
        ("product",),
        ("price",),
        (
            ("price", "string", "Product price"),
            ("category", "string", "Product category"),
            ("availability", "string", "Stock status"),
        ),
    ),
    (
        ("article", "blog"),
        (),
        (
            ("author", "string", "Article author"),
            ("date", "string", "Publication date"),
            ("tags", "array", "Article tags"),
        ),
    ),
    (
        ("contact",),
        ("phone", "email"),
        (
            ("name", "string", "Business or person name"),
            ("phone", "string", "Phone number"),
            ("email", "string", "Email address"),
            ("address", "string", "Physical address"),
        ),
    ),
)

SCHEMA_TEMPLATES: Dict[str, List[tuple[str, FieldType]]] = {
    "shopify": [
        ("title", "string"),
        ("description", "string"),
        ("price", "string"),
        ("vendor", "string"),
        ("product_type", "string"),
        ("tags", "string"),
        ("image_url", "string"),
        ("sku", "string"),
        ("inventory_quantity", "number"),
    ],
    "wordpress": [
        ("title", "string"),
        ("content", "string"),
        ("author", "string"),
        ("publish_date", "string"),
        ("category", "string"),
        ("tags", "string"),
        ("featured_image", "string"),
    ],
    "woocommerce": [
        ("title", "string"),
        ("description", "string"),
        ("price", "string"),
        ("regular_price", "string"),
        ("sale_price", "string"),
        ("sku", "string"),
        ("stock_quantity", "number"),
        ("category", "string"),
        ("image_url", "string"),
    ],
    "blog": [
        ("title", "string"),
        ("content", "string"),
        ("date", "string"),
        ("author", "string"),
        ("category", "string"),
        ("tags", "string"),
    ],
    "ecommerce": [
        ("title", "string"),
        ("description", "string"),
        ("price", "string"),
        ("image_url", "string"),
        ("category", "string"),
        ("availability", "string"),
    ],
}


def infer_schema(markdown: Optional[str] = None, html: Optional[str] = None) -> Schema:
    """Derive a field schema from page content by pattern matching.

    Pure and deterministic: the same markdown/html always yields the same
    fields in the same order (pattern table order, then title/description,
    then the product, article and contact groups).
    """
    content = (markdown or "") + " " + (html or "")
    schema = Schema()

    for pattern in PATTERNS:
        if pattern.regex.search(content):
            schema.add(pattern.field, pattern.type, pattern.description)

    schema.add("title", "string", "Main title or name")
    schema.add("description", "string", "Main content or description")

    lowered = content.lower()
    for words, trigger_fields, ensure in CONTENT_TYPE_RULES:
        triggered = any(w in lowered for w in words) or any(f in schema.properties for f in trigger_fields)
        if not triggered:
            continue
        for name, type_, description in ensure:
            schema.add(name, type_, description)

    return schema


def default_schema() -> Schema:
    """Schema used whenever inference cannot sample the site."""
    schema = Schema()
    schema.add("title", "string", "Main title or heading")
    schema.add("description", "string", "Content description")
    schema.add("url", "string", "Source URL")
    return schema


def schema_from_fields(fields: Iterable[Mapping[str, Any]]) -> Schema:
    """Build a schema from editor rows like {"name": ..., "type": ..., "description": ...}.

    Blank names are skipped; whitespace in names becomes underscores.
    """
    schema = Schema()
    for f in fields:
        name = str(f.get("name") or "").strip()
        if not name:
            continue
        safe_name = re.sub(r"\s+", "_", name)
        type_ = f.get("type") if f.get("type") in VALID_TYPES else "string"
        schema.properties[safe_name] = FieldSpec(type=type_, description=f.get("description"))
    return schema


def normalize_schema(schema: Schema) -> Schema:
    """Apply the editor's field-name rules to a schema received from a client."""
    return schema_from_fields(
        {"name": name, "type": spec.type, "description": spec.description}
        for name, spec in schema.properties.items()
    )


def template_schema(name: str) -> Schema:
    if name not in SCHEMA_TEMPLATES:
        raise KeyError(f"Unknown schema template '{name}'")
    return schema_from_fields({"name": n, "type": t} for n, t in SCHEMA_TEMPLATES[name])


def to_json_schema(schema: Schema) -> Dict[str, Any]:
    """Translate to the plain JSON-schema object handed to the fetcher for structured extraction."""
    properties: Dict[str, Dict[str, Any]] = {}
    for key, spec in schema.properties.items():
        description = spec.description or f"{key} field"
        if spec.type == "array":
            properties[key] = {"type": "array", "items": {"type": "string"}, "description": description}
        elif spec.type in ("number", "boolean"):
            properties[key] = {"type": spec.type, "description": description}
        else:
            properties[key] = {"type": "string", "description": description}
    return {
        "type": "object",
        "properties": properties,
        "required": list(schema.properties.keys()),
    }
