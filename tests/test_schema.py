import json

from content_migrator.schema import (
    PATTERNS,
    SCHEMA_TEMPLATES,
    default_schema,
    infer_schema,
    schema_from_fields,
    template_schema,
    to_json_schema,
)
from content_migrator.types import Schema


def test_inference_is_deterministic():
    markdown = "# Widget\nPrice: $19.99\nIn stock\nCategory: Tools\nBy Jane Doe"
    html = "<h1>Widget</h1><img src=\"/w.png\">"
    first = infer_schema(markdown, html)
    second = infer_schema(markdown, html)
    assert json.dumps(first.model_dump()) == json.dumps(second.model_dump())


def test_product_page_fields_and_order():
    schema = infer_schema("# Widget\nPrice: $19.99\nIn stock\nCategory: Tools")
    assert schema.field_names() == ["price", "category", "availability", "id", "title", "description"]
    assert schema.properties["price"].description == "Product price"
    assert schema.properties["title"].description == "Main title or name"


def test_article_group_added():
    schema = infer_schema("Blog post by Jane Doe")
    assert schema.field_names() == ["author", "title", "description", "date", "tags"]
    assert schema.properties["tags"].type == "array"
    assert schema.properties["date"].description == "Publication date"


def test_contact_group_added():
    schema = infer_schema("Contact us: email: hello@example.com")
    assert schema.field_names() == ["email", "title", "description", "name", "phone", "address"]


def test_html_heading_and_image():
    schema = infer_schema("", '<h1>Hello</h1><img src="a.png">')
    assert schema.field_names() == ["title", "image_url", "description"]
    assert schema.properties["title"].description == "Main title or heading"


def test_empty_content_still_has_title_and_description():
    assert infer_schema().field_names() == ["title", "description"]


def test_first_pattern_wins_per_field():
    schema = infer_schema("Rating: 4.5 and 5 stars")
    assert schema.properties["rating"].description == "Rating score"
    assert schema.properties["rating"].type == "number"


def test_pattern_table_is_declarative():
    fields = [p.field for p in PATTERNS]
    assert fields[0] == "price"
    assert fields.count("image_url") == 2
    assert fields.count("availability") == 2
    assert all(p.type in ("string", "number", "boolean", "array") for p in PATTERNS)


def test_default_schema():
    assert default_schema().field_names() == ["title", "description", "url"]


def test_json_schema_translation():
    schema = Schema.model_validate(
        {
            "type": "object",
            "properties": {
                "title": {"type": "string", "description": "Title"},
                "tags": {"type": "array"},
                "price": {"type": "number"},
            },
        }
    )
    out = to_json_schema(schema)
    assert out["required"] == ["title", "tags", "price"]
    assert out["properties"]["tags"] == {"type": "array", "items": {"type": "string"}, "description": "tags field"}
    assert out["properties"]["price"]["type"] == "number"
    assert out["properties"]["title"]["description"] == "Title"


def test_schema_from_fields_normalizes_names():
    schema = schema_from_fields(
        [
            {"name": "Product Name", "type": "string"},
            {"name": "", "type": "number"},
            {"name": "qty", "type": "weird"},
        ]
    )
    assert schema.field_names() == ["Product_Name", "qty"]
    assert schema.properties["qty"].type == "string"


def test_templates():
    shopify = template_schema("shopify")
    assert len(shopify.properties) == len(SCHEMA_TEMPLATES["shopify"])
    assert shopify.properties["inventory_quantity"].type == "number"
