"""Tests for the document transformer.

Covers named field transformations, computed fields, relationship
flattening, tenant stamping, metadata injection and cleaning.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from global_search.exceptions import ConfigurationError
from global_search.schemas.mapping import MappingConfig
from global_search.services.transformer_service import (
    DocumentTransformer,
    make_url_transformation,
    register_computed,
    register_transformation,
    transform_currency,
    transform_date,
    transform_email,
    transform_html,
    transform_json,
    transform_phone,
    transform_slug,
)

from .conftest import make_settings

NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def transformer() -> DocumentTransformer:
    return DocumentTransformer(make_settings(app_base_url="https://shop.test"))


@pytest.fixture
def mapping() -> MappingConfig:
    return MappingConfig(
        source_type="Product",
        index="products",
        fields=["name", "price", "description", "updated_at"],
        transformations={"price": "currency", "description": "html"},
        computed={"label": {"template": "{name} #{id}"}},
        relationships={"tags": {}, "brand": {"fields": ["name"]}},
    )


@pytest.fixture
def record() -> dict:
    return {
        "id": 7,
        "name": "Watch",
        "price": Decimal("1999.5"),
        "description": "<p>Nice&nbsp;<b>watch</b></p>",
        "updated_at": datetime(2024, 1, 2, 3, 4, 5),
        "tags": [{"id": i, "name": f"tag{i}", "internal": True} for i in range(12)],
        "brand": {"id": 3, "name": "Acme", "secret": "x"},
    }


# ============================================================================
# Named transformations
# ============================================================================


class TestFieldTransformations:
    """Tests for the built-in named transformations."""

    def test_currency(self):
        assert transform_currency(1234.5) == "1,234.50"
        assert transform_currency(None) is None

    def test_html(self):
        assert transform_html("<p>Hello&nbsp;<b>World</b></p>") == "Hello World"

    def test_date(self):
        assert transform_date(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02T03:04:05+00:00"
        assert transform_date("2024-01-02T03:04:05Z") == "2024-01-02T03:04:05+00:00"
        assert transform_date(0) == "1970-01-01T00:00:00+00:00"

    def test_json(self):
        assert transform_json('{"a": 1}') == {"a": 1}
        assert transform_json({"a": 1}) == {"a": 1}

    def test_slug(self):
        assert transform_slug("Hello World!") == "hello-world"
        assert transform_slug("Crème Brûlée") == "creme-brulee"

    def test_phone(self):
        assert transform_phone("+1 (555) 123-4567") == "+15551234567"

    def test_email(self):
        assert transform_email(" a@b.io ") == "a@b.io"
        assert transform_email("not-an-email") is None

    def test_url(self):
        transform_url = make_url_transformation("https://shop.test")
        assert transform_url("/p/1") == "https://shop.test/p/1"
        assert transform_url("https://cdn.test/x.png") == "https://cdn.test/x.png"

    def test_unknown_transformation_raises(self, transformer):
        with pytest.raises(ConfigurationError):
            transformer.transformation("rot13")

    def test_custom_transformation(self, transformer):
        register_transformation("upper", str.upper)
        assert transformer.transformation("upper")("abc") == "ABC"


# ============================================================================
# Transform
# ============================================================================


class TestTransform:
    """Tests for full record transformation."""

    def test_document_shape(self, transformer, mapping, record):
        document = transformer.transform(record, mapping, now=NOW)

        assert document["id"] == 7
        assert document["name"] == "Watch"
        assert document["price"] == "1,999.50"
        assert document["description"] == "Nice watch"
        assert document["updated_at"] == "2024-01-02T03:04:05+00:00"
        assert document["label"] == "Watch #7"
        assert document["_search_metadata"] == {
            "entity_type": "Product",
            "indexed_at": "2024-05-01T00:00:00+00:00",
            "url": "https://shop.test/product/7",
        }
        assert "_tenant_id" not in document

    def test_primary_key_present_even_when_not_declared(self, transformer, mapping, record):
        assert "id" not in mapping.fields
        assert transformer.transform(record, mapping, now=NOW)["id"] == 7

    def test_primary_key_set_from_source_key(self, transformer, record):
        mapping = MappingConfig(
            source_type="Product", index="products", primary_key="sku", source_key="id",
            fields=["name", "sku"],
        )
        record = {**record, "sku": "ignored"}
        assert transformer.transform(record, mapping, now=NOW)["sku"] == 7

    def test_missing_fields_are_absent(self, transformer, mapping):
        document = transformer.transform({"id": 1}, mapping, now=NOW)
        assert "name" not in document
        assert "price" not in document

    def test_missing_identifier_raises(self, transformer, mapping):
        with pytest.raises(ValueError):
            transformer.transform({"name": "x"}, mapping)

    def test_relationships_bounded(self, transformer, mapping, record):
        document = transformer.transform(record, mapping, now=NOW)
        assert len(document["tags"]) == 10
        assert document["tags"][0] == {"id": 0, "name": "tag0"}
        assert document["brand"] == {"name": "Acme"}

    def test_relationship_max_items_override(self, transformer, record):
        mapping = MappingConfig(
            source_type="Product", index="products",
            relationships={"tags": {"max_items": 2}},
        )
        assert len(transformer.transform(record, mapping, now=NOW)["tags"]) == 2

    def test_computed_failure_nulls_field(self, transformer, record, caplog):
        @register_computed("explode")
        def explode(rec):
            raise RuntimeError("boom")

        register_computed("tag_count", lambda rec: len(rec["tags"]))
        mapping = MappingConfig(
            source_type="Product", index="products", fields=["name"],
            computed={"broken": "explode", "tag_count": "tag_count"},
        )

        document = transformer.transform(record, mapping, now=NOW)

        assert document["broken"] is None
        assert document["tag_count"] == 12
        assert document["name"] == "Watch"
        assert "Failed to compute field 'broken'" in caplog.text

    def test_computed_source_with_transform(self, transformer, record):
        mapping = MappingConfig(
            source_type="Product", index="products",
            computed={"slug": {"source": "name", "transform": "slug"}},
        )
        assert transformer.transform(record, mapping, now=NOW)["slug"] == "watch"

    def test_transformation_failure_nulls_field(self, transformer, record):
        mapping = MappingConfig(
            source_type="Product", index="products", fields=["name"],
            transformations={"name": "json"},
        )
        assert transformer.transform(record, mapping, now=NOW)["name"] is None

    def test_attribute_objects_and_dotted_paths(self, transformer):
        record = SimpleNamespace(id=5, title="Hi", brand=SimpleNamespace(name="Acme"))
        mapping = MappingConfig(source_type="Page", index="pages", fields=["title", "brand.name"])
        document = transformer.transform(record, mapping, now=NOW)
        assert document["title"] == "Hi"
        assert document["brand.name"] == "Acme"

    def test_url_field_used_for_metadata(self, transformer):
        mapping = MappingConfig(source_type="Page", index="pages", fields=["url"])
        document = transformer.transform({"id": 1, "url": "https://x.test/about"}, mapping, now=NOW)
        assert document["_search_metadata"]["url"] == "https://x.test/about"

    def test_tenant_stamped(self, transformer, mapping, record):
        document = transformer.transform(record, mapping, tenant="acme", now=NOW)
        assert document["_tenant_id"] == "acme"

    def test_tenant_stamping_disabled(self, mapping, record):
        transformer = DocumentTransformer(make_settings(transform_add_tenant_id=False))
        document = transformer.transform(record, mapping, tenant="acme", now=NOW)
        assert "_tenant_id" not in document

    def test_metadata_disabled(self, mapping, record):
        transformer = DocumentTransformer(make_settings(transform_add_metadata=False))
        assert "_search_metadata" not in transformer.transform(record, mapping)

    def test_clean_null_values_and_empty_strings(self, record):
        transformer = DocumentTransformer(
            make_settings(transform_clean_null_values=True, transform_clean_empty_strings=True)
        )
        mapping = MappingConfig(
            source_type="Product", index="products", fields=["name", "description", "sku"],
        )
        document = transformer.transform(
            {**record, "description": None, "sku": ""}, mapping, now=NOW
        )
        assert "description" not in document
        assert "sku" not in document
        assert document["name"] == "Watch"

    def test_transform_is_idempotent(self, transformer, mapping, record):
        first = transformer.transform(record, mapping, tenant="acme", now=NOW)
        second = transformer.transform(record, mapping, tenant="acme", now=NOW)
        assert json.dumps(first, sort_keys=True) == json.dumps(second, sort_keys=True)

    def test_idempotent_except_timestamp(self, transformer, mapping, record):
        first = transformer.transform(record, mapping)
        second = transformer.transform(record, mapping)
        first.pop("_search_metadata")
        second.pop("_search_metadata")
        assert first == second


class TestValidate:
    """Tests for configuration-time validation of names."""

    def test_unknown_transformation_rejected(self, transformer):
        mapping = MappingConfig(
            source_type="Product", index="products", transformations={"name": "rot13"},
        )
        with pytest.raises(ConfigurationError):
            transformer.validate(mapping)

    def test_unknown_function_rejected(self, transformer):
        mapping = MappingConfig(
            source_type="Product", index="products", computed={"x": "missing_fn"},
        )
        with pytest.raises(ConfigurationError):
            transformer.validate(mapping)

    def test_valid_mapping_passes(self, transformer, mapping):
        register_computed("tag_names", lambda rec: [])
        transformer.validate(mapping)
