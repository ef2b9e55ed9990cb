"""Tests for tenant normalization and index name resolution."""

import pytest

from global_search.exceptions import ConfigurationError
from global_search.services.tenant_service import (
    IndexNameResolver,
    TenantContext,
    normalize_tenant,
)

from .conftest import make_settings


# ============================================================================
# Normalization
# ============================================================================


class TestNormalizeTenant:
    """Tests for tenant identifier normalization."""

    @pytest.mark.parametrize(
        "tenant, expected",
        [
            ("Real Estate", "real-estate"),
            ("Test@Company#1", "test-company-1"),
            ("  Multiple   Spaces  ", "multiple-spaces"),
            ("Special!@#$%^&*()Chars", "special-chars"),
            ("UPPERCASE", "uppercase"),
            ("mixed-Case_With_Underscores", "mixed-case_with_underscores"),
            ("---Multiple---Hyphens---", "multiple-hyphens"),
            ("123Numbers456", "123numbers456"),
        ],
    )
    def test_normalization(self, tenant, expected):
        assert normalize_tenant(tenant) == expected

    def test_only_invalid_characters_normalize_to_empty(self):
        assert normalize_tenant("@#$%") == ""


# ============================================================================
# Resolver
# ============================================================================


class TestIndexNameResolver:
    """Tests for physical index name derivation."""

    def test_real_estate_tenant(self):
        resolver = IndexNameResolver(enabled=True)
        assert resolver.resolve("products", "Real Estate") == "products_real-estate"

    def test_similar_tenants_get_different_indexes(self):
        resolver = IndexNameResolver(enabled=True)
        assert resolver.resolve("products", "Acme Inc") != resolver.resolve("products", "Acme")

    @pytest.mark.parametrize("tenant", [None, ""])
    def test_missing_tenant_returns_base_name(self, tenant):
        resolver = IndexNameResolver(enabled=True)
        assert resolver.resolve("products", tenant) == "products"

    def test_disabled_tenancy_ignores_tenant(self):
        resolver = IndexNameResolver(enabled=False)
        assert resolver.resolve("products", "Acme") == "products"

    def test_unusable_tenant_raises(self):
        resolver = IndexNameResolver(enabled=True)
        with pytest.raises(ConfigurationError):
            resolver.resolve("products", "!!!")

    def test_resolution_is_repeatable(self):
        resolver = IndexNameResolver(enabled=True)
        first = resolver.resolve("pages", "Tenant One")
        assert all(resolver.resolve("pages", "Tenant One") == first for _ in range(5))

    def test_resolve_many_preserves_order(self):
        resolver = IndexNameResolver(enabled=True)
        result = resolver.resolve_many(["products", "pages"], "acme")
        assert list(result.items()) == [
            ("products", "products_acme"),
            ("pages", "pages_acme"),
        ]


# ============================================================================
# Tenant context
# ============================================================================


class TestTenantContext:
    """Tests for caller-side tenant decisions."""

    def test_single_tenant_resolves_none(self):
        context = TenantContext(make_settings(tenant_enabled=False))
        assert context.resolve_tenant("acme") is None
        assert context.tenants_for() == [None]
        assert context.all_tenants() == []

    def test_explicit_tenant_wins(self):
        context = TenantContext(make_settings(tenant_enabled=True, default_tenant="fallback"))
        assert context.resolve_tenant("acme") == "acme"

    def test_default_tenant_used_when_missing(self):
        context = TenantContext(make_settings(tenant_enabled=True, default_tenant="fallback"))
        assert context.resolve_tenant(None) == "fallback"

    def test_unresolvable_tenant_raises(self):
        context = TenantContext(make_settings(tenant_enabled=True))
        with pytest.raises(ConfigurationError):
            context.resolve_tenant(None)

    def test_fallback_to_base_allowed(self):
        context = TenantContext(make_settings(tenant_enabled=True, tenant_fallback_to_base=True))
        assert context.resolve_tenant(None) is None
        assert context.index_name("products", None) == "products"

    def test_tenants_for_covers_all_configured(self):
        context = TenantContext(make_settings(tenant_enabled=True, tenants=["a", "b", "a"]))
        assert context.tenants_for() == ["a", "b"]
        assert context.tenants_for("c") == ["c"]

    def test_index_name_uses_resolver(self):
        context = TenantContext(make_settings(tenant_enabled=True))
        assert context.index_name("products", "Acme Inc") == "products_acme-inc"
