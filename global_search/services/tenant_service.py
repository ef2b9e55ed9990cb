"""Tenant normalization and physical index name resolution.

The resolver is a pure function of (base index, tenant, tenancy flag) so
the query path and the write path always derive the same physical name,
which the search cache key depends on. Deciding *which* tenant applies
(explicit argument, configured default, or base-index fallback) is the
caller's job and lives in ``TenantContext``.
"""

import logging
import re
from typing import Optional

from ..config import Settings, settings as default_settings
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Anything outside the Meilisearch-safe index uid alphabet
INVALID_TENANT_CHARS_RE = re.compile(r"[^a-z0-9_-]+")
REPEATED_HYPHENS_RE = re.compile(r"-{2,}")


def normalize_tenant(tenant: str) -> str:
    """Normalize a tenant identifier for use inside an index name.

    Examples:
        "Real Estate" -> "real-estate"
        "Test@Company#1" -> "test-company-1"
        "---Multiple---Hyphens---" -> "multiple-hyphens"
    """
    value = INVALID_TENANT_CHARS_RE.sub("-", tenant.lower())
    value = REPEATED_HYPHENS_RE.sub("-", value)
    return value.strip("-")


class IndexNameResolver:
    """Derives physical index names from base names and tenants."""

    def __init__(self, enabled: bool) -> None:
        self.enabled = enabled

    def resolve(self, base_index: str, tenant: Optional[str] = None) -> str:
        """Return the tenant-qualified index name.

        Returns ``base_index`` unchanged when tenancy is disabled or no
        tenant is given.

        Raises:
            ConfigurationError: the tenant normalizes to an empty string
        """
        if not self.enabled or not tenant:
            return base_index

        normalized = normalize_tenant(tenant)
        if not normalized:
            raise ConfigurationError(
                f"Tenant {tenant!r} has no usable characters for an index name"
            )
        return f"{base_index}_{normalized}"

    def resolve_many(
        self, base_indexes: list[str], tenant: Optional[str] = None
    ) -> dict[str, str]:
        """Map each base index to its physical name, preserving order."""
        return {base: self.resolve(base, tenant) for base in base_indexes}


class TenantContext:
    """Caller-side tenant decisions (which tenant, which tenants)."""

    def __init__(self, config: Optional[Settings] = None) -> None:
        self.config = config or default_settings
        self.resolver = IndexNameResolver(self.config.tenant_enabled)

    @property
    def is_multi_tenant(self) -> bool:
        return self.config.tenant_enabled

    def resolve_tenant(self, tenant: Optional[str] = None) -> Optional[str]:
        """Pick the tenant for an operation.

        Explicit argument first, then the configured default tenant.

        Raises:
            ConfigurationError: tenancy is enabled, nothing resolves and
                falling back to the base index is not allowed
        """
        if not self.is_multi_tenant:
            return None

        resolved = tenant or self.config.default_tenant
        if resolved:
            return resolved

        if self.config.tenant_fallback_to_base:
            logger.warning("No tenant resolved, falling back to base indexes")
            return None

        raise ConfigurationError(
            "Multi-tenancy is enabled but no tenant was given or configured"
        )

    def all_tenants(self) -> list[str]:
        """All configured tenants (empty when tenancy is disabled)."""
        if not self.is_multi_tenant:
            return []
        return list(dict.fromkeys(self.config.tenants))

    def tenants_for(self, tenant: Optional[str] = None) -> list[Optional[str]]:
        """Tenants an admin operation should cover.

        An explicit tenant covers only itself. Without one, multi-tenant
        deployments cover every configured tenant and single-tenant
        deployments cover the base indexes (``[None]``).
        """
        if not self.is_multi_tenant:
            return [None]
        if tenant:
            return [tenant]
        tenants = self.all_tenants()
        if tenants:
            return list(tenants)
        return [self.resolve_tenant(None)]

    def index_name(self, base_index: str, tenant: Optional[str] = None) -> str:
        return self.resolver.resolve(base_index, tenant)
