"""Configuration management using pydantic-settings."""

from typing import Any, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .schemas.mapping import FederatedIndex, MappingConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Nested values (federation indexes, mappings, index settings, tenants)
    are read as JSON, e.g.::

        FEDERATION_INDEXES='{"products": {"weight": 3}, "pages": {"weight": 1}}'
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Meilisearch settings
    meilisearch_url: str = "http://127.0.0.1:7700"
    meilisearch_api_key: str = ""
    meilisearch_timeout: float = 5.0  # seconds, applied to every engine call
    meilisearch_wait_for_tasks: bool = True
    meilisearch_task_timeout_ms: int = 5000

    # Redis settings (version counters, result cache, locks, job queue)
    redis_url: str = "redis://localhost:6379/0"
    redis_max_connections: int = 50
    redis_socket_timeout: float = 5.0
    redis_retry_on_timeout: bool = True
    redis_required: bool = False

    # Source database (used by SqlAlchemyRecordSource)
    database_url: str = "postgresql+asyncpg://localhost:5432/app"
    sql_echo: bool = False
    db_pool_size: int = 10
    db_max_overflow: int = 20
    # Source type -> "package.module:Model", plus relationships to eager-load
    source_models: dict[str, str] = Field(default_factory=dict)
    source_eager_load: dict[str, list[str]] = Field(default_factory=dict)

    # Federation
    federation_indexes: dict[str, FederatedIndex] = Field(default_factory=dict)
    federation_default_limit: int = 10
    federation_max_limit: int = 50
    federation_sort_field: str = "updated_at"

    # Entity mappings and raw per-index engine settings
    mappings: list[MappingConfig] = Field(default_factory=list)
    index_settings: dict[str, dict[str, Any]] = Field(default_factory=dict)

    # Result cache and version counters
    cache_enabled: bool = True
    cache_ttl: int = 60  # seconds
    cache_prefix: str = "gs:"
    version_key_prefix: str = "ms:index:"

    # Multi-tenancy
    tenant_enabled: bool = False
    tenants: list[str] = Field(default_factory=list)
    default_tenant: Optional[str] = None
    tenant_fallback_to_base: bool = False

    # Document transformation
    transform_add_tenant_id: bool = True
    transform_add_metadata: bool = True
    transform_clean_null_values: bool = False
    transform_clean_empty_strings: bool = False
    transform_max_relationship_items: int = 10
    app_base_url: str = "http://localhost"

    # Indexing pipeline and job queue
    pipeline_chunk_size: int = 100  # records fetched per chunk
    pipeline_batch_size: int = 1000  # documents per engine write
    pipeline_queue_name: str = "arq:search"
    job_max_attempts: int = 3
    job_retry_delay: float = 5.0  # seconds
    job_retry_backoff: Literal["fixed", "exponential"] = "fixed"
    job_timeout: int = 300
    worker_max_jobs: int = 10
    failed_jobs_max_entries: int = 1000

    # Index reconciliation
    reconcile_poll_interval_ms: int = 500
    reconcile_max_attempts: int = 30
    reconcile_lock_timeout: int = 60  # seconds

    # Stats
    stats_max_events: int = 100
    slow_search_threshold_ms: int = 1000

    # HTTP admin endpoints (empty = admin endpoints disabled)
    admin_api_key: str = ""

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000

    @field_validator("federation_indexes", mode="before")
    @classmethod
    def _weights_shorthand(cls, value: Any) -> Any:
        # Allow {"products": 3} as shorthand for {"products": {"weight": 3}}
        if isinstance(value, dict):
            return {
                name: {"weight": opts} if isinstance(opts, (int, float)) else opts
                for name, opts in value.items()
            }
        return value

    @property
    def federation_weights(self) -> dict[str, float]:
        """Ordered base index name -> configured weight."""
        return {name: opts.weight for name, opts in self.federation_indexes.items()}


# Global settings instance
settings = Settings()
