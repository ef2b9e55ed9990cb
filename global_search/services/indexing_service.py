"""Indexing pipeline: source records -> search documents -> Meilisearch.

Each operation targets one physical index (base index + tenant):

1. Resolve the tenant (explicit argument, else the configured default)
2. Resolve the physical index name and the declared primary key
3. Reconcile the index structure (see ``reconciliation_service``)
4. Fetch records in chunks, transform them, and write documents in
   batches of ``pipeline_batch_size``
5. Bump the index version once, after every batch of the job succeeded

Delete operations skip transform and reconciliation. Any exception
propagates so the job queue can retry the whole job.
"""

import logging
from typing import Any, AsyncIterator, Optional

from ..config import Settings, settings as default_settings
from ..exceptions import ConfigurationError
from ..schemas.mapping import MappingConfig
from .cache_version_service import IndexVersionStore, index_version_store
from .mapping_service import MappingRegistry, build_registry
from .meilisearch_service import IndexNotFoundError, MeilisearchService, meilisearch_service
from .reconciliation_service import IndexReconciler
from .record_source import RecordSource
from .tenant_service import TenantContext
from .transformer_service import DocumentTransformer

logger = logging.getLogger(__name__)


class IndexingPipeline:
    """Writes, deletes and reindexes documents for every mapped source type."""

    def __init__(
        self,
        registry: Optional[MappingRegistry] = None,
        source: Optional[RecordSource] = None,
        engine: Optional[MeilisearchService] = None,
        versions: Optional[IndexVersionStore] = None,
        reconciler: Optional[IndexReconciler] = None,
        transformer: Optional[DocumentTransformer] = None,
        config: Optional[Settings] = None,
    ) -> None:
        self.config = config or default_settings
        self._registry = registry
        self.source = source
        self.engine = engine or meilisearch_service
        self.versions = versions or index_version_store
        self.reconciler = reconciler or IndexReconciler(engine=self.engine, config=self.config)
        self.transformer = transformer or DocumentTransformer(self.config)
        self.tenants = TenantContext(self.config)
        self._validated: set[str] = set()

    @property
    def registry(self) -> MappingRegistry:
        # Built on first use so mappings registered after import are seen
        if self._registry is None:
            self._registry = build_registry()
        return self._registry

    def _require_source(self) -> RecordSource:
        if self.source is None:
            raise ConfigurationError("No record source configured for the indexing pipeline")
        return self.source

    def _mapping(self, source_type: str) -> MappingConfig:
        mapping = self.registry.for_source(source_type)
        if source_type not in self._validated:
            self.transformer.validate(mapping)
            self._validated.add(source_type)
        return mapping

    # ---- Write path ----

    async def index_records(
        self, source_type: str, ids: list[Any], tenant: Optional[str] = None
    ) -> int:
        """Transform and write the given records.

        Returns:
            Number of documents written

        Raises:
            ConfigurationError: unknown source type or unresolvable tenant
            SearchEngineError: reconciliation or a batch write failed
        """
        mapping = self._mapping(source_type)
        self._require_source()
        tenant = self.tenants.resolve_tenant(tenant)
        index_name = self.tenants.index_name(mapping.index, tenant)
        ids = list(dict.fromkeys(str(i) for i in ids))

        async def id_chunks():
            yield ids

        written, found = await self._write_records(mapping, index_name, tenant, id_chunks())

        if found < len(ids):
            logger.info(
                "%d of %d %s records no longer exist, skipped",
                len(ids) - found, len(ids), source_type,
            )
        return written

    async def _write_records(
        self,
        mapping: MappingConfig,
        index_name: str,
        tenant: Optional[str],
        id_chunks: AsyncIterator[list[str]],
    ) -> tuple[int, int]:
        """Reconcile, then fetch-transform-write every id chunk.

        The version is bumped once, after every batch succeeded.

        Returns:
            (documents written, records found)
        """
        source = self._require_source()
        await self.reconciler.reconcile(index_name, mapping.primary_key)

        batch_size = self.config.pipeline_batch_size
        chunk_size = self.config.pipeline_chunk_size
        batch: list[dict[str, Any]] = []
        found = 0
        written = 0

        async for ids in id_chunks:
            async for records in source.fetch_by_ids(mapping.source_type, ids, chunk_size):
                for record in records:
                    found += 1
                    try:
                        batch.append(self.transformer.transform(record, mapping, tenant))
                    except ValueError as e:
                        logger.warning("Skipping %s record: %s", mapping.source_type, e)
                        continue

                    if len(batch) >= batch_size:
                        written += await self._write_batch(index_name, batch, mapping.primary_key)
                        batch = []

        if batch:
            written += await self._write_batch(index_name, batch, mapping.primary_key)

        if written:
            await self.versions.bump(index_name)

        logger.info("Indexed %d %s documents into %s", written, mapping.source_type, index_name)
        return written, found

    async def _write_batch(
        self, index_name: str, documents: list[dict[str, Any]], primary_key: str
    ) -> int:
        await self.engine.add_documents(index_name, documents, primary_key=primary_key)
        logger.debug("Wrote batch of %d documents to %s", len(documents), index_name)
        return len(documents)

    async def delete_records(
        self, source_type: str, ids: list[Any], tenant: Optional[str] = None
    ) -> int:
        """Remove documents by record id. Returns the number of ids submitted."""
        mapping = self.registry.for_source(source_type)
        tenant = self.tenants.resolve_tenant(tenant)
        index_name = self.tenants.index_name(mapping.index, tenant)
        ids = list(dict.fromkeys(str(i) for i in ids))
        if not ids:
            return 0

        await self.engine.delete_documents(index_name, ids)
        await self.versions.bump(index_name)

        logger.info("Deleted %d %s documents from %s", len(ids), source_type, index_name)
        return len(ids)

    # ---- Admin operations ----

    async def reindex_all(
        self, tenant: Optional[str] = None, base_index: Optional[str] = None
    ) -> dict[str, int]:
        """Reindex every mapped source type, or only the one behind ``base_index``.

        Without an explicit tenant, multi-tenant deployments reindex every
        configured tenant. Ids are streamed from the record source chunk by
        chunk.

        Returns:
            Physical index name -> documents written

        Raises:
            ConfigurationError: ``base_index`` is not mapped
        """
        source = self._require_source()
        if base_index is not None:
            mappings = [self.registry.for_index(base_index)]
        else:
            mappings = self.registry.all()
        for mapping in mappings:
            self._mapping(mapping.source_type)

        totals: dict[str, int] = {}
        for current_tenant in self.tenants.tenants_for(tenant):
            for mapping in mappings:
                index_name = self.tenants.index_name(mapping.index, current_tenant)
                expected = await source.count(mapping.source_type)
                logger.info(
                    "Reindexing %d %s records into %s", expected, mapping.source_type, index_name
                )

                id_chunks = source.iter_ids(mapping.source_type, self.config.pipeline_chunk_size)
                written, _ = await self._write_records(
                    mapping, index_name, current_tenant, id_chunks
                )
                totals[index_name] = written

        logger.info("Reindex complete: %s", totals)
        return totals

    async def flush_index(self, base_index: str, tenant: Optional[str] = None) -> bool:
        """Delete every document of one index.

        Returns:
            False when the index does not exist yet
        """
        if not self.registry.has_index(base_index):
            raise ConfigurationError(f"Unknown index {base_index!r}")

        tenant = self.tenants.resolve_tenant(tenant)
        index_name = self.tenants.index_name(base_index, tenant)
        try:
            await self.engine.delete_all_documents(index_name)
        except IndexNotFoundError:
            logger.info("Index %s does not exist, nothing to flush", index_name)
            return False

        await self.versions.bump(index_name)
        logger.info("Flushed index %s", index_name)
        return True

    async def sync_settings(self, tenant: Optional[str] = None) -> list[str]:
        """Push configured settings to every index.

        Each index is reconciled first so settings land on an index with the
        declared primary key.

        Returns:
            Physical index names whose settings were synced
        """
        synced: list[str] = []
        for current_tenant in self.tenants.tenants_for(tenant):
            for base_index in self.registry.index_names():
                index_name = self.tenants.index_name(base_index, current_tenant)
                await self.reconciler.reconcile(
                    index_name, self.registry.primary_key_for(base_index)
                )

                index_settings = self.registry.settings_for(base_index)
                if index_settings:
                    await self.engine.update_settings(index_name, index_settings)
                synced.append(index_name)
                logger.info("Synced settings for %s", index_name)

        return synced


indexing_pipeline = IndexingPipeline()


def get_indexing_pipeline() -> IndexingPipeline:
    """FastAPI dependency for the indexing pipeline."""
    return indexing_pipeline
