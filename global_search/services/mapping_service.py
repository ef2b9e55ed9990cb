"""Static registry of entity-to-index mappings."""

from typing import Any, Iterable, Optional

from ..config import settings
from ..exceptions import ConfigurationError
from ..schemas.mapping import MappingConfig


class MappingRegistry:
    """Immutable lookup of ``MappingConfig`` by source type or base index name.

    Loaded once at startup; lookups for unknown names raise
    ``ConfigurationError`` so callers fail fast instead of retrying.
    """

    def __init__(
        self,
        mappings: Iterable[MappingConfig],
        index_settings: Optional[dict[str, dict[str, Any]]] = None,
    ) -> None:
        by_source: dict[str, MappingConfig] = {}
        by_index: dict[str, MappingConfig] = {}
        for mapping in mappings:
            if mapping.source_type in by_source:
                raise ConfigurationError(f"Duplicate mapping for source type {mapping.source_type!r}")
            if mapping.index in by_index:
                raise ConfigurationError(f"Index {mapping.index!r} is mapped more than once")
            by_source[mapping.source_type] = mapping
            by_index[mapping.index] = mapping

        self._by_source = by_source
        self._by_index = by_index
        self._index_settings = dict(index_settings or {})

    def __len__(self) -> int:
        return len(self._by_source)

    def all(self) -> list[MappingConfig]:
        return list(self._by_source.values())

    def source_types(self) -> list[str]:
        return list(self._by_source)

    def index_names(self) -> list[str]:
        """Base index names of every mapping, then any settings-only indexes."""
        names = list(self._by_index)
        names.extend(name for name in self._index_settings if name not in self._by_index)
        return names

    def for_source(self, source_type: str) -> MappingConfig:
        try:
            return self._by_source[source_type]
        except KeyError:
            raise ConfigurationError(f"No mapping found for source type {source_type!r}") from None

    def for_index(self, index_name: str) -> MappingConfig:
        try:
            return self._by_index[index_name]
        except KeyError:
            raise ConfigurationError(f"No mapping found for index {index_name!r}") from None

    def has_index(self, index_name: str) -> bool:
        return index_name in self._by_index or index_name in self._index_settings

    def primary_key_for(self, index_name: str) -> str:
        mapping = self._by_index.get(index_name)
        return mapping.primary_key if mapping else "id"

    def settings_for(self, index_name: str) -> dict[str, Any]:
        """Meilisearch settings for a base index.

        Starts from the mapping's filterable/sortable/searchable lists and
        lets the raw ``index_settings`` entry override them.
        """
        result: dict[str, Any] = {}
        mapping = self._by_index.get(index_name)
        if mapping is not None:
            if mapping.searchable:
                result["searchableAttributes"] = list(mapping.searchable)
            if mapping.filterable:
                result["filterableAttributes"] = list(mapping.filterable)
            if mapping.sortable:
                result["sortableAttributes"] = list(mapping.sortable)
        result.update(self._index_settings.get(index_name, {}))
        return result


def build_registry() -> MappingRegistry:
    """Registry built from the global settings."""
    return MappingRegistry(settings.mappings, settings.index_settings)
