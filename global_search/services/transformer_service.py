"""Source record -> flat search document transformation.

Records may be plain mappings or attribute objects (ORM rows, dataclasses).
Field paths may be dotted (``brand.name``).

Transformation steps, in order, each fault-tolerant:
1. Extract declared fields (missing fields are left out)
2. Apply named field transformations (date, currency, html, ...)
3. Evaluate computed fields (failures log a warning and set None)
4. Flatten relationships to bounded lists of small sub-objects
5. Stamp ``_tenant_id``
6. Inject ``_search_metadata``
7. Drop null values / empty strings when configured

The primary key is written last and always equals the record identifier.
"""

import html as html_mod
import json
import logging
import re
import unicodedata
from collections.abc import Mapping
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional
from urllib.parse import urljoin, urlparse
from uuid import UUID

from ..config import Settings, settings as default_settings
from ..exceptions import ConfigurationError
from ..schemas.mapping import ComputedField, MappingConfig, RelationshipConfig

logger = logging.getLogger(__name__)

TAG_RE = re.compile(r"<[^>]+>")
WHITESPACE_RE = re.compile(r"\s+")
SLUG_INVALID_RE = re.compile(r"[^a-z0-9]+")
PHONE_INVALID_RE = re.compile(r"[^0-9+]")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_MISSING = object()

# Custom registries, filled by the host application at import time
_custom_transformations: dict[str, Callable[[Any], Any]] = {}
_computed_functions: dict[str, Callable[[Any], Any]] = {}


def register_transformation(name: str, fn: Callable[[Any], Any]) -> None:
    """Register a named field transformation ``fn(value) -> value``."""
    _custom_transformations[name] = fn


def register_computed(name: str, fn: Optional[Callable[[Any], Any]] = None):
    """Register a named computed-field function ``fn(record) -> value``.

    Usable directly or as a decorator::

        @register_computed("tag_names")
        def tag_names(record):
            return [t.name for t in record.tags]
    """
    if fn is not None:
        _computed_functions[name] = fn
        return fn

    def decorator(func: Callable[[Any], Any]) -> Callable[[Any], Any]:
        _computed_functions[name] = func
        return func

    return decorator


def clear_registries() -> None:
    """Drop custom transformations and computed functions. Used for testing."""
    _custom_transformations.clear()
    _computed_functions.clear()


# ---- Value helpers ----


def get_value(record: Any, path: str) -> Any:
    """Read a (dotted) field from a mapping or attribute object.

    Returns the ``_MISSING`` sentinel when any segment is absent.
    """
    current = record
    for part in path.split("."):
        if current is None:
            return _MISSING
        if isinstance(current, Mapping):
            current = current.get(part, _MISSING)
        else:
            current = getattr(current, part, _MISSING)
        if current is _MISSING:
            return _MISSING
    return current


def to_jsonable(value: Any) -> Any:
    """Convert a record value into something the engine can store."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return to_jsonable(value.value)
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]
    return str(value)


class _RecordView(Mapping):
    """Read-only mapping view for ``str.format_map`` templates."""

    def __init__(self, record: Any) -> None:
        self._record = record

    def __getitem__(self, key: str) -> Any:
        value = get_value(self._record, key)
        if value is _MISSING:
            raise KeyError(key)
        return value

    def __iter__(self):
        return iter(())

    def __len__(self) -> int:
        return 0


# ---- Built-in field transformations ----


def transform_date(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, (datetime, date)):
        return to_jsonable(value)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return value
    return to_jsonable(parsed)


def transform_currency(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return f"{float(value):,.2f}"


def transform_html(value: Any) -> Optional[str]:
    if not value:
        return None
    text = html_mod.unescape(TAG_RE.sub(" ", str(value)))
    return WHITESPACE_RE.sub(" ", text).strip()


def transform_json(value: Any) -> Any:
    if not value:
        return None
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def transform_slug(value: Any) -> Optional[str]:
    if not value:
        return None
    ascii_value = unicodedata.normalize("NFKD", str(value)).encode("ascii", "ignore").decode()
    return SLUG_INVALID_RE.sub("-", ascii_value.lower()).strip("-")


def transform_phone(value: Any) -> Optional[str]:
    if not value:
        return None
    return PHONE_INVALID_RE.sub("", str(value))


def transform_email(value: Any) -> Optional[str]:
    if not value:
        return None
    value = str(value).strip()
    return value if EMAIL_RE.match(value) else None


def make_url_transformation(base_url: str) -> Callable[[Any], Optional[str]]:
    """Absolute URLs pass through; relative paths are joined onto ``base_url``."""

    def transform_url(value: Any) -> Optional[str]:
        if not value:
            return None
        value = str(value)
        parsed = urlparse(value)
        if parsed.scheme and parsed.netloc:
            return value
        return urljoin(base_url.rstrip("/") + "/", value.lstrip("/"))

    return transform_url


# ---- Transformer ----


class DocumentTransformer:
    """Builds search documents from source records according to a mapping."""

    def __init__(self, config: Optional[Settings] = None) -> None:
        self.config = config or default_settings
        self._builtin: dict[str, Callable[[Any], Any]] = {
            "date": transform_date,
            "currency": transform_currency,
            "html": transform_html,
            "json": transform_json,
            "slug": transform_slug,
            "url": make_url_transformation(self.config.app_base_url),
            "phone": transform_phone,
            "email": transform_email,
        }

    def transformation(self, name: str) -> Callable[[Any], Any]:
        fn = _custom_transformations.get(name) or self._builtin.get(name)
        if fn is None:
            raise ConfigurationError(f"Unknown field transformation {name!r}")
        return fn

    def validate(self, mapping: MappingConfig) -> None:
        """Check that every named transformation and function exists.

        Raises:
            ConfigurationError: on the first unknown name
        """
        for name in mapping.transformations.values():
            self.transformation(name)
        for field, rule in mapping.computed.items():
            if rule.function is not None and rule.function not in _computed_functions:
                raise ConfigurationError(
                    f"Unknown computed function {rule.function!r} for field {field!r} "
                    f"of {mapping.source_type!r}"
                )
            if rule.transform is not None:
                self.transformation(rule.transform)

    def record_id(self, record: Any, mapping: MappingConfig) -> Any:
        """The record identifier used as the document primary key."""
        value = get_value(record, mapping.source_key)
        if value is _MISSING or value is None:
            raise ValueError(
                f"Record of {mapping.source_type!r} has no {mapping.source_key!r} identifier"
            )
        return to_jsonable(value)

    def transform(
        self,
        record: Any,
        mapping: MappingConfig,
        tenant: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> dict[str, Any]:
        """Convert one source record into a search document.

        Args:
            record: Mapping or attribute object
            mapping: Mapping config for the record's source type
            tenant: Tenant to stamp on the document (optional)
            now: Indexing timestamp for ``_search_metadata`` (defaults to UTC now)

        Raises:
            ValueError: the record has no identifier
        """
        record_id = self.record_id(record, mapping)

        document = self._extract_fields(record, mapping)
        self._apply_transformations(document, mapping)
        self._add_computed_fields(record, document, mapping)
        self._add_relationships(record, document, mapping)

        if tenant and self.config.transform_add_tenant_id:
            document["_tenant_id"] = tenant

        if self.config.transform_add_metadata:
            document["_search_metadata"] = self._metadata(document, mapping, record_id, now)

        document = self._clean(document)
        document[mapping.primary_key] = record_id
        return document

    def _extract_fields(self, record: Any, mapping: MappingConfig) -> dict[str, Any]:
        document: dict[str, Any] = {}
        for field in mapping.fields:
            value = get_value(record, field)
            if value is not _MISSING:
                document[field] = to_jsonable(value)
        return document

    def _apply_transformations(self, document: dict[str, Any], mapping: MappingConfig) -> None:
        for field, name in mapping.transformations.items():
            if field not in document:
                continue
            try:
                document[field] = to_jsonable(self.transformation(name)(document[field]))
            except Exception as exc:
                logger.warning(
                    "Transformation %r failed for field %r of %s: %s",
                    name, field, mapping.source_type, exc,
                )
                document[field] = None

    def _add_computed_fields(
        self, record: Any, document: dict[str, Any], mapping: MappingConfig
    ) -> None:
        for field, rule in mapping.computed.items():
            try:
                document[field] = to_jsonable(self._evaluate(rule, record))
            except Exception as exc:
                logger.warning(
                    "Failed to compute field %r for %s: %s",
                    field, mapping.source_type, exc,
                )
                document[field] = None

    def _evaluate(self, rule: ComputedField, record: Any) -> Any:
        if rule.function is not None:
            fn = _computed_functions.get(rule.function)
            if fn is None:
                raise ConfigurationError(f"Unknown computed function {rule.function!r}")
            return fn(record)
        if rule.template is not None:
            return rule.template.format_map(_RecordView(record))
        value = get_value(record, rule.source)
        if value is _MISSING:
            return None
        if rule.transform is not None:
            return self.transformation(rule.transform)(to_jsonable(value))
        return value

    def _add_relationships(
        self, record: Any, document: dict[str, Any], mapping: MappingConfig
    ) -> None:
        for name, rel in mapping.relationships.items():
            try:
                value = get_value(record, name)
                if value is _MISSING or value is None:
                    continue
                document[name] = self._flatten_relationship(value, rel)
            except Exception as exc:
                logger.warning(
                    "Failed to flatten relationship %r for %s: %s",
                    name, mapping.source_type, exc,
                )

    def _flatten_relationship(self, value: Any, rel: RelationshipConfig) -> Any:
        max_items = rel.max_items
        if max_items is None:
            max_items = self.config.transform_max_relationship_items

        if isinstance(value, (list, tuple, set, frozenset)):
            return [self._only(item, rel.fields) for item in list(value)[:max_items]]
        return self._only(value, rel.fields)

    @staticmethod
    def _only(item: Any, fields: tuple[str, ...]) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for field in fields:
            value = get_value(item, field)
            if value is not _MISSING:
                result[field] = to_jsonable(value)
        return result

    def _metadata(
        self,
        document: dict[str, Any],
        mapping: MappingConfig,
        record_id: Any,
        now: Optional[datetime],
    ) -> dict[str, Any]:
        indexed_at = now or datetime.now(timezone.utc)
        url = document.get("url") or (
            f"{self.config.app_base_url.rstrip('/')}/{mapping.source_type.lower()}/{record_id}"
        )
        return {
            "entity_type": mapping.source_type,
            "indexed_at": to_jsonable(indexed_at),
            "url": url,
        }

    def _clean(self, document: dict[str, Any]) -> dict[str, Any]:
        drop_nulls = self.config.transform_clean_null_values
        drop_empty = self.config.transform_clean_empty_strings
        if not (drop_nulls or drop_empty):
            return document
        return {
            key: value
            for key, value in document.items()
            if not (drop_nulls and value is None) and not (drop_empty and value == "")
        }
