"""Source-record access for the indexing pipeline.

The pipeline only needs three operations, expressed by ``RecordSource``:
fetch records by id in bounded chunks, stream every id of a source type,
and count records. ``SqlAlchemyRecordSource`` implements them over async
SQLAlchemy models.
"""

import importlib
import logging
from typing import Any, AsyncIterator, Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from ..config import settings
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class RecordSource(Protocol):
    """Read-only access to authoritative records."""

    def fetch_by_ids(
        self, source_type: str, ids: list[str], chunk_size: int
    ) -> AsyncIterator[list[Any]]:
        """Yield the records for ``ids`` in chunks of at most ``chunk_size``.

        Ids with no matching record are skipped silently.
        """
        ...

    def iter_ids(self, source_type: str, chunk_size: int) -> AsyncIterator[list[str]]:
        """Yield every record id of ``source_type`` in chunks."""
        ...

    async def count(self, source_type: str) -> int:
        ...


class SqlAlchemyRecordSource:
    """``RecordSource`` over SQLAlchemy ORM models.

    Args:
        session_maker: Async session factory
        models: Source type -> ORM model class
        eager_load: Source type -> relationship attributes to ``selectinload``
        keys: Source type -> identifier column name (default ``id``)
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        models: dict[str, type],
        eager_load: Optional[dict[str, list[str]]] = None,
        keys: Optional[dict[str, str]] = None,
    ) -> None:
        self.session_maker = session_maker
        self.models = dict(models)
        self.eager_load = dict(eager_load or {})
        self.keys = dict(keys or {})

    def _model(self, source_type: str) -> tuple[type, Any]:
        model = self.models.get(source_type)
        if model is None:
            raise ConfigurationError(f"No model registered for source type {source_type!r}")
        return model, getattr(model, self.keys.get(source_type, "id"))

    @staticmethod
    def _coerce(column: Any, ids: list[str]) -> list[Any]:
        # Ids travel as strings through the queue; convert back for typed drivers
        try:
            python_type = column.type.python_type
        except NotImplementedError:
            return list(ids)
        if python_type is str:
            return list(ids)
        try:
            return [python_type(i) for i in ids]
        except (TypeError, ValueError):
            return list(ids)

    async def fetch_by_ids(
        self, source_type: str, ids: list[str], chunk_size: int = 100
    ) -> AsyncIterator[list[Any]]:
        model, key = self._model(source_type)
        for start in range(0, len(ids), chunk_size):
            chunk = self._coerce(key, ids[start:start + chunk_size])
            stmt = select(model).where(key.in_(chunk))
            for relationship in self.eager_load.get(source_type, []):
                stmt = stmt.options(selectinload(getattr(model, relationship)))

            async with self.session_maker() as session:
                result = await session.execute(stmt)
                records = list(result.scalars().all())

            if len(records) < len(chunk):
                logger.debug(
                    "%d of %d %s records not found",
                    len(chunk) - len(records), len(chunk), source_type,
                )
            yield records

    async def iter_ids(self, source_type: str, chunk_size: int = 1000) -> AsyncIterator[list[str]]:
        # Keyset pagination keeps each query cheap on large tables
        model, key = self._model(source_type)
        last = None
        while True:
            stmt = select(key).order_by(key).limit(chunk_size)
            if last is not None:
                stmt = stmt.where(key > last)

            async with self.session_maker() as session:
                rows = list((await session.execute(stmt)).scalars().all())

            if not rows:
                return
            yield [str(row) for row in rows]
            if len(rows) < chunk_size:
                return
            last = rows[-1]

    async def count(self, source_type: str) -> int:
        model, _ = self._model(source_type)
        async with self.session_maker() as session:
            result = await session.execute(select(func.count()).select_from(model))
            return int(result.scalar_one())


def import_model(path: str) -> type:
    """Import ``"package.module:Model"``."""
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(f"Invalid model path {path!r}, expected 'module:Model'")
    try:
        return getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot import model {path!r}: {e}") from e


def build_record_source() -> Optional[SqlAlchemyRecordSource]:
    """Record source from ``settings.source_models``, or None when unset."""
    if not settings.source_models:
        return None

    from ..database import get_session_maker

    models = {source_type: import_model(path) for source_type, path in settings.source_models.items()}
    keys = {mapping.source_type: mapping.source_key for mapping in settings.mappings}
    return SqlAlchemyRecordSource(
        get_session_maker(),
        models,
        eager_load=settings.source_eager_load,
        keys=keys,
    )
