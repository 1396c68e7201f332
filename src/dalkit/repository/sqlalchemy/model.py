"""Explicit entity registration for SQLAlchemy-backed units of work."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from sqlalchemy import Column, MetaData, Table, inspect
from sqlalchemy.ext.asyncio import AsyncConnection
from sqlalchemy.orm import registry

from dalkit.repository.exceptions import EntityModelError

logger = logging.getLogger(__name__)

ModelBuilderCallback = Callable[["ModelBuilder"], None]


class ModelBuilder:
    """Collects the entity models a unit of work can persist.

    Entities are registered one by one with :meth:`entity`. Plain classes
    (dataclasses, attrs classes, ...) are mapped imperatively to a table built from
    the given columns; classes that are already mapped (declarative models) are
    registered with their own table.

    Example:
        >>> def build(builder: ModelBuilder) -> None:
        ...     builder.entity(
        ...         Order,
        ...         Column("id", Integer, primary_key=True),
        ...         Column("total", Numeric(10, 2)),
        ...     )
        >>> uow = InMemoryUnitOfWork("shop", build)
    """

    def __init__(self) -> None:
        self.registry = registry()
        self.entity_models: list[type[Any]] = []
        self._tables: list[Table] = []

    @property
    def metadata(self) -> MetaData:
        """Metadata holding the tables of imperatively mapped entities."""
        return self.registry.metadata

    @property
    def tables(self) -> tuple[Table, ...]:
        """Every registered table, in registration order."""
        return tuple(self._tables)

    def entity(
        self,
        entity_model: type[Any],
        *columns: Column[Any],
        table_name: str | None = None,
        properties: Mapping[str, Any] | None = None,
    ) -> Table:
        """Register an entity model.

        Args:
            entity_model: The entity class.
            columns: Columns of the table to map a plain class to. Leave empty for a
                class that is already mapped.
            table_name: Name of the table created from ``columns``. Defaults to the
                lower-cased class name.
            properties: Extra mapper properties (relationships, ...) for an
                imperatively mapped class.

        Returns:
            The table backing the entity.

        Raises:
            EntityModelError: If no columns are given and the class is not mapped.
        """
        mapper = inspect(entity_model, raiseerr=False)
        if mapper is not None:
            table = mapper.local_table
        elif columns:
            table = Table(table_name or entity_model.__name__.lower(), self.metadata, *columns)
            self.registry.map_imperatively(entity_model, table, properties=dict(properties or {}))
            logger.debug("Mapped %s to table %s", entity_model.__name__, table.name)
        else:
            msg = f"{entity_model.__name__} is not mapped and no columns were given for it"
            raise EntityModelError(msg)

        if entity_model not in self.entity_models:
            self.entity_models.append(entity_model)
        if not any(registered is table for registered in self._tables):
            self._tables.append(table)
        return table

    async def create_all(self, connection: AsyncConnection) -> None:
        """Create the registered tables that do not exist yet."""
        by_metadata: dict[MetaData, list[Table]] = {}
        for table in self._tables:
            by_metadata.setdefault(table.metadata, []).append(table)
        for metadata, tables in by_metadata.items():
            await connection.run_sync(
                lambda sync_connection, md=metadata, t=tables: md.create_all(
                    sync_connection, tables=t, checkfirst=True
                )
            )


_models: dict[ModelBuilderCallback | None, ModelBuilder] = {}


def build_model(callback: ModelBuilderCallback | None) -> ModelBuilder:
    """Return the model built by a registration callback.

    The callback runs the first time its model is requested; later requests reuse
    the same :class:`ModelBuilder`.

    Args:
        callback: Function registering entity models on the builder it receives.
            None builds an empty model.
    """
    try:
        return _models[callback]
    except KeyError:
        builder = ModelBuilder()
        if callback is not None:
            callback(builder)
        _models[callback] = builder
        return builder
