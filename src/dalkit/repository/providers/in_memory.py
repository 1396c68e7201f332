"""In-memory provider: named SQLite databases living for the whole process."""

from __future__ import annotations

import asyncio
import logging
from contextlib import AbstractAsyncContextManager
from urllib.parse import quote
from weakref import WeakKeyDictionary

from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
from sqlalchemy.pool import NullPool
from typing_extensions import override

from dalkit.repository.sqlalchemy import (
    OptionsBuilder,
    SqlAlchemyUnitOfWork,
    UnitOfWorkOptions,
)
from dalkit.repository.sqlalchemy.model import ModelBuilder, ModelBuilderCallback

logger = logging.getLogger(__name__)

# {database_name: engine}
_databases: dict[str, AsyncEngine] = {}
# {database_name: connection keeping the shared-cache database alive}
_keepers: dict[str, AsyncConnection] = {}
# {database_name: models whose tables exist in that database}
_schemas: dict[str, list[ModelBuilder]] = {}
# {event loop: {database_name: lock}}
_locks: WeakKeyDictionary[asyncio.AbstractEventLoop, dict[str, asyncio.Lock]] = (
    WeakKeyDictionary()
)


def in_memory_url(database_name: str) -> URL:
    """URL of the shared-cache in-memory SQLite database with the given name."""
    return URL.create(
        drivername="sqlite+aiosqlite",
        database=f"file:{quote(database_name, safe='')}",
        query={"mode": "memory", "cache": "shared", "uri": "true"},
    )


class InMemoryUnitOfWork(SqlAlchemyUnitOfWork):
    """Unit of work over a named in-memory database.

    Every unit of work created with the same database name sees the same data, for
    as long as the process runs or until :meth:`drop_database` is called. Tables of
    the registered entity models are created automatically on first use.

    Each unit of work has its own connection and transaction. Round trips to one
    database are serialized per event loop, so units of work of concurrent tasks
    commit independently of each other.

    Example:
        >>> async with InMemoryUnitOfWork("shop", build_model) as uow:
        ...     uow.get_repository(Order).add(Order(id=1, total=Decimal(10)))
        ...     await uow.commit()
    """

    def __init__(
        self,
        database_name: str,
        model_builder: ModelBuilderCallback | None = None,
        options_builder: OptionsBuilder | None = None,
    ) -> None:
        """Initialize the unit of work.

        Args:
            database_name: Name of the in-memory database to use.
            model_builder: Function registering the entity models.
            options_builder: Optional function adjusting the connection settings.
        """
        self.database_name = database_name
        options = UnitOfWorkOptions(url=in_memory_url(database_name))
        options.engine_options["poolclass"] = NullPool
        super().__init__(options, model_builder, options_builder)

    @override
    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.database_name!r})"

    @override
    def _create_engine(self) -> AsyncEngine:
        engine = _databases.get(self.database_name)
        if engine is None:
            logger.debug("Creating in-memory database %r", self.database_name)
            engine = super()._create_engine()
            _databases[self.database_name] = engine
        return engine

    @override
    async def _dispose_engine(self, engine: AsyncEngine) -> None:
        # shared with the other units of work of this database
        return

    @override
    def exclusive(self) -> AbstractAsyncContextManager[object]:
        by_name = _locks.setdefault(asyncio.get_running_loop(), {})
        return by_name.setdefault(self.database_name, asyncio.Lock())

    @override
    async def _prepare(self) -> None:
        async with self.exclusive():
            if self.database_name not in _keepers:
                _keepers[self.database_name] = await self.engine.connect()
        created = _schemas.setdefault(self.database_name, [])
        if not any(model is self.model for model in created):
            await self.ensure_created()
            created.append(self.model)

    @staticmethod
    async def drop_database(database_name: str) -> None:
        """Discard a named database and everything stored in it.

        Units of work using the database should be closed first: the database only
        goes away once its last connection is closed.
        """
        _schemas.pop(database_name, None)
        keeper = _keepers.pop(database_name, None)
        engine = _databases.pop(database_name, None)
        if keeper is not None:
            await keeper.close()
        if engine is not None:
            logger.debug("Dropping in-memory database %r", database_name)
            await engine.dispose()
