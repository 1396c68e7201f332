"""SQLAlchemy-backed unit of work."""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager, nullcontext
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from typing_extensions import override

from dalkit.repository.config import default_engine_options, default_session_options
from dalkit.repository.protocols import T, UnitOfWork
from dalkit.repository.sqlalchemy.model import ModelBuilderCallback, build_model
from dalkit.repository.sqlalchemy.repository import SqlAlchemyRepository

logger = logging.getLogger(__name__)


@dataclass
class UnitOfWorkOptions:
    """Connection settings of a unit of work.

    Attributes:
        url: Database URL, with an async driver.
        engine_options: Keyword arguments for ``create_async_engine``.
        session_options: Keyword arguments for ``async_sessionmaker``.
    """

    url: str | URL
    engine_options: dict[str, Any] = field(default_factory=default_engine_options)
    session_options: dict[str, Any] = field(default_factory=default_session_options)


OptionsBuilder = Callable[[UnitOfWorkOptions], None]


class SqlAlchemyUnitOfWork(UnitOfWork):
    """Unit of work implementation using SQLAlchemy for database operations.

    This implementation follows the explicit commit principle: changes staged
    through its repositories are not persisted until :meth:`commit` is called.

    The engine and the ``AsyncSession`` are created lazily, on first use. The
    engine is owned by the unit of work and disposed together with it.

    Attributes:
        options: Connection settings, after the options builder has run.
        model: The entity models this unit of work can persist.
    """

    repository_class: type[SqlAlchemyRepository[Any, Any]] = SqlAlchemyRepository

    def __init__(
        self,
        options: UnitOfWorkOptions,
        model_builder: ModelBuilderCallback | None = None,
        options_builder: OptionsBuilder | None = None,
    ) -> None:
        """Initialize the unit of work.

        Args:
            options: Connection settings.
            model_builder: Function registering the entity models. It runs once per
                function, the first time a unit of work receives it.
            options_builder: Optional function adjusting ``options`` before the
                engine is created.
        """
        super().__init__()
        if options_builder is not None:
            options_builder(options)
        self.options = options
        self.model = build_model(model_builder)
        self._engine: AsyncEngine | None = None
        self._session: AsyncSession | None = None
        self._prepared = False

    def __repr__(self) -> str:
        url = make_url(self.options.url).render_as_string(hide_password=True)
        return f"{type(self).__name__}({url!r})"

    def _create_engine(self) -> AsyncEngine:
        return create_async_engine(self.options.url, **self.options.engine_options)

    async def _dispose_engine(self, engine: AsyncEngine) -> None:
        await engine.dispose()

    async def _prepare(self) -> None:
        """Run once, before the first database round trip of this unit of work."""

    def exclusive(self) -> AbstractAsyncContextManager[object]:
        """Guard a single database round trip of this unit of work.

        Providers whose units of work share one database serialize their round
        trips here; by default nothing is held.
        """
        return nullcontext()

    @property
    def engine(self) -> AsyncEngine:
        """The engine this unit of work connects through."""
        self.ensure_not_disposed()
        if self._engine is None:
            self._engine = self._create_engine()
        return self._engine

    @property
    def session(self) -> AsyncSession:
        """The session shared by every repository of this unit of work."""
        self.ensure_not_disposed()
        if self._session is None:
            session_factory = async_sessionmaker(
                self.engine, class_=AsyncSession, **self.options.session_options
            )
            self._session = session_factory()
        return self._session

    async def open_session(self) -> AsyncSession:
        """Return the session, ready for a database round trip.

        Raises:
            UnitOfWorkDisposedError: If the unit of work has been disposed.
        """
        session = self.session
        if not self._prepared:
            await self._prepare()
            self._prepared = True
        return session

    async def ensure_created(self) -> None:
        """Create the tables of the registered entity models that do not exist yet."""
        async with self.exclusive(), self.engine.begin() as connection:
            await self.model.create_all(connection)

    def ensure_created_sync(self) -> None:
        self.wait(self.ensure_created())

    @override
    def get_repository(self, entity_model: type[T]) -> SqlAlchemyRepository[T, Any]:
        """Create a new repository for the given entity model.

        Raises:
            UnitOfWorkDisposedError: If the unit of work has been disposed.
            EntityModelError: If the entity model is not mapped.
        """
        self.ensure_not_disposed()
        logger.debug("Creating repository for %s on %r", entity_model.__name__, self)
        return self.repository_class(self, entity_model)

    @override
    async def _save_changes(self) -> None:
        session = await self.open_session()
        async with self.exclusive():
            try:
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    @override
    async def rollback(self) -> None:
        """Roll back the current transaction, discarding all staged changes."""
        self.ensure_not_disposed()
        if self._session is not None:
            logger.debug("Rolling back %r", self)
            async with self.exclusive():
                await self._session.rollback()

    @override
    async def _release(self) -> None:
        if self._session is not None:
            async with self.exclusive():
                await self._session.close()
            self._session = None
        if self._engine is not None:
            await self._dispose_engine(self._engine)
            self._engine = None
