"""SQLAlchemy implementation of the Repository pattern."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from sqlalchemy import Select, inspect, select
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.strategy_options import Load
from typing_extensions import override

from dalkit.repository.exceptions import EntityModelError
from dalkit.repository.protocols import ID, Repository, T

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from dalkit.repository.sqlalchemy.unit_of_work import SqlAlchemyUnitOfWork

QueryArgument = Select[Any] | Callable[[Select[Any]], Select[Any]]


class SqlAlchemyRepository(Repository[T, ID]):
    """SQLAlchemy implementation of the Repository pattern.

    Repositories are created by :meth:`SqlAlchemyUnitOfWork.get_repository` and
    share the unit of work's ``AsyncSession``. Writes are staged in that session and
    only flushed when the unit of work commits.

    Type Parameters:
        T: The entity type managed by this repository (must have an id attribute).
        ID: The type of the entity's identifier (int, str, UUID, etc.).

    Attributes:
        entity_model: The mapped class representing the entity type.
        includes: Relationship paths eagerly loaded by every read.

    Example:
        >>> orders = uow.get_repository(Order).include("lines")
        >>> big = await orders.get_list(lambda q: q.where(Order.total > 100))
    """

    def __init__(self, unit_of_work: SqlAlchemyUnitOfWork, entity_model: type[T]) -> None:
        """Initialize the repository.

        Args:
            unit_of_work: The unit of work the repository is bound to.
            entity_model: The mapped class for the entity type.

        Raises:
            EntityModelError: If the entity model is not mapped.
        """
        if inspect(entity_model, raiseerr=False) is None:
            msg = f"{entity_model.__name__} is not a mapped entity model"
            raise EntityModelError(msg)
        super().__init__(unit_of_work, entity_model)
        self._sqlalchemy_unit_of_work = unit_of_work

    @property
    def session(self) -> AsyncSession:
        """The session of the bound unit of work."""
        return self._sqlalchemy_unit_of_work.session

    @property
    @override
    def all(self) -> Select[Any]:
        """Select every entity, with the configured includes applied in order."""
        return self.query()

    def query(self, *includes: str) -> Select[Any]:
        """Select every entity with the configured includes plus one-off ones.

        The extra includes only apply to the returned statement; the repository's
        own include list is left untouched.

        Args:
            includes: Relationship paths to eagerly load for this statement only.

        Raises:
            UnitOfWorkDisposedError: If the unit of work has been disposed.
            EntityModelError: If a path does not name a relationship.
        """
        self.unit_of_work.ensure_not_disposed()
        statement = select(self.entity_model)
        options = [self._load_option(path) for path in (*self.includes, *includes)]
        if options:
            statement = statement.options(*options)
        return statement

    def _load_option(self, path: str) -> Load:
        """Build a chained ``selectinload`` for a dotted relationship path."""
        entity: type[Any] = self.entity_model
        option: Any = None
        for name in path.split("."):
            relationship = inspect(entity).relationships.get(name)
            if relationship is None:
                msg = f"{entity.__name__} has no navigation property '{name}' (in '{path}')"
                raise EntityModelError(msg)
            attribute = getattr(entity, name)
            option = selectinload(attribute) if option is None else option.selectinload(attribute)
            entity = relationship.mapper.class_
        return option

    def _resolve(self, query: QueryArgument) -> Select[Any]:
        if callable(query):
            return query(self.all)
        return query

    async def _fetch(self, query: QueryArgument, *, many: bool) -> Any:
        """Run a query and materialize one result or all of them.

        Statements selecting a single entity or column yield scalars; statements
        selecting several yield rows.
        """
        statement = self._resolve(query)
        uow = self._sqlalchemy_unit_of_work
        session = await uow.open_session()
        async with uow.exclusive():
            result = await session.execute(statement)
        rows: Any = result.scalars() if len(statement.column_descriptions) == 1 else result
        if many:
            return list(rows.all())
        return rows.first()

    # ==================== Reads ====================

    @override
    async def get_by_id(self, entity_id: ID) -> T | None:
        """Retrieve an entity by its unique identifier.

        Args:
            entity_id: The unique identifier of the entity to retrieve.

        Returns:
            The entity matching the given identifier, None if there is none.

        Raises:
            UnitOfWorkDisposedError: If the unit of work has been disposed.
        """
        return await self._fetch(self.all.where(self.entity_model.id == entity_id), many=False)

    @override
    async def get(self, query: QueryArgument) -> Any | None:
        """Return the first result of a query, None when it yields nothing.

        Args:
            query: A statement, usually derived from :attr:`all`, or a function
                receiving :attr:`all` and returning the statement to run.
        """
        return await self._fetch(query, many=False)

    @override
    async def get_list(self, query: QueryArgument) -> list[Any]:
        """Return every result of a query (an empty list when nothing matches)."""
        return await self._fetch(query, many=True)

    # ==================== Writes ====================

    def _is_tracked(self, entity: T) -> bool:
        return entity in self.session

    def _staged(self, entity_id: ID) -> T | None:
        """Return the entity with this identifier staged by ``add``, if any."""
        for entity in list(self.session.new):
            if isinstance(entity, self.entity_model) and entity.id == entity_id:
                return entity
        return None

    @override
    def add(self, entity: T) -> None:
        self.unit_of_work.ensure_not_disposed()
        self.session.add(entity)

    @override
    def add_many(self, entities: Iterable[T]) -> None:
        self.unit_of_work.ensure_not_disposed()
        self.session.add_all(list(entities))

    @override
    async def update(self, entity: T) -> None:
        """Stage an entity for update.

        An entity already tracked by the session is skipped: its in-place changes
        are flushed by the commit anyway. Other instances (detached, or built by the
        caller with an existing identifier) are merged into the session.
        """
        await self.update_many([entity])

    @override
    async def update_many(self, entities: Iterable[T]) -> None:
        uow = self._sqlalchemy_unit_of_work
        session = await uow.open_session()
        for entity in [e for e in entities if not self._is_tracked(e)]:
            async with uow.exclusive():
                await session.merge(entity)

    @override
    async def delete(self, entity: T) -> None:
        """Stage an entity for removal, attaching it to the session first if needed.

        An entity staged by ``add`` and not committed yet is simply unstaged. An
        instance whose row does not exist in the storage is ignored.
        """
        uow = self._sqlalchemy_unit_of_work
        session = await uow.open_session()
        async with uow.exclusive():
            if not self._is_tracked(entity):
                entity = await session.merge(entity)
            if inspect(entity).pending:
                session.expunge(entity)
                return
            await session.delete(entity)

    @override
    async def delete_many(self, entities: Iterable[T]) -> None:
        self.unit_of_work.ensure_not_disposed()
        for entity in list(entities):
            await self.delete(entity)

    @override
    async def delete_by_id(self, entity_id: ID) -> None:
        """Stage the entity with the given identifier for removal, if it exists.

        Entities staged by ``add`` are looked up first and unstaged.
        """
        uow = self._sqlalchemy_unit_of_work
        session = await uow.open_session()
        staged = self._staged(entity_id)
        if staged is not None:
            session.expunge(staged)
            return
        async with uow.exclusive():
            entity = await session.get(self.entity_model, entity_id)
            if entity is not None:
                await session.delete(entity)
