"""Repository and unit of work contracts."""

from __future__ import annotations

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Coroutine, Iterable
from types import TracebackType
from typing import Any, Generic, Protocol, Self, TypeVar

from dalkit.repository.events import CommittedEvent, CommittingEvent, EventHook
from dalkit.repository.exceptions import UnitOfWorkDisposedError

logger = logging.getLogger(__name__)

ID = TypeVar("ID")
R = TypeVar("R")


class HasId(Protocol):
    """Protocol for entities that have an id attribute.

    This allows the Repository to work with any class that has an id field,
    without requiring inheritance from a base class. Identifiers are compared
    with equality only.
    """

    id: Any


T = TypeVar("T", bound=HasId)


class Repository(ABC, Generic[T, ID]):
    """Abstract base class for implementing the Repository pattern.

    A repository is a typed view over a single unit of work. Reads go straight to
    the storage through the unit of work's session; writes are only staged and
    reach the storage when the unit of work is committed.

    Every IO-bound operation is a coroutine and has a blocking ``*_sync`` twin
    which runs it through :meth:`UnitOfWork.wait`.

    Type Parameters:
        T: The entity type managed by this repository.
        ID: The type of the entity's identifier (int, str, UUID, etc.).

    Attributes:
        includes: Navigation properties eagerly loaded by every read, in the order
            they were added through :meth:`include`.
    """

    def __init__(self, unit_of_work: UnitOfWork, entity_model: type[T]) -> None:
        self._unit_of_work = unit_of_work
        self.entity_model = entity_model
        self.includes: list[str] = []

    @property
    def unit_of_work(self) -> UnitOfWork:
        """The unit of work this repository is bound to."""
        return self._unit_of_work

    @property
    @abstractmethod
    def all(self) -> Any:
        """A composable query over every entity, with the configured includes applied."""

    def include(self, *navigation_properties: str) -> Self:
        """Eagerly load the given navigation properties on every subsequent read.

        Calls accumulate; names are not deduplicated.

        Args:
            navigation_properties: Relationship names, optionally dotted
                (``"orders.lines"``) to reach nested relationships.

        Returns:
            The repository itself, for chaining.
        """
        self.unit_of_work.ensure_not_disposed()
        self.includes.extend(navigation_properties)
        return self

    # ==================== Reads ====================

    @abstractmethod
    async def get_by_id(self, entity_id: ID) -> T | None:
        """Retrieve an entity by its unique identifier.

        Args:
            entity_id: The unique identifier of the entity to retrieve.

        Returns:
            The entity matching the given identifier, or None if there is none.

        Raises:
            UnitOfWorkDisposedError: If the unit of work has been disposed.
        """

    @abstractmethod
    async def get(self, query: Any) -> Any | None:
        """Return the first result of a query, or None when it yields nothing.

        Args:
            query: Either a query built from :attr:`all`, or a function receiving
                :attr:`all` and returning the query to run.
        """

    @abstractmethod
    async def get_list(self, query: Any) -> list[Any]:
        """Return every result of a query as a list (empty when nothing matches)."""

    async def get_array(self, query: Any) -> tuple[Any, ...]:
        """Return every result of a query as a tuple (empty when nothing matches)."""
        return tuple(await self.get_list(query))

    def get_by_id_sync(self, entity_id: ID) -> T | None:
        return self.unit_of_work.wait(self.get_by_id(entity_id))

    def get_sync(self, query: Any) -> Any | None:
        return self.unit_of_work.wait(self.get(query))

    def get_list_sync(self, query: Any) -> list[Any]:
        return self.unit_of_work.wait(self.get_list(query))

    def get_array_sync(self, query: Any) -> tuple[Any, ...]:
        return self.unit_of_work.wait(self.get_array(query))

    # ==================== Writes ====================

    @abstractmethod
    def add(self, entity: T) -> None:
        """Stage a single entity for insertion."""

    @abstractmethod
    def add_many(self, entities: Iterable[T]) -> None:
        """Stage several entities for insertion."""

    @abstractmethod
    async def update(self, entity: T) -> None:
        """Stage an entity for update.

        Entities already tracked by the unit of work are skipped: their in-place
        changes are picked up by the commit without being staged again.
        """

    @abstractmethod
    async def update_many(self, entities: Iterable[T]) -> None:
        """Stage several entities for update, skipping the tracked ones."""

    @abstractmethod
    async def delete(self, entity: T) -> None:
        """Stage an entity for removal."""

    @abstractmethod
    async def delete_many(self, entities: Iterable[T]) -> None:
        """Stage several entities for removal."""

    @abstractmethod
    async def delete_by_id(self, entity_id: ID) -> None:
        """Stage the entity with the given identifier for removal.

        Nothing happens when no entity has this identifier.
        """

    async def delete_by_ids(self, entity_ids: Iterable[ID]) -> None:
        """Stage the entities with the given identifiers for removal.

        Missing identifiers are skipped without interrupting the others.
        """
        for entity_id in entity_ids:
            await self.delete_by_id(entity_id)

    def update_sync(self, entity: T) -> None:
        self.unit_of_work.wait(self.update(entity))

    def update_many_sync(self, entities: Iterable[T]) -> None:
        self.unit_of_work.wait(self.update_many(entities))

    def delete_sync(self, entity: T) -> None:
        self.unit_of_work.wait(self.delete(entity))

    def delete_many_sync(self, entities: Iterable[T]) -> None:
        self.unit_of_work.wait(self.delete_many(entities))

    def delete_by_id_sync(self, entity_id: ID) -> None:
        self.unit_of_work.wait(self.delete_by_id(entity_id))

    def delete_by_ids_sync(self, entity_ids: Iterable[ID]) -> None:
        self.unit_of_work.wait(self.delete_by_ids(entity_ids))


class UnitOfWork(ABC):
    """Represents a unit of work for database operations.

    A unit of work encapsulates a set of database operations that should be treated
    as a single logical transaction. Repositories obtained from it stage changes;
    :meth:`commit` persists them all at once.

    Commit protocol:
        1. Fail with :class:`UnitOfWorkDisposedError` once disposed.
        2. Notify :attr:`committing` handlers. A failing handler aborts the commit
           before anything is persisted.
        3. Flush the staged changes.
        4. Notify :attr:`committed` handlers exactly once with the outcome, even
           when step 2 or 3 failed.
        5. Re-raise the original error, if any.

    Handlers of :attr:`committed` must not fail: an error raised by one of them
    propagates out of :meth:`commit` and the remaining handlers are skipped.

    A unit of work is not safe for concurrent use. Create one per request or per
    background task.

    Attributes:
        committing: Handlers notified before the staged changes are flushed.
        committed: Handlers notified after every commit attempt.
        context_data: Free-form values shared by every consumer of this unit of
            work (e.g. the current principal). Never persisted.
        prevent_disposal: When True, :meth:`close` does nothing and the owner of
            the unit of work is responsible for disposing it later.
    """

    def __init__(self) -> None:
        self.committing: EventHook[CommittingEvent] = EventHook()
        self.committed: EventHook[CommittedEvent] = EventHook()
        self.context_data: dict[str, Any] = {}
        self.prevent_disposal = False
        self._disposed = False
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def disposed(self) -> bool:
        """Whether the unit of work has been disposed."""
        return self._disposed

    def ensure_not_disposed(self) -> None:
        """Ensure the unit of work can still be used.

        Raises:
            UnitOfWorkDisposedError: If the unit of work has been disposed.
        """
        if self._disposed:
            raise UnitOfWorkDisposedError(type(self).__name__)

    @abstractmethod
    def get_repository(self, entity_model: type[T]) -> Repository[T, Any]:
        """Create a new repository for the given entity model.

        Every call returns a fresh repository with no includes.

        Raises:
            UnitOfWorkDisposedError: If the unit of work has been disposed.
        """

    @abstractmethod
    async def _save_changes(self) -> None:
        """Flush every staged change to the storage."""

    @abstractmethod
    async def _release(self) -> None:
        """Release the connection resources held by this unit of work."""

    @abstractmethod
    async def rollback(self) -> None:
        """Discard every staged change.

        Raises:
            UnitOfWorkDisposedError: If the unit of work has been disposed.
        """

    async def commit(self) -> None:
        """Commit the staged changes, notifying the commit handlers.

        Raises:
            UnitOfWorkDisposedError: If the unit of work has been disposed.
            Exception: Whatever the storage or a committing handler raised,
                after the committed handlers have been notified.
        """
        self.ensure_not_disposed()
        successful = False
        error: Exception | None = None
        logger.debug("Committing %r", self)
        try:
            await self.committing.fire(CommittingEvent(self))
            await self._save_changes()
            successful = True
        except Exception as e:
            error = e
            logger.warning("Commit of %r failed: %s", self, e)
            raise
        finally:
            await self.committed.fire(CommittedEvent(self, successful, error))
        logger.debug("Committed %r", self)

    async def close(self) -> None:
        """Dispose the unit of work, unless :attr:`prevent_disposal` is set.

        Every later operation on the unit of work or its repositories raises
        :class:`UnitOfWorkDisposedError`. Commit handlers are unsubscribed.
        """
        if self.prevent_disposal:
            logger.debug("Disposal of %r prevented", self)
            return
        self._disposed = True
        self.committing.clear()
        self.committed.clear()
        await self._release()
        if self._loop is not None and not self._loop.is_running():
            self._close_loop()
        logger.debug("Disposed %r", self)

    def commit_sync(self) -> None:
        self.wait(self.commit())

    def rollback_sync(self) -> None:
        self.wait(self.rollback())

    def close_sync(self) -> None:
        if self.prevent_disposal:
            return
        try:
            self.wait(self.close())
        finally:
            self._close_loop()

    def wait(self, awaitable: Coroutine[Any, Any, R]) -> R:
        """Block until a coroutine of this unit of work completes and return its result.

        Blocking calls of one unit of work share an event loop private to it, which
        is closed when the unit of work is disposed.

        Raises:
            RuntimeError: If called from a thread that is running an event loop;
                await the coroutine instead.
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass
        else:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            msg = (
                "Blocking calls cannot be made from a running event loop, "
                "await the coroutine instead"
            )
            raise RuntimeError(msg)
        if self._disposed:
            return asyncio.run(awaitable)
        if self._loop is None:
            self._loop = asyncio.new_event_loop()
        return self._loop.run_until_complete(awaitable)

    def _close_loop(self) -> None:
        if self._loop is not None:
            self._loop.close()
            self._loop = None

    async def __aenter__(self) -> Self:
        self.ensure_not_disposed()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    def __enter__(self) -> Self:
        self.ensure_not_disposed()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close_sync()
