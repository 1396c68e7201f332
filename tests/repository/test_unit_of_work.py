"""Tests for the unit of work lifecycle: commit protocol, notifications and disposal.

Runs against the in-memory provider; every test gets its own database name so
tests never see each other's data.
"""

from collections.abc import AsyncGenerator
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.exc import IntegrityError
from ulid import ULID

from dalkit.repository import (
    CommittedEvent,
    CommittingEvent,
    InMemoryUnitOfWork,
    UnitOfWorkDisposedError,
)
from tests.repository.models import Order, build_shop


class TestUnitOfWork:
    # ==================== Fixtures ====================

    @pytest.fixture
    def database_name(self) -> str:
        return str(ULID())

    @pytest_asyncio.fixture
    async def uow(self, database_name: str) -> AsyncGenerator[InMemoryUnitOfWork, None]:
        unit_of_work = InMemoryUnitOfWork(database_name, build_shop)
        yield unit_of_work
        unit_of_work.prevent_disposal = False
        await unit_of_work.close()

    async def _stored_order(self, database_name: str, order_id: int) -> Order | None:
        """Read an order through a separate unit of work."""
        async with InMemoryUnitOfWork(database_name, build_shop) as other:
            return await other.get_repository(Order).get_by_id(order_id)

    # ==================== Repository factory ====================

    @pytest.mark.asyncio
    async def test_get_repository_returns_a_new_repository_each_time(
        self, uow: InMemoryUnitOfWork
    ) -> None:
        first = uow.get_repository(Order).include("lines")
        second = uow.get_repository(Order)

        assert first is not second
        assert second.includes == []
        assert first.unit_of_work is uow
        assert second.unit_of_work is uow

    @pytest.mark.asyncio
    async def test_context_data_is_shared_with_repositories(
        self, uow: InMemoryUnitOfWork
    ) -> None:
        uow.context_data["principal"] = "ada"

        repository = uow.get_repository(Order)

        assert repository.unit_of_work.context_data == {"principal": "ada"}

    # ==================== Commit ====================

    @pytest.mark.asyncio
    async def test_without_commit_no_persistence(
        self, uow: InMemoryUnitOfWork, database_name: str
    ) -> None:
        uow.get_repository(Order).add(Order(id=1, total=Decimal(10)))
        await uow.close()

        assert await self._stored_order(database_name, 1) is None

    @pytest.mark.asyncio
    async def test_with_commit_implies_persistence(
        self, uow: InMemoryUnitOfWork, database_name: str
    ) -> None:
        uow.get_repository(Order).add(Order(id=1, total=Decimal(10)))
        await uow.commit()

        assert await self._stored_order(database_name, 1) == Order(id=1, total=Decimal(10))

    @pytest.mark.asyncio
    async def test_add_commit_then_delete_commit(self, uow: InMemoryUnitOfWork) -> None:
        orders = uow.get_repository(Order)

        orders.add(Order(id=1, total=Decimal(10)))
        await uow.commit()
        assert await orders.get_by_id(1) == Order(id=1, total=Decimal(10))

        await orders.delete_by_id(1)
        await uow.commit()
        assert await orders.get_by_id(1) is None

    @pytest.mark.asyncio
    async def test_explicit_rollback(self, uow: InMemoryUnitOfWork, database_name: str) -> None:
        orders = uow.get_repository(Order)
        orders.add(Order(id=1, total=Decimal(10)))
        await uow.rollback()

        # Can continue to use the unit of work after rollback
        orders.add(Order(id=2, total=Decimal(20)))
        await uow.commit()

        assert await self._stored_order(database_name, 1) is None
        assert await self._stored_order(database_name, 2) is not None

    @pytest.mark.asyncio
    async def test_persistence_error_propagates_unchanged(
        self, uow: InMemoryUnitOfWork, database_name: str
    ) -> None:
        uow.get_repository(Order).add(Order(id=1, total=Decimal(10)))
        await uow.commit()

        async with InMemoryUnitOfWork(database_name, build_shop) as other:
            other.get_repository(Order).add(Order(id=1, total=Decimal(99)))
            with pytest.raises(IntegrityError):
                await other.commit()

        assert await self._stored_order(database_name, 1) == Order(id=1, total=Decimal(10))

    # ==================== Commit notifications ====================

    @pytest.mark.asyncio
    async def test_handlers_fire_once_per_commit_in_order(self, uow: InMemoryUnitOfWork) -> None:
        calls: list[str] = []
        uow.committing.subscribe(lambda event: calls.append("committing-1"))
        uow.committing.subscribe(lambda event: calls.append("committing-2"))
        uow.committed.subscribe(lambda event: calls.append("committed-1"))
        uow.committed.subscribe(lambda event: calls.append("committed-2"))

        await uow.commit()
        assert calls == ["committing-1", "committing-2", "committed-1", "committed-2"]

        await uow.commit()
        assert len(calls) == 8

    @pytest.mark.asyncio
    async def test_committing_handler_receives_the_unit_of_work(
        self, uow: InMemoryUnitOfWork
    ) -> None:
        events: list[CommittingEvent] = []
        uow.committing.subscribe(events.append)

        await uow.commit()

        assert events == [CommittingEvent(uow)]

    @pytest.mark.asyncio
    async def test_committed_handler_receives_success(self, uow: InMemoryUnitOfWork) -> None:
        events: list[CommittedEvent] = []
        uow.committed.subscribe(events.append)
        uow.get_repository(Order).add(Order(id=1, total=Decimal(10)))

        await uow.commit()

        assert events == [CommittedEvent(uow, successful=True, exception=None)]

    @pytest.mark.asyncio
    async def test_committed_handler_receives_failure_and_original_exception(
        self, uow: InMemoryUnitOfWork, database_name: str
    ) -> None:
        uow.get_repository(Order).add(Order(id=1, total=Decimal(10)))
        await uow.commit()

        events: list[CommittedEvent] = []
        async with InMemoryUnitOfWork(database_name, build_shop) as other:
            other.committed.subscribe(events.append)
            other.get_repository(Order).add(Order(id=1, total=Decimal(10)))
            with pytest.raises(IntegrityError) as exc_info:
                await other.commit()

        assert len(events) == 1
        assert events[0].successful is False
        assert events[0].exception is exc_info.value

    @pytest.mark.asyncio
    async def test_failing_committing_handler_aborts_before_persistence(
        self, uow: InMemoryUnitOfWork, database_name: str
    ) -> None:
        events: list[CommittedEvent] = []

        def veto(event: CommittingEvent) -> None:
            msg = "not allowed"
            raise PermissionError(msg)

        uow.committing.subscribe(veto)
        uow.committed.subscribe(events.append)
        uow.get_repository(Order).add(Order(id=1, total=Decimal(10)))

        with pytest.raises(PermissionError, match="not allowed"):
            await uow.commit()

        assert await self._stored_order(database_name, 1) is None
        assert len(events) == 1
        assert events[0].successful is False
        assert isinstance(events[0].exception, PermissionError)

    @pytest.mark.asyncio
    async def test_failing_committed_handler_propagates_after_persistence(
        self, uow: InMemoryUnitOfWork, database_name: str
    ) -> None:
        calls: list[str] = []

        def failing(event: CommittedEvent) -> None:
            msg = "handler failed"
            raise RuntimeError(msg)

        uow.committed.subscribe(failing)
        uow.committed.subscribe(lambda event: calls.append("skipped"))
        uow.get_repository(Order).add(Order(id=1, total=Decimal(10)))

        with pytest.raises(RuntimeError, match="handler failed"):
            await uow.commit()

        assert calls == []
        assert await self._stored_order(database_name, 1) is not None

    @pytest.mark.asyncio
    async def test_async_handlers_are_awaited(self, uow: InMemoryUnitOfWork) -> None:
        events: list[bool] = []

        async def audit(event: CommittedEvent) -> None:
            events.append(event.successful)

        uow.committed.subscribe(audit)
        await uow.commit()

        assert events == [True]

    # ==================== Disposal ====================

    @pytest.mark.asyncio
    async def test_operations_fail_after_disposal(self, uow: InMemoryUnitOfWork) -> None:
        orders = uow.get_repository(Order)
        await uow.close()

        assert uow.disposed
        with pytest.raises(UnitOfWorkDisposedError):
            await uow.commit()
        with pytest.raises(UnitOfWorkDisposedError):
            await uow.rollback()
        with pytest.raises(UnitOfWorkDisposedError):
            uow.get_repository(Order)
        with pytest.raises(UnitOfWorkDisposedError):
            await orders.get_by_id(1)
        with pytest.raises(UnitOfWorkDisposedError):
            orders.add(Order(id=1, total=Decimal(10)))
        with pytest.raises(UnitOfWorkDisposedError):
            await orders.delete_by_id(1)
        with pytest.raises(UnitOfWorkDisposedError):
            orders.include("lines")

    @pytest.mark.asyncio
    async def test_disposal_error_names_the_unit_of_work(self, uow: InMemoryUnitOfWork) -> None:
        await uow.close()

        with pytest.raises(UnitOfWorkDisposedError) as exc_info:
            await uow.commit()

        assert exc_info.value.object_name == "InMemoryUnitOfWork"

    @pytest.mark.asyncio
    async def test_commit_after_disposal_notifies_nobody(self, uow: InMemoryUnitOfWork) -> None:
        calls: list[str] = []
        uow.committed.subscribe(lambda event: calls.append("committed"))
        await uow.close()

        with pytest.raises(UnitOfWorkDisposedError):
            await uow.commit()

        assert calls == []
        assert len(uow.committing) == 0
        assert len(uow.committed) == 0

    @pytest.mark.asyncio
    async def test_prevent_disposal_keeps_the_unit_of_work_usable(
        self, uow: InMemoryUnitOfWork
    ) -> None:
        orders = uow.get_repository(Order)
        orders.add(Order(id=1, total=Decimal(10)))
        await uow.commit()
        uow.prevent_disposal = True

        await uow.close()

        assert not uow.disposed
        assert await orders.get_by_id(1) == Order(id=1, total=Decimal(10))

    @pytest.mark.asyncio
    async def test_disposed_stays_disposed_when_prevent_disposal_is_set_later(
        self, uow: InMemoryUnitOfWork
    ) -> None:
        await uow.close()
        uow.prevent_disposal = True

        with pytest.raises(UnitOfWorkDisposedError):
            uow.get_repository(Order)

    @pytest.mark.asyncio
    async def test_close_twice(self, uow: InMemoryUnitOfWork) -> None:
        await uow.close()
        await uow.close()

        assert uow.disposed

    @pytest.mark.asyncio
    async def test_async_context_manager_disposes(self, database_name: str) -> None:
        async with InMemoryUnitOfWork(database_name, build_shop) as uow:
            uow.get_repository(Order)

        assert uow.disposed

    @pytest.mark.asyncio
    async def test_blocking_call_inside_event_loop_raises(self, uow: InMemoryUnitOfWork) -> None:
        with pytest.raises(RuntimeError, match="await the coroutine instead"):
            uow.commit_sync()


class TestUnitOfWorkBlocking:
    """The blocking surface, used without any running event loop."""

    @pytest.fixture
    def database_name(self) -> str:
        return str(ULID())

    def test_order_scenario(self, database_name: str) -> None:
        uow = InMemoryUnitOfWork(database_name, build_shop)
        orders = uow.get_repository(Order)

        orders.add(Order(id=1, total=Decimal(10)))
        uow.commit_sync()
        assert orders.get_by_id_sync(1) == Order(id=1, total=Decimal(10))

        orders.delete_by_id_sync(1)
        uow.commit_sync()
        assert orders.get_by_id_sync(1) is None

        uow.close_sync()
        assert uow.disposed

    def test_context_manager_disposes(self, database_name: str) -> None:
        with InMemoryUnitOfWork(database_name, build_shop) as uow:
            uow.get_repository(Order).add(Order(id=1, total=Decimal(10)))
            uow.commit_sync()

        assert uow.disposed
        with pytest.raises(UnitOfWorkDisposedError):
            uow.commit_sync()

        with InMemoryUnitOfWork(database_name, build_shop) as other:
            assert other.get_repository(Order).get_by_id_sync(1) is not None

    def test_prevent_disposal(self, database_name: str) -> None:
        uow = InMemoryUnitOfWork(database_name, build_shop)
        orders = uow.get_repository(Order)
        uow.prevent_disposal = True

        uow.close_sync()
        assert orders.get_by_id_sync(1) is None

        uow.prevent_disposal = False
        uow.close_sync()
        with pytest.raises(UnitOfWorkDisposedError):
            orders.get_by_id_sync(1)

    def test_rollback(self, database_name: str) -> None:
        with InMemoryUnitOfWork(database_name, build_shop) as uow:
            orders = uow.get_repository(Order)
            orders.add(Order(id=1, total=Decimal(10)))
            uow.rollback_sync()
            uow.commit_sync()

            assert orders.get_by_id_sync(1) is None
