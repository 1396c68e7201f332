"""Commit notifications raised by a unit of work."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from dalkit.repository.protocols import UnitOfWork

E = TypeVar("E")

Handler = Callable[[E], "Awaitable[None] | None"]


@dataclass(frozen=True)
class CommittingEvent:
    """Raised before the staged changes of a unit of work are flushed.

    Attributes:
        unit_of_work: The unit of work being committed.
    """

    unit_of_work: UnitOfWork


@dataclass(frozen=True)
class CommittedEvent:
    """Raised after a commit attempt, whatever its outcome.

    Attributes:
        unit_of_work: The unit of work that was committed.
        successful: Whether the staged changes were persisted.
        exception: The error raised by the commit when it failed, None otherwise.
    """

    unit_of_work: UnitOfWork
    successful: bool
    exception: BaseException | None = None


class EventHook(Generic[E]):
    """Ordered list of handlers notified with the same event.

    Handlers are called in subscription order. A handler may be a plain function
    or a coroutine function; coroutines are awaited before the next handler runs.
    The same handler may be subscribed several times and is then called as many
    times.

    Example:
        >>> hook: EventHook[CommittedEvent] = EventHook()
        >>> @hook.subscribe
        ... def audit(event: CommittedEvent) -> None:
        ...     print(event.successful)
        >>> hook.unsubscribe(audit)
    """

    def __init__(self) -> None:
        self._handlers: list[Handler[E]] = []

    def subscribe(self, handler: Handler[E]) -> Handler[E]:
        """Append a handler. Returns it unchanged so it can be used as a decorator."""
        self._handlers.append(handler)
        return handler

    def unsubscribe(self, handler: Handler[E]) -> None:
        """Remove the last subscription of a handler.

        Raises:
            ValueError: If the handler is not subscribed.
        """
        for index in range(len(self._handlers) - 1, -1, -1):
            if self._handlers[index] == handler:
                del self._handlers[index]
                return
        msg = f"{handler!r} is not subscribed"
        raise ValueError(msg)

    def clear(self) -> None:
        """Drop every subscription."""
        self._handlers.clear()

    async def fire(self, event: E) -> None:
        """Notify every handler with the event.

        Exceptions raised by a handler are not caught: they stop the notification
        and propagate to the caller.
        """
        # snapshot, handlers may unsubscribe themselves
        for handler in list(self._handlers):
            result = handler(event)
            if inspect.isawaitable(result):
                await result

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, handler: object) -> bool:
        return handler in self._handlers
