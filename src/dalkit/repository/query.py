"""Reusable, named queries executed against a unit of work."""

from __future__ import annotations

import dataclasses
import inspect
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Generic, TypeVar

from dalkit.repository.exceptions import UnitOfWorkNotSetError
from dalkit.repository.protocols import UnitOfWork

R = TypeVar("R")


def _declared_names(cls: type) -> list[str]:
    """Public annotated attributes, properties and slots declared on the class itself."""
    names = list(inspect.get_annotations(cls))
    slots = cls.__dict__.get("__slots__", ())
    names.extend([slots] if isinstance(slots, str) else slots)
    names.extend(name for name, value in vars(cls).items() if isinstance(value, property))
    return [name for name in dict.fromkeys(names) if not name.startswith("_")]


def as_arguments(source: object) -> dict[str, Any]:
    """Flatten an object into named query arguments.

    Only the fields declared directly on the object's class are used; inherited
    fields and nested structures are not expanded. For other objects these are the
    annotated attributes, properties and slots of the class. An object whose class
    declares none of them (a ``SimpleNamespace``, ...) contributes its public
    instance attributes.

    Args:
        source: A mapping, a dataclass instance, a pydantic model, or any other
            object.

    Returns:
        A new dictionary mapping field names to field values.
    """
    if isinstance(source, Mapping):
        return dict(source)
    declared = inspect.get_annotations(type(source))
    if dataclasses.is_dataclass(source):
        return {
            field.name: getattr(source, field.name)
            for field in dataclasses.fields(source)
            if field.name in declared
        }
    model_fields = getattr(type(source), "model_fields", None)
    if isinstance(model_fields, Mapping):
        return {name: getattr(source, name) for name in model_fields if name in declared}
    names = _declared_names(type(source))
    if names:
        return {name: getattr(source, name) for name in names if hasattr(source, name)}
    return {
        name: value
        for name, value in getattr(source, "__dict__", {}).items()
        if not name.startswith("_")
    }


class Query(ABC, Generic[R]):
    """A reusable query that runs against a unit of work.

    Subclasses implement :meth:`execute`; the unit of work is assigned by the caller
    before execution and may be swapped between executions.

    Example:
        >>> class OrdersAbove(Query[list[Order]]):
        ...     async def execute(self, arguments):
        ...         repository = self.require_unit_of_work().get_repository(Order)
        ...         return await repository.get_list(
        ...             lambda q: q.where(Order.total > arguments["minimum"])
        ...         )
        >>> query = OrdersAbove(unit_of_work)
        >>> await query.execute_with({"minimum": 10})
    """

    def __init__(self, unit_of_work: UnitOfWork | None = None) -> None:
        self.unit_of_work = unit_of_work

    def require_unit_of_work(self) -> UnitOfWork:
        """Return the assigned unit of work.

        Raises:
            UnitOfWorkNotSetError: If no unit of work has been assigned.
        """
        if self.unit_of_work is None:
            raise UnitOfWorkNotSetError(type(self).__name__)
        return self.unit_of_work

    @abstractmethod
    async def execute(self, arguments: Mapping[str, Any]) -> R:
        """Run the query with the given named arguments."""

    async def execute_with(self, arguments: object) -> R:
        """Run the query using the fields of an object as named arguments."""
        self.require_unit_of_work()
        return await self.execute(as_arguments(arguments))

    def execute_sync(self, arguments: Mapping[str, Any]) -> R:
        return self.require_unit_of_work().wait(self.execute(arguments))

    def execute_with_sync(self, arguments: object) -> R:
        return self.require_unit_of_work().wait(self.execute_with(arguments))
