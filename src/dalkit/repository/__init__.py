"""Repository and unit of work implementations.

Provides a unified data-access interface across storage providers.
"""

from dalkit.repository.events import CommittedEvent, CommittingEvent, EventHook
from dalkit.repository.exceptions import (
    DatabaseError,
    EntityModelError,
    UnitOfWorkDisposedError,
    UnitOfWorkNotSetError,
)
from dalkit.repository.protocols import HasId, Repository, UnitOfWork
from dalkit.repository.query import Query, as_arguments

# Implementations
from dalkit.repository.providers import InMemoryUnitOfWork, PostgresUnitOfWork, SqliteUnitOfWork
from dalkit.repository.sqlalchemy import (
    ModelBuilder,
    SqlAlchemyRepository,
    SqlAlchemyUnitOfWork,
    UnitOfWorkOptions,
)

__all__ = [  # noqa: RUF022
    # Core
    "HasId",
    "Repository",
    "UnitOfWork",
    "Query",
    "as_arguments",
    # Events
    "CommittedEvent",
    "CommittingEvent",
    "EventHook",
    # Exceptions
    "DatabaseError",
    "EntityModelError",
    "UnitOfWorkDisposedError",
    "UnitOfWorkNotSetError",
    # Implementations
    "ModelBuilder",
    "SqlAlchemyRepository",
    "SqlAlchemyUnitOfWork",
    "UnitOfWorkOptions",
    "InMemoryUnitOfWork",
    "PostgresUnitOfWork",
    "SqliteUnitOfWork",
]
