"""Units of work bound to a storage provider."""

from dalkit.repository.providers.in_memory import InMemoryUnitOfWork
from dalkit.repository.providers.postgres import PostgresUnitOfWork
from dalkit.repository.providers.sqlite import SqliteUnitOfWork

__all__ = ["InMemoryUnitOfWork", "PostgresUnitOfWork", "SqliteUnitOfWork"]
