"""Client-server provider backed by PostgreSQL through asyncpg."""

from __future__ import annotations

from typing import Self

from sqlalchemy.engine import URL, make_url

from dalkit.repository.config import database_url_from_env
from dalkit.repository.sqlalchemy import (
    OptionsBuilder,
    SqlAlchemyUnitOfWork,
    UnitOfWorkOptions,
)
from dalkit.repository.sqlalchemy.model import ModelBuilderCallback

ASYNC_DRIVER = "postgresql+asyncpg"
_SYNC_DRIVERS = {"postgres", "postgresql", "postgresql+psycopg2", "postgresql+psycopg"}


def postgres_url(connection_string: str | URL) -> URL:
    """Parse a PostgreSQL URL, switching synchronous drivers to asyncpg."""
    url = make_url(connection_string)
    if url.drivername in _SYNC_DRIVERS:
        url = url.set(drivername=ASYNC_DRIVER)
    return url


class PostgresUnitOfWork(SqlAlchemyUnitOfWork):
    """Unit of work over a PostgreSQL database."""

    def __init__(
        self,
        connection_string: str | URL,
        model_builder: ModelBuilderCallback | None = None,
        options_builder: OptionsBuilder | None = None,
    ) -> None:
        """Initialize the unit of work.

        Args:
            connection_string: Database URL. ``postgresql://`` URLs use asyncpg.
            model_builder: Function registering the entity models.
            options_builder: Optional function adjusting the connection settings.
        """
        super().__init__(
            UnitOfWorkOptions(url=postgres_url(connection_string)), model_builder, options_builder
        )

    @classmethod
    def from_env(
        cls,
        model_builder: ModelBuilderCallback | None = None,
        options_builder: OptionsBuilder | None = None,
    ) -> Self:
        """Create a unit of work connected to the database described by SQL_DB_* variables.

        Raises:
            KeyError: If a required environment variable is missing.
        """
        return cls(database_url_from_env(), model_builder, options_builder)
