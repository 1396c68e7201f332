"""Embedded-file provider backed by SQLite through aiosqlite."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy.engine import URL, make_url

from dalkit.repository.sqlalchemy import (
    OptionsBuilder,
    SqlAlchemyUnitOfWork,
    UnitOfWorkOptions,
)
from dalkit.repository.sqlalchemy.model import ModelBuilderCallback

ASYNC_DRIVER = "sqlite+aiosqlite"


def sqlite_url(connection_string: str) -> URL:
    """Build an aiosqlite URL from a file path or a ``sqlite://`` URL.

    The parent directory of the database file is created when missing.
    """
    if "://" in connection_string:
        url = make_url(connection_string)
        if url.drivername == "sqlite":
            url = url.set(drivername=ASYNC_DRIVER)
    else:
        url = URL.create(drivername=ASYNC_DRIVER, database=connection_string)

    # Only create directories for actual file paths
    db_path = url.database
    if db_path and db_path != ":memory:" and not db_path.startswith("file:"):
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    return url


class SqliteUnitOfWork(SqlAlchemyUnitOfWork):
    """Unit of work over an SQLite database file."""

    def __init__(
        self,
        connection_string: str,
        model_builder: ModelBuilderCallback | None = None,
        options_builder: OptionsBuilder | None = None,
    ) -> None:
        """Initialize the unit of work.

        Args:
            connection_string: Path of the database file, or a ``sqlite://`` /
                ``sqlite+aiosqlite://`` URL.
            model_builder: Function registering the entity models.
            options_builder: Optional function adjusting the connection settings.
        """
        super().__init__(
            UnitOfWorkOptions(url=sqlite_url(connection_string)), model_builder, options_builder
        )
