"""Connection configuration read from environment variables."""

import os
from typing import Any

from sqlalchemy.engine import URL

_TRUE_VALUES = {"1", "true", "yes", "on"}


def database_url_from_env() -> URL:
    """Build the URL of a client-server database from environment variables.

    Environment variables (required):
        - SQL_DB_HOST: Database host
        - SQL_DB_NAME: Database name
        - SQL_DB_USER: Database user
        - SQL_DB_PASSWORD: Database password

    Environment variables (optional):
        - SQL_DB_PORT: Database port (default: 5432)
        - SQL_DB_DRIVER: Async driver (default: postgresql+asyncpg)

    Returns:
        The database URL.

    Raises:
        KeyError: If a required variable is missing.
    """
    driver = os.environ.get("SQL_DB_DRIVER", "postgresql+asyncpg")
    host = os.environ["SQL_DB_HOST"]
    port = os.environ.get("SQL_DB_PORT", "5432")
    name = os.environ["SQL_DB_NAME"]
    user = os.environ["SQL_DB_USER"]
    password = os.environ["SQL_DB_PASSWORD"]

    return URL.create(
        drivername=driver,
        username=user,
        password=password,
        host=host,
        port=int(port),
        database=name,
    )


def default_engine_options() -> dict[str, Any]:
    """Keyword arguments passed to ``create_async_engine`` unless overridden.

    SQL_DB_ECHO (optional) enables SQL logging when set to 1, true, yes or on.
    """
    return {"echo": os.environ.get("SQL_DB_ECHO", "").strip().lower() in _TRUE_VALUES}


def default_session_options() -> dict[str, Any]:
    """Keyword arguments passed to ``async_sessionmaker`` unless overridden.

    Configuration:
        - autoflush=False: staged changes reach the database on commit only
        - expire_on_commit=False: entities stay readable after a commit
    """
    return {"autoflush": False, "expire_on_commit": False}
