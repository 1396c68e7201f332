"""Repository-specific exceptions."""


class DatabaseError(Exception):
    """Base exception for all database-related errors."""


class UnitOfWorkDisposedError(DatabaseError):
    """Raised when a unit of work (or a repository bound to it) is used after disposal."""

    def __init__(self, object_name: str) -> None:
        self.object_name = object_name
        super().__init__(f"Cannot access a disposed object: '{object_name}'")


class EntityModelError(DatabaseError):
    """Raised when an entity model is not mapped or a navigation path does not exist."""


class UnitOfWorkNotSetError(DatabaseError):
    """Raised when a query is executed before a unit of work has been assigned to it."""

    def __init__(self, query_name: str) -> None:
        self.query_name = query_name
        super().__init__(f"{query_name} has no unit of work to execute against")
