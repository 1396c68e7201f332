"""SQLAlchemy repository implementation."""

from dalkit.repository.sqlalchemy.model import ModelBuilder, build_model
from dalkit.repository.sqlalchemy.repository import SqlAlchemyRepository
from dalkit.repository.sqlalchemy.unit_of_work import (
    OptionsBuilder,
    SqlAlchemyUnitOfWork,
    UnitOfWorkOptions,
)

__all__ = [
    "ModelBuilder",
    "OptionsBuilder",
    "SqlAlchemyRepository",
    "SqlAlchemyUnitOfWork",
    "UnitOfWorkOptions",
    "build_model",
]
