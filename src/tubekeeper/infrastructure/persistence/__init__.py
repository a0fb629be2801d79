"""Persistence layer: SQLAlchemy models, repositories and the database."""

from tubekeeper.infrastructure.persistence.database import Database
from tubekeeper.infrastructure.persistence.repositories import SqlAlchemyUnitOfWork

__all__ = ["Database", "SqlAlchemyUnitOfWork"]
