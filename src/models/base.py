"""
Base model class for all database models.

Provides common functionality for all models:
- SQLAlchemy declarative base
- to_dict() for plain-record conversion

Primary keys are declared per table: recipe ids are portable text ids that
travel inside share links and backups, schema records are keyed by version.
"""

from typing import Any, Dict

from sqlalchemy.orm import declarative_base

# Create the declarative base for all models
Base = declarative_base()


class BaseModel(Base):
    """Abstract base model with common methods."""

    __abstract__ = True

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert model instance to dictionary.

        Returns:
            Dictionary representation of the model
        """
        return {column.name: getattr(self, column.name) for column in self.__table__.columns}

    def __repr__(self) -> str:
        """
        String representation of model instance.

        Returns:
            String like "ClassName(key=value)"
        """
        class_name = self.__class__.__name__
        keys = [column.name for column in self.__table__.primary_key.columns]
        attrs = ", ".join(f"{key}={getattr(self, key)!r}" for key in keys)
        return f"{class_name}({attrs})"
