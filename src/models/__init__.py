"""
Database models package.

This package contains all SQLAlchemy ORM models for the application.
"""

from .base import Base, BaseModel
from .recipe import Recipe
from .schema_info import SchemaInfo
from .user_preference import UserPreference

__all__ = [
    "Base",
    "BaseModel",
    "Recipe",
    "SchemaInfo",
    "UserPreference",
]
