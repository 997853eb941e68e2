"""
Recipe model for stored recipes.

The table is created and evolved by the schema migration ladder
(src/services/migration_service.py); this mapping reflects the latest
schema version. A store may sit below it, so recipe_service reads and writes
only the columns the store actually has. Columns added after v1:
- v2: cooking_method, source_type
- v3: nutrition
"""

import json
from typing import Any, Dict, Mapping

from sqlalchemy import Boolean, Column, Integer, String, Text

from .base import BaseModel


class Recipe(BaseModel):
    """
    Recipe model representing a stored recipe.

    Attributes:
        id: Portable text identifier
        title: Recipe title (required)
        description: Free-text description
        ingredients: Ingredient list as entered by the user
        instructions: Method as entered by the user
        source_url: Where the recipe came from, if imported from the web
        servings: Number of servings
        prep_time: Preparation time in minutes
        cook_time: Cooking time in minutes
        difficulty: One of Easy, Medium, Hard
        cuisine: Cuisine label
        tags: JSON-encoded list of tag strings
        rating: 1-5 rating
        is_favorite: Favorite flag
        notes: Personal notes
        created_at: Creation time (epoch seconds)
        modified_at: Last modification time (epoch seconds)
        cooking_method: Cooking method (schema v2)
        source_type: 'url' or 'manual' (schema v2)
        nutrition: JSON-encoded nutrition object (schema v3)
    """

    __tablename__ = "recipes"

    # Never overwritten when a stored recipe is updated
    _protected_columns = ("id", "created_at")

    id = Column(String, primary_key=True)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    ingredients = Column(Text, nullable=True)
    instructions = Column(Text, nullable=True)
    source_url = Column(Text, nullable=True)
    servings = Column(Integer, nullable=True)
    prep_time = Column(Integer, nullable=True)
    cook_time = Column(Integer, nullable=True)
    difficulty = Column(Text, nullable=True)
    cuisine = Column(Text, nullable=True)
    tags = Column(Text, nullable=True)
    rating = Column(Integer, nullable=True)
    is_favorite = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)
    created_at = Column(Integer, nullable=True)
    modified_at = Column(Integer, nullable=True)

    # Schema v2
    cooking_method = Column(Text, nullable=True)
    source_type = Column(Text, nullable=True)

    # Schema v3
    nutrition = Column(Text, nullable=True)

    def __repr__(self) -> str:
        """String representation of recipe."""
        return f"Recipe(id='{self.id}', title='{self.title}')"

    @classmethod
    def record_from_row(cls, row: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Convert a selected row to a plain record.

        Only the columns present in the row appear in the record, so rows read
        from a store below the latest schema lack the later fields. Tags and
        nutrition are decoded from their JSON columns so the record matches
        the shape used by share payloads and backups.

        Args:
            row: Column name to value mapping

        Returns:
            Plain recipe record
        """
        record = dict(row)
        if "tags" in record:
            record["tags"] = json.loads(record["tags"]) if record["tags"] else []
        if "nutrition" in record:
            record["nutrition"] = json.loads(record["nutrition"]) if record["nutrition"] else None
        if "is_favorite" in record:
            record["is_favorite"] = bool(record["is_favorite"])
        return record

    @classmethod
    def column_values(cls, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Convert a plain record to column values for an insert or update.

        Keys that are not columns are ignored, as are the protected columns.

        Args:
            record: Plain recipe record; tags and nutrition given as Python objects

        Returns:
            Column name to storable value mapping
        """
        values = {
            column.name: record[column.name]
            for column in cls.__table__.columns
            if column.name in record and column.name not in cls._protected_columns
        }
        if "tags" in values:
            values["tags"] = json.dumps(values["tags"] or [])
        if "nutrition" in values:
            values["nutrition"] = (
                json.dumps(values["nutrition"]) if values["nutrition"] is not None else None
            )
        if "is_favorite" in values:
            values["is_favorite"] = bool(values["is_favorite"])
        return values
