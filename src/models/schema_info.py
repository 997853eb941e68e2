"""
Schema info model - one row per applied migration step.

Rows are written by the migration ladder when a step's forward action
commits and deleted only when the step's reverse action commits.
"""

from sqlalchemy import Column, Integer, String

from .base import BaseModel


class SchemaInfo(BaseModel):
    """
    Applied schema version record.

    Attributes:
        version: Migration step version (primary key)
        applied_at: When the step was applied (epoch seconds)
        app_version: Version string of the app build that applied it
    """

    __tablename__ = "schema_info"

    version = Column(Integer, primary_key=True)
    applied_at = Column(Integer, nullable=False)
    app_version = Column(String, nullable=True)
