"""User preference model - key/value strings stored alongside recipes."""

from sqlalchemy import Column, String, Text

from .base import BaseModel


class UserPreference(BaseModel):
    """A single named preference string."""

    __tablename__ = "user_preferences"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=True)
