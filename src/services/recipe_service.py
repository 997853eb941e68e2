"""
Recipe Service - persistence of recipe records.

This service is the record-store collaborator used by sharing, import and
backup:
- persist_recipe: insert or update one plain record
- fetch_all_recipes / get_recipe: read records back as plain dicts
- delete_recipe, recipe_exists, count_recipes

Every function takes the Database handle first and accepts an optional
session so callers can group several writes into one transaction. Statements
name only the recipe columns the store has, so every operation works on a
store at any schema version from 1 up.
"""

import random
import string
import time
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, delete, func, insert, inspect, select, update
from sqlalchemy.orm import Session

from src.models import Recipe
from src.services.database import Database
from src.services.exceptions import RecipeNotFound, ServiceError, ValidationError
from src.services.logging_utils import get_service_logger
from src.utils.datetime_utils import now_seconds

logger = get_service_logger(__name__)

_BASE36_DIGITS = string.digits + string.ascii_lowercase

recipes_table = Recipe.__table__


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def create_recipe_id() -> str:
    """
    Generate a portable recipe id.

    Returns:
        Millisecond timestamp in base 36 followed by nine random base-36 characters
    """
    suffix = "".join(random.choice(_BASE36_DIGITS) for _ in range(9))
    return f"{_to_base36(int(time.time() * 1000))}{suffix}"


# ============================================================================
# Schema awareness
# ============================================================================


def _stored_columns(sess: Session) -> List[Column]:
    """
    Recipe columns that exist in the store.

    The store may sit below the latest schema version (before an update, or
    after a rollback), so statements only name the columns it has.

    Raises:
        ServiceError: If the recipes table has not been created yet
    """
    inspector = inspect(sess.connection())
    if not inspector.has_table(Recipe.__tablename__):
        raise ServiceError("Recipe store is not initialised; run migrations first")
    present = {column["name"] for column in inspector.get_columns(Recipe.__tablename__)}
    return [column for column in recipes_table.columns if column.name in present]


# ============================================================================
# CRUD Operations
# ============================================================================


def persist_recipe(
    database: Database, record: Dict[str, Any], session: Optional[Session] = None
) -> str:
    """
    Insert a recipe record, or update the stored recipe with the same id.

    Fields the store's schema version has no column for are not written.

    Args:
        database: Store handle
        record: Plain recipe record; an id is generated when absent
        session: Optional database session. If None, creates a new session.

    Returns:
        Id of the stored recipe

    Raises:
        ValidationError: If the record has no title
        ServiceError: If the recipes table does not exist
    """
    if not record.get("title"):
        raise ValidationError(["Recipe title is required"])

    def _impl(sess: Session) -> str:
        names = {column.name for column in _stored_columns(sess)}
        recipe_id = record.get("id") or create_recipe_id()
        timestamp = now_seconds()

        values = Recipe.column_values(record)
        dropped = sorted(set(values) - names)
        if dropped:
            logger.debug(f"Store has no column for {', '.join(dropped)}; not written")
        values = {name: value for name, value in values.items() if name in names}
        values["modified_at"] = record.get("modified_at") or timestamp

        existing = sess.execute(
            select(recipes_table.c.id).where(recipes_table.c.id == recipe_id)
        ).first()
        if existing is None:
            values.update(id=recipe_id, created_at=record.get("created_at") or timestamp)
            values.setdefault("is_favorite", False)
            sess.execute(insert(recipes_table).values(**values))
            logger.debug(f"Creating recipe {recipe_id}")
        else:
            sess.execute(update(recipes_table).where(recipes_table.c.id == recipe_id).values(**values))
            logger.debug(f"Updating recipe {recipe_id}")
        return recipe_id

    if session is not None:
        return _impl(session)
    with database.session_scope() as sess:
        return _impl(sess)


def fetch_all_recipes(database: Database, session: Optional[Session] = None) -> List[Dict[str, Any]]:
    """
    Read every stored recipe.

    Args:
        database: Store handle
        session: Optional database session. If None, creates a new session.

    Returns:
        Plain records, most recently modified first. Records carry only the
        fields of the store's schema version.

    Raises:
        ServiceError: If the recipes table does not exist
    """

    def _impl(sess: Session) -> List[Dict[str, Any]]:
        query = select(*_stored_columns(sess)).order_by(
            recipes_table.c.modified_at.desc(), recipes_table.c.id
        )
        return [Recipe.record_from_row(row) for row in sess.execute(query).mappings()]

    if session is not None:
        return _impl(session)
    with database.session_scope() as sess:
        return _impl(sess)


def get_recipe(database: Database, recipe_id: str, session: Optional[Session] = None) -> Dict[str, Any]:
    """
    Read one recipe by id.

    Raises:
        RecipeNotFound: If no recipe has this id
    """

    def _impl(sess: Session) -> Dict[str, Any]:
        query = select(*_stored_columns(sess)).where(recipes_table.c.id == recipe_id)
        row = sess.execute(query).mappings().first()
        if row is None:
            raise RecipeNotFound(recipe_id)
        return Recipe.record_from_row(row)

    if session is not None:
        return _impl(session)
    with database.session_scope() as sess:
        return _impl(sess)


def recipe_exists(database: Database, recipe_id: str, session: Optional[Session] = None) -> bool:
    def _impl(sess: Session) -> bool:
        query = select(recipes_table.c.id).where(recipes_table.c.id == recipe_id)
        return sess.execute(query).first() is not None

    if session is not None:
        return _impl(session)
    with database.session_scope() as sess:
        return _impl(sess)


def count_recipes(database: Database, session: Optional[Session] = None) -> int:
    def _impl(sess: Session) -> int:
        return sess.execute(select(func.count()).select_from(recipes_table)).scalar_one()

    if session is not None:
        return _impl(session)
    with database.session_scope() as sess:
        return _impl(sess)


def delete_recipe(database: Database, recipe_id: str, session: Optional[Session] = None) -> bool:
    """
    Delete a recipe.

    Returns:
        True if deleted

    Raises:
        RecipeNotFound: If no recipe has this id
    """

    def _impl(sess: Session) -> bool:
        result = sess.execute(delete(recipes_table).where(recipes_table.c.id == recipe_id))
        if result.rowcount == 0:
            raise RecipeNotFound(recipe_id)
        logger.info(f"Deleted recipe {recipe_id}")
        return True

    if session is not None:
        return _impl(session)
    with database.session_scope() as sess:
        return _impl(sess)


def delete_all_recipes(database: Database, session: Optional[Session] = None) -> int:
    """
    Delete every stored recipe.

    The full-text sync triggers fire for each deleted row.

    Returns:
        Number of recipes deleted
    """

    def _impl(sess: Session) -> int:
        return sess.execute(delete(recipes_table)).rowcount

    if session is not None:
        return _impl(session)
    with database.session_scope() as sess:
        return _impl(sess)
