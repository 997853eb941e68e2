"""Pytest configuration and fixtures for service layer tests."""

import pytest

from src.services.database import Database
from src.services.migration_service import MigrationLadder


@pytest.fixture(scope="function")
def database():
    """Provide a clean, empty in-memory store for each test function.

    Nothing is created in it; tests that need tables use the ladder fixture.
    """
    db = Database()
    yield db
    db.dispose()


@pytest.fixture(scope="function")
def ladder(database):
    """Provide a migration ladder whose store is at the latest version."""
    migration_ladder = MigrationLadder(database)
    migration_ladder.ensure_current()
    return migration_ladder


@pytest.fixture
def tea_recipe():
    """The minimal recipe used by the round-trip scenarios."""
    return {
        "id": "r1",
        "title": "Tea",
        "ingredients": "water, leaves",
        "instructions": "steep",
    }


@pytest.fixture
def full_recipe():
    """A stored-recipe record with every field filled in."""
    return {
        "id": "lk2x9q0abc123def",
        "title": "Shortbread",
        "description": "Buttery Scottish biscuits",
        "ingredients": "250g flour\n175g butter\n75g sugar",
        "instructions": "Rub butter into flour, add sugar, press into tin, bake 40 min at 150C",
        "source_url": "https://example.com/shortbread",
        "servings": 16,
        "prep_time": 15,
        "cook_time": 40,
        "difficulty": "Easy",
        "cuisine": "Scottish",
        "tags": ["baking", "holiday"],
        "rating": 5,
        "is_favorite": True,
        "notes": "Chill dough for 20 minutes",
        "cooking_method": "Baking",
        "source_type": "url",
        "nutrition": {"calories": 120},
    }


@pytest.fixture
def stored_recipe(database, ladder, full_recipe):
    """Persist full_recipe and return the stored record."""
    from src.services import recipe_service

    recipe_service.persist_recipe(database, full_recipe)
    return recipe_service.get_recipe(database, full_recipe["id"])
