"""
Migration service - the schema migration ladder for the recipe store.

The ladder is an ordered list of numbered steps. Each step evolves the store
from version N-1 to version N inside one transaction and records
{version, applied_at, app_version} in the schema_info table when it commits.

Usage:
    from src.services.database import Database
    from src.services.migration_service import MigrationLadder

    database = Database("sqlite:///myrecipebox.db")
    ladder = MigrationLadder(database)

    results = ladder.apply_pending()
    print(f"Store is at version {ladder.current_version()}")
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Connection

from src.models import SchemaInfo
from src.services.database import Database
from src.services.exceptions import MigrationFailed, RollbackError, SchemaVersionError
from src.services.logging_utils import get_service_logger, log_operation
from src.utils.constants import APP_VERSION
from src.utils.datetime_utils import now_seconds

logger = get_service_logger(__name__)


# ============================================================================
# Data Classes
# ============================================================================


@dataclass(frozen=True)
class MigrationStep:
    """A single numbered step of the migration ladder."""

    version: int
    description: str
    forward: Callable[[Connection], None]
    reverse: Optional[Callable[[Connection], None]] = None


@dataclass
class StepResult:
    """Outcome of applying one migration step."""

    version: int
    success: bool
    execution_ms: int
    error: Optional[str] = None


@dataclass
class SchemaValidationResult:
    """Result of the store's structural self-check."""

    valid: bool
    errors: List[str] = field(default_factory=list)


# ============================================================================
# Step Definitions
# ============================================================================

REQUIRED_TABLES = ["recipes", "recipe_images", "user_preferences", "schema_info"]
FTS_TABLE = "recipes_fts"
FTS_TRIGGERS = ["recipes_fts_insert", "recipes_fts_delete", "recipes_fts_update"]
REQUIRED_RECIPE_COLUMNS = [
    "id",
    "title",
    "description",
    "ingredients",
    "instructions",
    "created_at",
    "modified_at",
    "is_favorite",
]

# Columns each version adds to the recipes table
VERSION_COLUMNS: Dict[int, List[str]] = {
    2: ["cooking_method", "source_type"],
    3: ["nutrition"],
}

SCHEMA_INFO_DDL = """
CREATE TABLE IF NOT EXISTS schema_info (
    version INTEGER PRIMARY KEY,
    applied_at INTEGER NOT NULL,
    app_version TEXT
)
"""

INITIAL_SCHEMA = [
    SCHEMA_INFO_DDL,
    """
    CREATE TABLE IF NOT EXISTS recipes (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT,
        ingredients TEXT,
        instructions TEXT,
        source_url TEXT,
        servings INTEGER,
        prep_time INTEGER,
        cook_time INTEGER,
        difficulty TEXT,
        cuisine TEXT,
        tags TEXT,
        rating INTEGER,
        is_favorite BOOLEAN DEFAULT 0,
        notes TEXT,
        created_at INTEGER DEFAULT (strftime('%s','now')),
        modified_at INTEGER DEFAULT (strftime('%s','now'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS recipe_images (
        id TEXT PRIMARY KEY,
        recipe_id TEXT,
        image_path TEXT,
        thumbnail_path TEXT,
        position INTEGER DEFAULT 0,
        FOREIGN KEY (recipe_id) REFERENCES recipes (id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_preferences (
        key TEXT PRIMARY KEY,
        value TEXT
    )
    """,
    """
    CREATE VIRTUAL TABLE IF NOT EXISTS recipes_fts USING fts5(
        title, description, ingredients, instructions,
        content=recipes,
        content_rowid=rowid
    )
    """,
    """
    CREATE TRIGGER IF NOT EXISTS recipes_fts_insert AFTER INSERT ON recipes BEGIN
        INSERT INTO recipes_fts(rowid, title, description, ingredients, instructions)
        VALUES (new.rowid, new.title, new.description, new.ingredients, new.instructions);
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS recipes_fts_delete AFTER DELETE ON recipes BEGIN
        INSERT INTO recipes_fts(recipes_fts, rowid, title, description, ingredients, instructions)
        VALUES ('delete', old.rowid, old.title, old.description, old.ingredients, old.instructions);
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS recipes_fts_update AFTER UPDATE ON recipes BEGIN
        INSERT INTO recipes_fts(recipes_fts, rowid, title, description, ingredients, instructions)
        VALUES ('delete', old.rowid, old.title, old.description, old.ingredients, old.instructions);
        INSERT INTO recipes_fts(rowid, title, description, ingredients, instructions)
        VALUES (new.rowid, new.title, new.description, new.ingredients, new.instructions);
    END
    """,
]

DROP_INITIAL_SCHEMA = [
    "DROP TRIGGER IF EXISTS recipes_fts_update",
    "DROP TRIGGER IF EXISTS recipes_fts_delete",
    "DROP TRIGGER IF EXISTS recipes_fts_insert",
    "DROP TABLE IF EXISTS recipes_fts",
    "DROP TABLE IF EXISTS user_preferences",
    "DROP TABLE IF EXISTS recipe_images",
    "DROP TABLE IF EXISTS recipes",
    "DROP TABLE IF EXISTS schema_info",
]


def _run_statements(connection: Connection, statements: List[str]) -> None:
    """Execute DDL statements one at a time on the step's connection."""
    for statement in statements:
        connection.exec_driver_sql(statement)


def _create_initial_schema(connection: Connection) -> None:
    _run_statements(connection, INITIAL_SCHEMA)


def _drop_initial_schema(connection: Connection) -> None:
    _run_statements(connection, DROP_INITIAL_SCHEMA)


def _add_cooking_method_and_source_type(connection: Connection) -> None:
    _run_statements(
        connection,
        [
            "ALTER TABLE recipes ADD COLUMN cooking_method TEXT",
            "ALTER TABLE recipes ADD COLUMN source_type TEXT",
            """
            UPDATE recipes SET source_type = CASE
                WHEN source_url IS NOT NULL AND source_url != '' THEN 'url'
                ELSE 'manual'
            END
            """,
        ],
    )


def _drop_cooking_method_and_source_type(connection: Connection) -> None:
    _run_statements(
        connection,
        [
            "ALTER TABLE recipes DROP COLUMN source_type",
            "ALTER TABLE recipes DROP COLUMN cooking_method",
        ],
    )


def _add_nutrition(connection: Connection) -> None:
    _run_statements(connection, ["ALTER TABLE recipes ADD COLUMN nutrition TEXT"])


def _drop_nutrition(connection: Connection) -> None:
    _run_statements(connection, ["ALTER TABLE recipes DROP COLUMN nutrition"])


MIGRATION_STEPS: List[MigrationStep] = [
    MigrationStep(
        version=1,
        description=(
            "Initial schema - recipes, recipe_images, user_preferences, schema_info "
            "and the recipes_fts full-text index"
        ),
        forward=_create_initial_schema,
        reverse=_drop_initial_schema,
    ),
    MigrationStep(
        version=2,
        description="Add cooking_method and source_type to recipes",
        forward=_add_cooking_method_and_source_type,
        reverse=_drop_cooking_method_and_source_type,
    ),
    MigrationStep(
        version=3,
        description="Add nutrition to recipes",
        forward=_add_nutrition,
        reverse=_drop_nutrition,
    ),
]


def check_ladder(steps: List[MigrationStep]) -> List[MigrationStep]:
    """
    Verify that step versions run 1..N with no gaps or duplicates.

    Args:
        steps: Steps in any order

    Returns:
        Steps sorted by ascending version

    Raises:
        ValueError: If the versions are not contiguous from 1
    """
    ordered = sorted(steps, key=lambda step: step.version)
    versions = [step.version for step in ordered]
    expected = list(range(1, len(ordered) + 1))
    if versions != expected:
        raise ValueError(f"Migration versions must be contiguous from 1, got {versions}")
    return ordered


# ============================================================================
# Migration Ladder
# ============================================================================


class MigrationLadder:
    """
    Applies and reverses the numbered schema steps against one store.

    Key Features:
    - Steps run in strictly ascending order, one transaction each
    - A step is recorded only when its transaction commits
    - A failing step stops the ladder; the store stays at the last good version
    - Rollback runs reverse actions in strictly descending order
    - Structural self-check and repair
    """

    def __init__(
        self,
        database: Database,
        steps: Optional[List[MigrationStep]] = None,
        app_version: str = APP_VERSION,
    ):
        """
        Initialize the ladder.

        Args:
            database: Store handle the steps run against
            steps: Step list, defaults to MIGRATION_STEPS
            app_version: Version string recorded with each applied step

        Raises:
            ValueError: If the step versions are not contiguous from 1
        """
        self.database = database
        self.app_version = app_version
        self._steps = check_ladder(MIGRATION_STEPS if steps is None else steps)

    @property
    def steps(self) -> List[MigrationStep]:
        """Steps in ascending version order."""
        return list(self._steps)

    # ------------------------------------------------------------------
    # Version queries
    # ------------------------------------------------------------------

    def current_version(self) -> int:
        """
        Read the highest applied version.

        Returns:
            Highest version recorded in schema_info, 0 for a virgin store
        """
        with self.database.connection_scope() as connection:
            if not self._schema_info_exists(connection):
                return 0
            result = connection.execute(text("SELECT MAX(version) FROM schema_info")).scalar()
        return result or 0

    def latest_version(self) -> int:
        """Highest version defined by this build's step list."""
        return self._steps[-1].version if self._steps else 0

    def pending_steps(self) -> List[MigrationStep]:
        """Steps above the store's current version, ascending."""
        current = self.current_version()
        return [step for step in self._steps if step.version > current]

    def is_from_future(self) -> bool:
        """True if the store was written by a newer build."""
        return self.current_version() > self.latest_version()

    def migration_history(self) -> List[Dict]:
        """
        List the applied steps.

        Returns:
            One dict per applied step with version, applied_at and app_version,
            ascending by version
        """
        with self.database.connection_scope() as connection:
            if not self._schema_info_exists(connection):
                return []

        with self.database.session_scope() as session:
            records = session.query(SchemaInfo).order_by(SchemaInfo.version.asc()).all()
            return [record.to_dict() for record in records]

    # ------------------------------------------------------------------
    # Apply / rollback
    # ------------------------------------------------------------------

    def apply_pending(self) -> List[StepResult]:
        """
        Apply every step above the current version, in ascending order.

        Each step's forward action and its schema_info record share one
        transaction. On the first failure the step's transaction is rolled
        back, a failed StepResult is appended and no later step is attempted.

        Returns:
            One StepResult per attempted step; a failed step is always last

        Raises:
            SchemaVersionError: If the store is newer than this build
        """
        current = self.current_version()
        latest = self.latest_version()

        if current > latest:
            raise SchemaVersionError(current, latest)

        logger.info(f"Current schema version: {current}, Latest: {latest}")
        results: List[StepResult] = []

        if current >= latest:
            logger.info("Database is up to date")
            return results

        for step in self._steps:
            if step.version <= current:
                continue

            started = time.perf_counter()
            logger.info(f"Running migration {step.version}: {step.description}")
            try:
                with self.database.connection_scope() as connection:
                    step.forward(connection)
                    self._record_step(connection, step.version)
            except Exception as e:
                elapsed = int((time.perf_counter() - started) * 1000)
                results.append(
                    StepResult(version=step.version, success=False, execution_ms=elapsed, error=str(e))
                )
                log_operation(
                    logger,
                    operation="apply_migration",
                    outcome="failed",
                    level=logging.ERROR,
                    schema_version=step.version,
                    error=str(e),
                )
                break

            elapsed = int((time.perf_counter() - started) * 1000)
            results.append(StepResult(version=step.version, success=True, execution_ms=elapsed))
            log_operation(
                logger,
                operation="apply_migration",
                outcome="success",
                schema_version=step.version,
                execution_ms=elapsed,
            )

        return results

    def ensure_current(self) -> List[StepResult]:
        """
        Apply pending steps and raise if any of them failed.

        Returns:
            Results of the steps that were applied

        Raises:
            MigrationFailed: With the failing version and its cause
            SchemaVersionError: If the store is newer than this build
        """
        results = self.apply_pending()
        if results and not results[-1].success:
            failed = results[-1]
            raise MigrationFailed(failed.version, failed.error or "unknown error", results)
        return results

    def rollback_to(self, target_version: int) -> List[int]:
        """
        Reverse applied steps down to target_version.

        Reverse actions run for versions in (target_version, current], strictly
        descending, each in its own transaction together with the removal of
        its schema_info record.

        Args:
            target_version: Version the store should end at (0 empties it)

        Returns:
            Versions that were rolled back, in the order they ran

        Raises:
            RollbackError: If the target is not below the current version, or a
                step has no reverse action, or a reverse action fails. The error
                lists the versions already rolled back.
            SchemaVersionError: If the store is newer than this build
        """
        current = self.current_version()

        if current > self.latest_version():
            raise SchemaVersionError(current, self.latest_version())

        if target_version < 0 or target_version >= current:
            raise RollbackError(
                None,
                f"Cannot rollback to version {target_version} - current version is {current}",
            )

        logger.info(f"Rolling back from version {current} to {target_version}")

        to_reverse = sorted(
            (step for step in self._steps if target_version < step.version <= current),
            key=lambda step: step.version,
            reverse=True,
        )

        rolled_back: List[int] = []
        for step in to_reverse:
            if step.reverse is None:
                raise RollbackError(
                    step.version,
                    f"Migration {step.version} does not support rollback "
                    f"(rolled back so far: {rolled_back})",
                    rolled_back,
                )

            try:
                with self.database.connection_scope() as connection:
                    step.reverse(connection)
                    self._delete_step_record(connection, step.version)
            except Exception as e:
                log_operation(
                    logger,
                    operation="rollback_migration",
                    outcome="failed",
                    level=logging.ERROR,
                    schema_version=step.version,
                    error=str(e),
                )
                raise RollbackError(
                    step.version,
                    f"Failed to rollback migration {step.version}: {e}",
                    rolled_back,
                ) from e

            rolled_back.append(step.version)
            log_operation(
                logger,
                operation="rollback_migration",
                outcome="success",
                schema_version=step.version,
            )

        logger.info(f"Rollback to version {target_version} completed")
        return rolled_back

    # ------------------------------------------------------------------
    # Validation / repair
    # ------------------------------------------------------------------

    def validate(self) -> SchemaValidationResult:
        """
        Check that the store's structure matches the applied version.

        Checks:
        - Required tables exist
        - Full-text index table and its sync triggers exist and the index is consistent
        - Recipe columns required by the current version exist
        - Current version is neither behind nor ahead of the latest version

        Returns:
            SchemaValidationResult with every problem found
        """
        errors: List[str] = []

        tables = set(self.database.table_names())
        for table_name in REQUIRED_TABLES:
            if table_name not in tables:
                errors.append(f"Required table '{table_name}' is missing")

        current = self.current_version()
        latest = self.latest_version()

        if FTS_TABLE not in tables:
            errors.append(f"Full-text search table '{FTS_TABLE}' is missing")
        else:
            errors.extend(self._check_search_index())

        if "recipes" in tables:
            existing_columns = set(self.database.column_names("recipes"))
            required_columns = list(REQUIRED_RECIPE_COLUMNS)
            for version, columns in VERSION_COLUMNS.items():
                if version <= current:
                    required_columns.extend(columns)
            for column_name in required_columns:
                if column_name not in existing_columns:
                    errors.append(f"Required column '{column_name}' is missing from recipes table")

        if current < latest:
            errors.append(f"Schema version {current} is behind latest version {latest}")
        elif current > latest:
            errors.append(f"Schema version {current} is newer than latest known version {latest}")

        return SchemaValidationResult(valid=len(errors) == 0, errors=errors)

    def repair(self) -> str:
        """
        Run an integrity check, rebuild the full-text index and refresh statistics.

        Returns:
            Result of PRAGMA integrity_check ("ok" for a healthy store)
        """
        logger.info("Starting database repair...")
        with self.database.connection_scope() as connection:
            integrity = connection.exec_driver_sql("PRAGMA integrity_check").scalar()
            if integrity != "ok":
                logger.warning(f"Database integrity check failed: {integrity}")

            if self._table_exists(connection, FTS_TABLE):
                connection.exec_driver_sql(f"INSERT INTO {FTS_TABLE}({FTS_TABLE}) VALUES('rebuild')")
                logger.info("FTS index rebuilt successfully")

            connection.exec_driver_sql("ANALYZE")

        logger.info("Database repair completed")
        return integrity

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _check_search_index(self) -> List[str]:
        """Check the full-text triggers and index consistency."""
        errors = []
        with self.database.connection_scope() as connection:
            triggers = {
                row[0]
                for row in connection.execute(
                    text("SELECT name FROM sqlite_master WHERE type = 'trigger'")
                )
            }
            for trigger_name in FTS_TRIGGERS:
                if trigger_name not in triggers:
                    errors.append(f"Full-text sync trigger '{trigger_name}' is missing")

        try:
            with self.database.connection_scope() as connection:
                connection.exec_driver_sql(
                    f"INSERT INTO {FTS_TABLE}({FTS_TABLE}) VALUES('integrity-check')"
                )
        except Exception as e:
            errors.append(f"Full-text index is inconsistent: {e}")

        return errors

    def _record_step(self, connection: Connection, version: int) -> None:
        # v1 creates schema_info itself; custom ladders may not
        connection.exec_driver_sql(SCHEMA_INFO_DDL)
        connection.execute(
            text(
                "INSERT OR REPLACE INTO schema_info (version, applied_at, app_version) "
                "VALUES (:version, :applied_at, :app_version)"
            ),
            {"version": version, "applied_at": now_seconds(), "app_version": self.app_version},
        )

    def _delete_step_record(self, connection: Connection, version: int) -> None:
        # Reversing v1 drops schema_info entirely
        if self._schema_info_exists(connection):
            connection.execute(
                text("DELETE FROM schema_info WHERE version = :version"), {"version": version}
            )

    @staticmethod
    def _table_exists(connection: Connection, table_name: str) -> bool:
        row = connection.execute(
            text("SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = :name"),
            {"name": table_name},
        ).first()
        return row is not None

    def _schema_info_exists(self, connection: Connection) -> bool:
        return self._table_exists(connection, "schema_info")
