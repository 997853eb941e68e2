"""
Backup Service - versioned full-database snapshots.

A backup file is one JSON document:

    {
        "database": [<recipe record>, ...],
        "preferences": {"theme": "dark", ...},
        "version": 1,
        "timestamp": <epoch ms>,
        "compressed": true,
        "checksum": "<sha256>",
        "metadata": {"created": <epoch ms>, "app": "1.3.0", "schema": 3, "count": 2}
    }

The checksum is SHA-256 over the compact, key-sorted JSON of the snapshot
with the checksum field removed. Files are named
backup_v<schema>_<YYYY-MM-DD>_<epoch ms>.json; the older
backup_<YYYY-MM-DD>_<epoch ms>.json names are read as schema version 1.

Usage:
    from src.services.backup_service import BackupService

    service = BackupService(database, ladder, config.backup_dir)
    path = service.create_backup()

    outcome = service.prepare_restore(path)
    if outcome.is_valid:
        result = service.restore(path, mode=RestoreMode.MERGE)
"""

import copy
import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from src.services import preferences_service, recipe_service
from src.services.compatibility_service import CompatibilityDecision, compare
from src.services.database import Database
from src.services.dto import ImportOutcome, ImportStatus
from src.services.exceptions import (
    BackupFileError,
    IntegrityViolation,
    MigrationFailed,
    SchemaVersionError,
)
from src.services.logging_utils import get_service_logger, log_operation
from src.services.migration_service import MigrationLadder
from src.services.record_migration_service import migrate_records
from src.utils.constants import (
    APP_VERSION,
    BACKUP_FILENAME_PATTERN,
    BACKUP_FORMAT_VERSION,
    BACKUP_PREFERENCE_KEYS,
    LEGACY_BACKUP_FILENAME_PATTERN,
    MAX_BACKUPS,
)
from src.utils.datetime_utils import ms_to_date_string, now_ms

logger = get_service_logger(__name__)


# ============================================================================
# Data Classes
# ============================================================================


@dataclass(frozen=True)
class BackupMetadata:
    """
    Version stamp carried inside every snapshot.

    Attributes:
        created: Creation time (epoch ms)
        app: Version string of the app that wrote the snapshot
        schema: Schema version of the store the snapshot was taken from
        count: Number of recipe records in the snapshot
    """

    created: int
    app: str
    schema: int
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"created": self.created, "app": self.app, "schema": self.schema, "count": self.count}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackupMetadata":
        return cls(created=data["created"], app=data["app"], schema=data["schema"], count=data["count"])


@dataclass
class IntegrityResult:
    """Result of checking a snapshot's structure. Every problem is collected."""

    valid: bool
    errors: List[str] = field(default_factory=list)


class RestoreMode(str, Enum):
    """How restored recipes combine with the recipes already stored."""

    MERGE = "merge"
    REPLACE = "replace"


@dataclass
class RestoreResult:
    """Counts from one restore."""

    restored: int = 0
    skipped: int = 0
    deleted: int = 0
    preferences_restored: int = 0


# ============================================================================
# Metadata and compatibility
# ============================================================================


def stamp_metadata(
    recipe_count: int,
    schema_version: int,
    app_version: str = APP_VERSION,
    created_ms: Optional[int] = None,
) -> BackupMetadata:
    """Build the metadata block for a new snapshot."""
    return BackupMetadata(
        created=created_ms if created_ms is not None else now_ms(),
        app=app_version,
        schema=schema_version,
        count=recipe_count,
    )


def check_compatibility(metadata: BackupMetadata, current_version: int) -> CompatibilityDecision:
    """
    Decide whether a snapshot can be restored into a store at current_version.

    Returns:
        CompatibilityDecision from the shared version policy
    """
    return compare(metadata.schema, current_version)


def migrate_backup_data(snapshot: Dict[str, Any], from_version: int, to_version: int) -> Dict[str, Any]:
    """
    Upgrade a snapshot's recipe records from from_version to to_version.

    Args:
        snapshot: Snapshot to upgrade (not modified)
        from_version: Schema version the snapshot was written under
        to_version: Schema version of the target store

    Returns:
        Copy of the snapshot with upgraded records
    """
    migrated = copy.deepcopy(snapshot)
    records = migrated.get("database")
    if isinstance(records, list):
        migrated["database"] = migrate_records(records, from_version, to_version)
    return migrated


# ============================================================================
# Integrity
# ============================================================================


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def compute_checksum(snapshot: Dict[str, Any]) -> str:
    """
    Calculate the snapshot checksum.

    Args:
        snapshot: Snapshot dict; its checksum field, if any, is ignored

    Returns:
        SHA-256 hex digest
    """
    content = {key: value for key, value in snapshot.items() if key != "checksum"}
    serialized = json.dumps(content, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def verify_checksum(snapshot: Dict[str, Any]) -> bool:
    """True if the stored checksum matches a recomputation."""
    return snapshot.get("checksum") == compute_checksum(snapshot)


def validate_integrity(snapshot: Any) -> IntegrityResult:
    """
    Check the structure of a snapshot.

    Checks every top-level field, every metadata field, and that the metadata
    recipe count matches the number of records. All violations are collected.

    Args:
        snapshot: Parsed backup document

    Returns:
        IntegrityResult with every problem found
    """
    if not isinstance(snapshot, dict):
        return IntegrityResult(valid=False, errors=["Backup is not a JSON object"])

    errors: List[str] = []

    metadata = snapshot.get("metadata")
    if not isinstance(metadata, dict):
        errors.append("Missing backup metadata")

    records = snapshot.get("database")
    if not isinstance(records, list):
        errors.append("Invalid or missing recipe database")
    elif any(not isinstance(record, dict) for record in records):
        errors.append("Recipe database contains entries that are not records")

    if not isinstance(snapshot.get("preferences"), dict):
        errors.append("Invalid or missing preferences")

    if not _is_int(snapshot.get("version")):
        errors.append("Invalid or missing backup format version")

    timestamp = snapshot.get("timestamp")
    if not timestamp or not _is_number(timestamp):
        errors.append("Invalid or missing timestamp")

    if not isinstance(snapshot.get("compressed"), bool):
        errors.append("Invalid or missing compressed flag")

    checksum = snapshot.get("checksum")
    if not checksum or not isinstance(checksum, str):
        errors.append("Invalid or missing checksum")

    if isinstance(metadata, dict):
        created = metadata.get("created")
        if not created or not _is_number(created):
            errors.append("Invalid metadata: missing or invalid created timestamp")

        app = metadata.get("app")
        if not app or not isinstance(app, str):
            errors.append("Invalid metadata: missing or invalid app version")

        if not _is_int(metadata.get("schema")):
            errors.append("Invalid metadata: missing or invalid schema version")

        count = metadata.get("count")
        if not _is_int(count):
            errors.append("Invalid metadata: missing or invalid recipe count")
        elif isinstance(records, list) and len(records) != count:
            errors.append(f"Recipe count mismatch: metadata says {count}, found {len(records)}")

    return IntegrityResult(valid=len(errors) == 0, errors=errors)


# ============================================================================
# Filenames
# ============================================================================


def create_backup_filename(metadata: BackupMetadata) -> str:
    """Build backup_v<schema>_<YYYY-MM-DD>_<epoch ms>.json from metadata."""
    return f"backup_v{metadata.schema}_{ms_to_date_string(metadata.created)}_{metadata.created}.json"


def parse_backup_filename(filename: str) -> Optional[Dict[str, Any]]:
    """
    Extract version information from a backup filename.

    Returns:
        Dict with version, date and timestamp, or None if the name is not a
        backup filename. Legacy names without a version segment report version 1.
    """
    match = re.fullmatch(BACKUP_FILENAME_PATTERN, filename)
    if match:
        return {"version": int(match.group(1)), "date": match.group(2), "timestamp": int(match.group(3))}

    legacy_match = re.fullmatch(LEGACY_BACKUP_FILENAME_PATTERN, filename)
    if legacy_match:
        return {"version": 1, "date": legacy_match.group(1), "timestamp": int(legacy_match.group(2))}

    return None


# ============================================================================
# Snapshot creation and files
# ============================================================================


def create_snapshot(
    database: Database,
    schema_version: int,
    preference_keys: Iterable[str] = BACKUP_PREFERENCE_KEYS,
    created_ms: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Export every recipe and the backed-up preferences as a snapshot.

    Args:
        database: Store handle
        schema_version: Current schema version of the store
        preference_keys: Preferences to include (unset ones are left out)
        created_ms: Snapshot time, defaults to now

    Returns:
        Snapshot dict including metadata and checksum
    """
    created = created_ms if created_ms is not None else now_ms()

    with database.session_scope() as session:
        records = recipe_service.fetch_all_recipes(database, session=session)
        preferences = preferences_service.get_all_preferences(database, preference_keys, session=session)

    metadata = stamp_metadata(len(records), schema_version, created_ms=created)
    snapshot = {
        "database": records,
        "preferences": preferences,
        "version": BACKUP_FORMAT_VERSION,
        "timestamp": created,
        "compressed": True,
        "metadata": metadata.to_dict(),
    }
    snapshot["checksum"] = compute_checksum(snapshot)

    logger.info(f"Created snapshot of {len(records)} recipes at schema v{schema_version}")
    return snapshot


def write_backup_file(snapshot: Dict[str, Any], directory: Union[str, Path]) -> Path:
    """
    Write a snapshot to the backup directory.

    Returns:
        Path of the written file

    Raises:
        BackupFileError: If the file cannot be written
    """
    backup_dir = Path(directory)
    metadata = BackupMetadata.from_dict(snapshot["metadata"])
    path = backup_dir / create_backup_filename(metadata)

    try:
        backup_dir.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(snapshot, f, ensure_ascii=False)
    except OSError as e:
        raise BackupFileError(str(path), f"Failed to write backup: {e}") from e

    logger.info(f"Backup written: {path}")
    return path


def read_backup_file(path: Union[str, Path]) -> str:
    """
    Read a backup file's text.

    Raises:
        BackupFileError: If the file cannot be read
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise BackupFileError(str(path), f"Failed to read backup: {e}") from e


def list_backups(directory: Union[str, Path]) -> List[Dict[str, Any]]:
    """
    List backup files in a directory.

    Args:
        directory: Directory to scan

    Returns:
        List of dicts with filename, path, size, version, date and timestamp,
        newest first
    """
    backups = []
    backup_dir = Path(directory)
    if not backup_dir.exists():
        return backups

    for backup_file in backup_dir.glob("backup_*.json"):
        info = parse_backup_filename(backup_file.name)
        if info is None:
            continue
        backups.append(
            {
                "filename": backup_file.name,
                "path": str(backup_file),
                "size": backup_file.stat().st_size,
                **info,
            }
        )

    backups.sort(key=lambda backup: backup["timestamp"], reverse=True)
    return backups


def cleanup_old_backups(directory: Union[str, Path], keep_count: int = MAX_BACKUPS) -> int:
    """
    Delete old backup files, keeping only the most recent ones.

    Args:
        directory: Directory containing backup files
        keep_count: Number of recent backups to keep

    Returns:
        Number of backup files deleted
    """
    deleted_count = 0
    backups = list_backups(directory)

    for backup in backups[keep_count:]:
        try:
            Path(backup["path"]).unlink()
            deleted_count += 1
            logger.info(f"Deleted old backup: {backup['filename']}")
        except OSError as e:
            logger.error(f"Failed to delete backup {backup['filename']}: {e}")

    return deleted_count


# ============================================================================
# Restore
# ============================================================================


def restore_snapshot(
    database: Database,
    snapshot: Dict[str, Any],
    mode: RestoreMode = RestoreMode.MERGE,
) -> RestoreResult:
    """
    Write a validated, migrated snapshot into the store.

    All writes happen in one transaction; if any record fails nothing is
    changed. In MERGE mode recipes whose id is already stored are skipped, so
    repeating a restore does not duplicate recipes. In REPLACE mode every
    stored recipe is deleted first.

    Args:
        database: Store handle
        snapshot: Snapshot whose records match the store's schema version
        mode: MERGE or REPLACE

    Returns:
        RestoreResult with counts

    Raises:
        ValidationError: If a record cannot be stored (nothing is written)
    """
    mode = RestoreMode(mode)
    result = RestoreResult()

    with database.session_scope() as session:
        if mode == RestoreMode.REPLACE:
            result.deleted = recipe_service.delete_all_recipes(database, session=session)

        for record in snapshot.get("database", []):
            recipe_id = record.get("id")
            if (
                mode == RestoreMode.MERGE
                and recipe_id
                and recipe_service.recipe_exists(database, recipe_id, session=session)
            ):
                result.skipped += 1
                continue
            recipe_service.persist_recipe(database, record, session=session)
            result.restored += 1

        for key, value in snapshot.get("preferences", {}).items():
            preferences_service.write_preference(database, key, str(value), session=session)
            result.preferences_restored += 1

    log_operation(
        logger,
        operation="restore_snapshot",
        outcome="success",
        mode=mode.value,
        restored=result.restored,
        skipped=result.skipped,
        deleted=result.deleted,
    )
    return result


# ============================================================================
# Service
# ============================================================================


class BackupService:
    """
    Creates backup files and restores them into one store.

    Restore is split in two: prepare_restore() runs the validation pipeline
    and writes nothing, so the user can still back out after seeing the
    compatibility message; restore() then writes the prepared snapshot.
    """

    def __init__(
        self,
        database: Database,
        ladder: MigrationLadder,
        backup_dir: Union[str, Path],
        max_backups: int = MAX_BACKUPS,
    ):
        self.database = database
        self.ladder = ladder
        self.backup_dir = Path(backup_dir)
        self.max_backups = max_backups

    def create_backup(self, created_ms: Optional[int] = None) -> Path:
        """
        Snapshot the store to a new backup file and prune old files.

        Returns:
            Path of the new backup file
        """
        snapshot = create_snapshot(
            self.database, self.ladder.current_version(), created_ms=created_ms
        )
        path = write_backup_file(snapshot, self.backup_dir)
        preferences_service.record_last_backup(self.database, snapshot["timestamp"])
        cleanup_old_backups(self.backup_dir, self.max_backups)
        return path

    def prepare_restore(self, path: Union[str, Path]) -> ImportOutcome:
        """
        Read and validate a backup file without writing anything.

        Returns:
            ImportOutcome; when valid, its snapshot holds records migrated to
            the store's current version

        Raises:
            BackupFileError: If the file cannot be read
        """
        from src.services.import_validation_service import validate_backup_text

        text = read_backup_file(path)
        return validate_backup_text(text, self.ladder.current_version())

    def restore(self, path: Union[str, Path], mode: RestoreMode = RestoreMode.MERGE) -> RestoreResult:
        """
        Validate a backup file and restore it.

        Nothing is written when the backup is refused.

        Raises:
            SchemaVersionError: If the backup is from a newer schema version
            MigrationFailed: If its records cannot be upgraded; names the version
            IntegrityViolation: If the backup fails its integrity or checksum checks
            BackupFileError: If the file cannot be read
        """
        outcome = self.prepare_restore(path)
        if not outcome.is_valid:
            log_operation(
                logger,
                operation="restore_backup",
                outcome=outcome.status.value,
                level=logging.WARNING,
                path=str(path),
            )
            if outcome.status == ImportStatus.UPDATE_REQUIRED:
                raise SchemaVersionError(
                    outcome.share_version, outcome.current_version, message=outcome.message
                )
            if outcome.status == ImportStatus.MIGRATION_FAILED:
                raise MigrationFailed(outcome.failed_version, "; ".join(outcome.errors))
            raise IntegrityViolation(outcome.errors or [outcome.message])

        return restore_snapshot(self.database, outcome.snapshot, mode)
