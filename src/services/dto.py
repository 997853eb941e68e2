"""Data Transfer Objects for the import pipeline.

This module provides the value types returned when a share link or a backup
snapshot is decoded and validated. They are shared by the share codec, the
import validation pipeline and the backup service, and are never persisted.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from src.utils.constants import (
    MSG_BACKUP_DAMAGED,
    MSG_CORRUPTED,
    MSG_DUPLICATE,
    MSG_INVALID,
    MSG_SIZE_LIMIT,
    MSG_UPDATE_REQUIRED,
)


class ImportStatus(str, Enum):
    """Terminal classification of one import attempt."""

    VALID = "valid"
    UPDATE_REQUIRED = "update_required"
    CORRUPTED = "corrupted"
    DUPLICATE = "duplicate"
    INVALID_FORMAT = "invalid_format"
    SIZE_EXCEEDED = "size_exceeded"
    INTEGRITY_VIOLATION = "integrity_violation"
    MIGRATION_FAILED = "migration_failed"


class ImportStage(str, Enum):
    """Pipeline stage at which an import attempt stopped."""

    FORMAT = "format"
    SIZE = "size"
    VERSION = "version"
    MIGRATION = "migration"
    DUPLICATE = "duplicate"
    ACCEPTED = "accepted"


# Default user-facing wording per status
STATUS_MESSAGES: Dict[ImportStatus, str] = {
    ImportStatus.VALID: "Recipe is ready to import",
    ImportStatus.UPDATE_REQUIRED: MSG_UPDATE_REQUIRED,
    ImportStatus.CORRUPTED: MSG_CORRUPTED,
    ImportStatus.DUPLICATE: MSG_DUPLICATE,
    ImportStatus.INVALID_FORMAT: MSG_INVALID,
    ImportStatus.SIZE_EXCEEDED: MSG_SIZE_LIMIT,
    ImportStatus.INTEGRITY_VIOLATION: MSG_BACKUP_DAMAGED,
    ImportStatus.MIGRATION_FAILED: "Could not upgrade this data to the current version",
}


@dataclass
class ImportOutcome:
    """Result of validating an inbound share link or backup snapshot.

    Attributes:
        status: Terminal classification
        stage: Stage at which the pipeline stopped
        message: User-facing message for the status
        recipe: Decoded recipe as received (share path)
        migrated: Recipe upgraded to the current schema version (share path)
        snapshot: Snapshot with records upgraded to the current version (backup path)
        share_version: Version the producer wrote the data under
        current_version: Schema version of the reading store
        data_loss: Fields may be lost if the data were used anyway
        legacy: Payload used the unversioned checksummed share format
        errors: Every problem found (integrity checks collect them all)
        failed_version: Schema version whose record migration failed
        recipe_id: Id the recipe was stored under, once imported

    Example:
        outcome = validate_share_token(link, current_version=3, load_existing=lambda: [])
        if outcome.is_valid:
            persist_recipe(database, convert_to_recipe_record(outcome.migrated))
    """

    status: ImportStatus
    stage: ImportStage
    message: str = ""
    recipe: Optional[Dict[str, Any]] = None
    migrated: Optional[Dict[str, Any]] = None
    snapshot: Optional[Dict[str, Any]] = None
    share_version: Optional[int] = None
    current_version: Optional[int] = None
    data_loss: bool = False
    legacy: bool = False
    errors: List[str] = field(default_factory=list)
    failed_version: Optional[int] = None
    recipe_id: Optional[str] = None

    def __post_init__(self) -> None:
        """Fill in the default message for the status."""
        if not self.message:
            self.message = STATUS_MESSAGES[self.status]

    @property
    def is_valid(self) -> bool:
        """True if the data can be imported."""
        return self.status == ImportStatus.VALID

    @classmethod
    def rejected(
        cls,
        status: ImportStatus,
        stage: ImportStage,
        message: str = "",
        **kwargs: Any,
    ) -> "ImportOutcome":
        """Build a rejected outcome."""
        return cls(status=status, stage=stage, message=message, **kwargs)
