"""
Import Validation Service - decides whether inbound data can be imported.

Share links and backup snapshots go through the same staged pipeline, which
stops at the first failing stage:

1. Format  - decodable at all (scheme prefix, base64, JSON shape)
2. Size    - link within the transport ceiling / snapshot integrity and checksum
3. Version - compatibility policy; newer producers are blocked
4. Migration - older records upgraded to the reader version
5. Duplicate (share links only) - content match against stored recipes,
   read from the store only when a link gets this far

Every attempt ends in exactly one ImportOutcome. Nothing in this module
raises for bad input; a rejected import must be resubmitted from scratch.

Usage:
    from src.services.import_validation_service import ShareImportService

    importer = ShareImportService(database, ladder)
    outcome = importer.import_recipe(link)
    if outcome.status == ImportStatus.DUPLICATE:
        outcome = importer.import_recipe(link, allow_duplicate=True)
"""

import json
import logging
from typing import Any, Callable, Dict, Iterable, Optional

from src.services import recipe_service
from src.services.backup_service import (
    BackupMetadata,
    check_compatibility,
    migrate_backup_data,
    validate_integrity,
    verify_checksum,
)
from src.services.compatibility_service import compare
from src.services.database import Database
from src.services.dto import ImportOutcome, ImportStage, ImportStatus
from src.services.exceptions import MigrationFailed
from src.services.logging_utils import get_service_logger, log_operation
from src.services.migration_service import MigrationLadder
from src.services.record_migration_service import migrate_record
from src.services.sharing_service import Transport, convert_to_recipe_record, parse_share_link
from src.utils.constants import MSG_BACKUP_DAMAGED

logger = get_service_logger(__name__)


# ============================================================================
# Share link pipeline
# ============================================================================


def _content_key(recipe: Dict[str, Any]) -> tuple:
    return tuple(recipe.get(key) or "" for key in ("title", "ingredients", "instructions"))


def find_duplicate(
    recipe: Dict[str, Any], existing_recipes: Iterable[Dict[str, Any]]
) -> Optional[Dict[str, Any]]:
    """
    Find a stored recipe with the same title, ingredients and instructions.

    Ids are not compared, so two different recipes with identical text are
    reported as duplicates. Missing values compare equal to empty strings.

    Returns:
        The first matching stored recipe, or None
    """
    key = _content_key(recipe)
    for existing in existing_recipes:
        if _content_key(existing) == key:
            return existing
    return None


def validate_share_token(
    token: str,
    current_version: int,
    load_existing: Callable[[], Iterable[Dict[str, Any]]],
    transport: Transport = Transport.LINK,
) -> ImportOutcome:
    """
    Run the full pipeline on a share link.

    Args:
        token: Deep link as received
        current_version: Schema version of the receiving store
        load_existing: Returns the stored recipes for the duplicate check.
            Only called once a link reaches that stage.
        transport: LINK or QR; selects the size ceiling

    Returns:
        ImportOutcome. When valid, recipe is the payload as received and
        migrated is the recipe upgraded to current_version.
    """
    outcome = parse_share_link(token, transport)
    outcome.current_version = current_version
    if not outcome.is_valid:
        return outcome

    share_version = outcome.share_version
    decision = compare(share_version, current_version)
    outcome.data_loss = decision.data_loss

    if decision.requires_update:
        log_operation(
            logger,
            operation="validate_share_token",
            outcome="update_required",
            level=logging.WARNING,
            share_version=share_version,
            current_version=current_version,
        )
        return ImportOutcome.rejected(
            ImportStatus.UPDATE_REQUIRED,
            ImportStage.VERSION,
            recipe=outcome.recipe,
            share_version=share_version,
            current_version=current_version,
            data_loss=True,
            legacy=outcome.legacy,
            errors=[f"Recipe is format v{share_version}, this app reads up to v{current_version}"],
        )

    payload = {key: value for key, value in outcome.recipe.items() if key not in ("checksum", "version")}
    try:
        migrated = migrate_record(payload, share_version, current_version)
    except MigrationFailed as e:
        logger.error(f"Failed to migrate shared recipe from v{share_version}: {e}")
        return ImportOutcome.rejected(
            ImportStatus.MIGRATION_FAILED,
            ImportStage.MIGRATION,
            recipe=outcome.recipe,
            share_version=share_version,
            current_version=current_version,
            legacy=outcome.legacy,
            errors=[e.cause],
            failed_version=e.version,
        )

    duplicate = find_duplicate(outcome.recipe, load_existing())
    if duplicate is not None:
        log_operation(
            logger,
            operation="validate_share_token",
            outcome="duplicate",
            recipe_id=duplicate.get("id"),
        )
        return ImportOutcome.rejected(
            ImportStatus.DUPLICATE,
            ImportStage.DUPLICATE,
            recipe=outcome.recipe,
            migrated=migrated,
            share_version=share_version,
            current_version=current_version,
            legacy=outcome.legacy,
            errors=[f"Matches stored recipe {duplicate.get('id')}"],
        )

    log_operation(
        logger,
        operation="validate_share_token",
        outcome="valid",
        share_version=share_version,
        current_version=current_version,
    )
    return ImportOutcome(
        status=ImportStatus.VALID,
        stage=ImportStage.ACCEPTED,
        recipe=outcome.recipe,
        migrated=migrated,
        share_version=share_version,
        current_version=current_version,
        legacy=outcome.legacy,
    )


class ShareImportService:
    """
    Imports shared recipes into one store.

    Reads the store's schema version from the migration ladder and the stored
    recipes for the duplicate check on every call.
    """

    def __init__(self, database: Database, ladder: MigrationLadder):
        self.database = database
        self.ladder = ladder

    def decode(self, token: str, transport: Transport = Transport.LINK) -> ImportOutcome:
        """Validate a share link against the store without writing anything."""
        return validate_share_token(
            token,
            self.ladder.current_version(),
            lambda: recipe_service.fetch_all_recipes(self.database),
            transport,
        )

    def import_recipe(
        self,
        token: str,
        allow_duplicate: bool = False,
        transport: Transport = Transport.LINK,
    ) -> ImportOutcome:
        """
        Validate a share link and store the recipe under a fresh id.

        Args:
            token: Deep link as received
            allow_duplicate: Store the recipe even if its content matches a stored one
            transport: LINK or QR

        Returns:
            ImportOutcome; recipe_id is set when the recipe was stored
        """
        outcome = self.decode(token, transport)

        if outcome.status == ImportStatus.DUPLICATE and allow_duplicate:
            logger.info("Importing duplicate recipe at user request")
        elif not outcome.is_valid:
            return outcome

        record = convert_to_recipe_record(outcome.migrated)
        outcome.recipe_id = recipe_service.persist_recipe(self.database, record)

        log_operation(
            logger,
            operation="import_recipe",
            outcome="success",
            recipe_id=outcome.recipe_id,
            share_version=outcome.share_version,
        )
        return outcome


# ============================================================================
# Backup snapshot pipeline
# ============================================================================


def validate_backup_snapshot(snapshot: Any, current_version: int) -> ImportOutcome:
    """
    Run the pipeline on a parsed backup document.

    Args:
        snapshot: Parsed backup JSON
        current_version: Schema version of the receiving store

    Returns:
        ImportOutcome. When valid, snapshot holds a copy whose records are
        migrated to current_version.
    """
    integrity = validate_integrity(snapshot)
    if not integrity.valid:
        log_operation(
            logger,
            operation="validate_backup",
            outcome="integrity_violation",
            level=logging.WARNING,
            error="; ".join(integrity.errors),
        )
        return ImportOutcome.rejected(
            ImportStatus.INTEGRITY_VIOLATION,
            ImportStage.SIZE,
            current_version=current_version,
            errors=integrity.errors,
        )

    if not verify_checksum(snapshot):
        log_operation(
            logger,
            operation="validate_backup",
            outcome="corrupted",
            level=logging.WARNING,
        )
        return ImportOutcome.rejected(
            ImportStatus.CORRUPTED,
            ImportStage.SIZE,
            message=MSG_BACKUP_DAMAGED,
            current_version=current_version,
            errors=["Backup checksum does not match its contents"],
        )

    metadata = BackupMetadata.from_dict(snapshot["metadata"])
    decision = check_compatibility(metadata, current_version)

    if decision.requires_update:
        return ImportOutcome.rejected(
            ImportStatus.UPDATE_REQUIRED,
            ImportStage.VERSION,
            message=decision.message,
            share_version=metadata.schema,
            current_version=current_version,
            data_loss=decision.data_loss,
            errors=[decision.message],
        )

    try:
        migrated = migrate_backup_data(snapshot, metadata.schema, current_version)
    except MigrationFailed as e:
        logger.error(f"Failed to migrate backup from v{metadata.schema}: {e}")
        return ImportOutcome.rejected(
            ImportStatus.MIGRATION_FAILED,
            ImportStage.MIGRATION,
            share_version=metadata.schema,
            current_version=current_version,
            errors=[e.cause],
            failed_version=e.version,
        )

    log_operation(
        logger,
        operation="validate_backup",
        outcome="valid",
        share_version=metadata.schema,
        current_version=current_version,
        count=metadata.count,
    )
    return ImportOutcome(
        status=ImportStatus.VALID,
        stage=ImportStage.ACCEPTED,
        message=decision.message,
        snapshot=migrated,
        share_version=metadata.schema,
        current_version=current_version,
        data_loss=decision.data_loss,
    )


def validate_backup_text(text: str, current_version: int) -> ImportOutcome:
    """
    Parse backup file text and run the snapshot pipeline on it.

    Returns:
        ImportOutcome; unparseable text is corrupted, non-object JSON is invalid_format
    """
    try:
        snapshot = json.loads(text)
    except ValueError as e:
        return ImportOutcome.rejected(
            ImportStatus.CORRUPTED,
            ImportStage.FORMAT,
            message=MSG_BACKUP_DAMAGED,
            current_version=current_version,
            errors=[f"Backup is not valid JSON: {e}"],
        )

    if not isinstance(snapshot, dict):
        return ImportOutcome.rejected(
            ImportStatus.INVALID_FORMAT,
            ImportStage.FORMAT,
            current_version=current_version,
            errors=["Backup is not a JSON object"],
        )

    return validate_backup_snapshot(snapshot, current_version)
