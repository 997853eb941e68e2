"""
Record migration service - upgrades plain recipe records between schema versions.

Used by both the share import path (one record) and the backup restore path
(a whole snapshot's record list). Each schema version may register a
transform that fills in the fields that version introduced; versions with no
registered transform pass records through unchanged.

Usage:
    from src.services.record_migration_service import migrate_records

    upgraded = migrate_records(snapshot["database"], from_version=1, to_version=3)
"""

import copy
from typing import Any, Callable, Dict, List, Optional

from src.services.exceptions import MigrationFailed
from src.services.logging_utils import get_service_logger
from src.utils.constants import SOURCE_TYPE_MANUAL, SOURCE_TYPE_URL

logger = get_service_logger(__name__)

RecordTransform = Callable[[Dict[str, Any]], Dict[str, Any]]


def _to_v2(record: Dict[str, Any]) -> Dict[str, Any]:
    """Add cooking_method and source_type."""
    record["cooking_method"] = record.get("cooking_method") or None
    if not record.get("source_type"):
        record["source_type"] = SOURCE_TYPE_URL if record.get("source_url") else SOURCE_TYPE_MANUAL
    return record


def _to_v3(record: Dict[str, Any]) -> Dict[str, Any]:
    """Add nutrition."""
    record["nutrition"] = record.get("nutrition") or None
    return record


# Keyed by the version a transform upgrades a record to
RECORD_TRANSFORMS: Dict[int, RecordTransform] = {
    2: _to_v2,
    3: _to_v3,
}


def migrate_record(
    record: Dict[str, Any],
    from_version: int,
    to_version: int,
    transforms: Optional[Dict[int, RecordTransform]] = None,
) -> Dict[str, Any]:
    """
    Upgrade one record from from_version to to_version.

    Every version in (from_version, to_version] is visited in ascending order.
    A version without a transform leaves the record as it is.

    Args:
        record: Record to upgrade (not modified)
        from_version: Schema version the record was produced under
        to_version: Schema version to upgrade to
        transforms: Transform table, defaults to RECORD_TRANSFORMS

    Returns:
        Upgraded copy of the record

    Raises:
        MigrationFailed: If a transform fails; carries the version it upgrades to
    """
    table = RECORD_TRANSFORMS if transforms is None else transforms
    migrated = copy.deepcopy(record)

    for version in range(from_version + 1, to_version + 1):
        transform = table.get(version)
        if transform is None:
            logger.debug(f"No record migration defined for version {version}")
            continue
        try:
            migrated = transform(migrated)
        except Exception as e:
            raise MigrationFailed(version, str(e)) from e

    return migrated


def migrate_records(
    records: List[Dict[str, Any]],
    from_version: int,
    to_version: int,
    transforms: Optional[Dict[int, RecordTransform]] = None,
) -> List[Dict[str, Any]]:
    """
    Upgrade a list of records from from_version to to_version.

    Args:
        records: Records to upgrade (not modified)
        from_version: Schema version the records were produced under
        to_version: Schema version to upgrade to
        transforms: Transform table, defaults to RECORD_TRANSFORMS

    Returns:
        Upgraded copies, in the input order

    Raises:
        MigrationFailed: If a transform fails for any record
    """
    if from_version < to_version:
        logger.info(f"Migrating {len(records)} records from v{from_version} to v{to_version}")
    return [migrate_record(record, from_version, to_version, transforms) for record in records]
