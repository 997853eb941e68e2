"""
Recipe Box CLI Utility

Command-line interface for schema maintenance, recipe sharing and backups.
No UI required - designed for programmatic and testing use.

Usage Examples:
    # Bring the store to the latest schema version
    python -m src.utils.recipe_box_cli migrate

    # Show schema version, history and self-check
    python -m src.utils.recipe_box_cli schema-status

    # Roll back to schema version 1
    python -m src.utils.recipe_box_cli rollback 1

    # Print a share link (or QR text) for a stored recipe
    python -m src.utils.recipe_box_cli share <recipe-id>
    python -m src.utils.recipe_box_cli share <recipe-id> --qr

    # Check a link without importing it, then import it
    python -m src.utils.recipe_box_cli decode "myrecipebox://import/..."
    python -m src.utils.recipe_box_cli import "myrecipebox://import/..." --allow-duplicate

    # Write a backup, check it, restore it
    python -m src.utils.recipe_box_cli backup
    python -m src.utils.recipe_box_cli check-backup backups/backup_v3_2026-01-01_1767225600000.json
    python -m src.utils.recipe_box_cli restore backups/backup_v3_2026-01-01_1767225600000.json --mode replace
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from src.services import recipe_service
from src.services.backup_service import BackupService, RestoreMode, list_backups
from src.services.compatibility_service import describe_version_pair
from src.services.database import Database
from src.services.dto import ImportOutcome
from src.services.exceptions import ServiceError
from src.services.import_validation_service import ShareImportService
from src.services.logging_utils import configure_logging
from src.services.migration_service import MigrationLadder
from src.services.qr_code_service import generate_qr_code_data
from src.services.sharing_service import (
    Transport,
    encode_legacy_share_link,
    generate_share_message,
)
from src.utils.config import Config, load_config


# ============================================================================
# Schema commands
# ============================================================================


def migrate_cmd(ladder: MigrationLadder) -> int:
    """Apply pending migration steps."""
    print("Applying pending migrations...")
    results = ladder.apply_pending()

    if not results:
        print(f"Database is up to date (version {ladder.current_version()})")
        return 0

    for result in results:
        if result.success:
            print(f"  v{result.version}: applied ({result.execution_ms} ms)")
        else:
            print(f"  v{result.version}: FAILED - {result.error}")

    if not results[-1].success:
        print(f"ERROR: Migration stopped at version {results[-1].version}")
        return 1

    print(f"Database is at version {ladder.current_version()}")
    return 0


def rollback_cmd(ladder: MigrationLadder, target_version: int) -> int:
    """Roll back to a schema version."""
    print(f"Rolling back to version {target_version}...")
    rolled_back = ladder.rollback_to(target_version)
    print(f"Rolled back versions: {', '.join(str(v) for v in rolled_back)}")
    return 0


def schema_status_cmd(ladder: MigrationLadder) -> int:
    """Print schema version, applied steps and the structural self-check."""
    print(f"Current version: {ladder.current_version()}")
    print(f"Latest version:  {ladder.latest_version()}")

    history = ladder.migration_history()
    if history:
        print("\nApplied migrations:")
        for entry in history:
            print(f"  v{entry['version']} applied at {entry['applied_at']} by app {entry['app_version']}")

    validation = ladder.validate()
    if validation.valid:
        print("\nSchema check: OK")
        return 0

    print("\nSchema check: FAILED")
    for error in validation.errors:
        print(f"  - {error}")
    return 1


def repair_cmd(ladder: MigrationLadder) -> int:
    """Run the store's integrity check and rebuild its search index."""
    integrity = ladder.repair()
    print(f"Integrity check: {integrity}")
    return 0 if integrity == "ok" else 1


# ============================================================================
# Share commands
# ============================================================================


def share_cmd(
    database: Database, ladder: MigrationLadder, recipe_id: str, qr: bool = False, legacy: bool = False
) -> int:
    """Print a share link for a stored recipe, in the store's current format version."""
    recipe = recipe_service.get_recipe(database, recipe_id)
    version = ladder.current_version()
    transport = Transport.QR if qr else Transport.LINK

    if legacy:
        print(encode_legacy_share_link(recipe, version=version, transport=transport))
    elif qr:
        qr_data = generate_qr_code_data(recipe, version=version)
        print(qr_data.deep_link)
        print(f"\nError correction level: {qr_data.error_correction}")
    else:
        print(generate_share_message(recipe, version=version))
    return 0


def _print_outcome(outcome: ImportOutcome) -> None:
    print(f"Status: {outcome.status.value}")
    print(f"Message: {outcome.message}")
    if outcome.share_version is not None:
        print(f"Version: v{outcome.share_version} -> current v{outcome.current_version}")
    if outcome.recipe:
        print(f"Recipe: {outcome.recipe.get('title')}")
    for error in outcome.errors:
        print(f"  - {error}")


def decode_cmd(importer: ShareImportService, link: str, qr: bool = False) -> int:
    """Validate a share link without importing it."""
    outcome = importer.decode(link, Transport.QR if qr else Transport.LINK)
    _print_outcome(outcome)
    return 0 if outcome.is_valid else 1


def import_cmd(
    importer: ShareImportService, link: str, allow_duplicate: bool = False, qr: bool = False
) -> int:
    """Import a shared recipe."""
    outcome = importer.import_recipe(
        link, allow_duplicate=allow_duplicate, transport=Transport.QR if qr else Transport.LINK
    )
    _print_outcome(outcome)
    if outcome.recipe_id:
        print(f"Imported as {outcome.recipe_id}")
        return 0
    return 1


# ============================================================================
# Backup commands
# ============================================================================


def backup_cmd(service: BackupService) -> int:
    """Write a backup file."""
    path = service.create_backup()
    print(f"Backup written: {path}")
    return 0


def check_backup_cmd(service: BackupService, path: str) -> int:
    """Validate a backup file without restoring it."""
    outcome = service.prepare_restore(path)
    _print_outcome(outcome)
    if outcome.share_version is not None:
        print(f"Compatibility: {describe_version_pair(outcome.share_version, outcome.current_version)}")
    return 0 if outcome.is_valid else 1


def restore_cmd(service: BackupService, path: str, mode: str) -> int:
    """Restore a backup file."""
    print(f"Restoring {path} ({mode})...")
    result = service.restore(path, RestoreMode(mode))
    print(
        f"Restored {result.restored} recipes, skipped {result.skipped}, "
        f"deleted {result.deleted}, preferences {result.preferences_restored}"
    )
    return 0


def list_backups_cmd(backup_dir: Path) -> int:
    """List backup files, newest first."""
    backups = list_backups(backup_dir)
    if not backups:
        print(f"No backups in {backup_dir}")
        return 0

    for backup in backups:
        print(f"{backup['filename']}  v{backup['version']}  {backup['date']}  {backup['size']} bytes")
    return 0


# ============================================================================
# Entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Schema, sharing and backup utility for MyRecipeBox",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Bring the store up to date:
    python -m src.utils.recipe_box_cli migrate

  Share a recipe as a link or as QR text:
    python -m src.utils.recipe_box_cli share <recipe-id> [--qr] [--legacy]

  Import a shared recipe:
    python -m src.utils.recipe_box_cli import "myrecipebox://import/..."

  Back up and restore:
    python -m src.utils.recipe_box_cli backup
    python -m src.utils.recipe_box_cli restore <file> --mode replace
""",
    )
    parser.add_argument("--data-dir", help="Data directory (default: from RECIPE_BOX_DATA_DIR or environment)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output")

    # Create subparsers for different commands
    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser("migrate", help="Apply pending schema migrations")

    rollback_parser = subparsers.add_parser("rollback", help="Roll back to a schema version")
    rollback_parser.add_argument("version", type=int, help="Target schema version")

    subparsers.add_parser("schema-status", help="Show schema version and self-check")
    subparsers.add_parser("repair", help="Check integrity and rebuild the search index")

    share_parser = subparsers.add_parser("share", help="Print a share link for a recipe")
    share_parser.add_argument("recipe_id", help="Recipe id")
    share_parser.add_argument("--qr", action="store_true", help="Encode for QR transport")
    share_parser.add_argument("--legacy", action="store_true", help="Use the legacy checksummed format")

    decode_parser = subparsers.add_parser("decode", help="Validate a share link without importing")
    decode_parser.add_argument("link", help="Share link")
    decode_parser.add_argument("--qr", action="store_true", help="Link was read from a QR code")

    import_parser = subparsers.add_parser("import", help="Import a shared recipe")
    import_parser.add_argument("link", help="Share link")
    import_parser.add_argument(
        "--allow-duplicate",
        action="store_true",
        help="Import even if an identical recipe is already stored",
    )
    import_parser.add_argument("--qr", action="store_true", help="Link was read from a QR code")

    subparsers.add_parser("backup", help="Write a backup file")

    check_parser = subparsers.add_parser("check-backup", help="Validate a backup file")
    check_parser.add_argument("file", help="Backup file path")

    restore_parser = subparsers.add_parser("restore", help="Restore a backup file")
    restore_parser.add_argument("file", help="Backup file path")
    restore_parser.add_argument(
        "--mode",
        choices=[mode.value for mode in RestoreMode],
        default=RestoreMode.MERGE.value,
        help="Restore mode: 'merge' (default) keeps stored recipes, 'replace' deletes them first",
    )

    subparsers.add_parser("list-backups", help="List backup files")

    return parser


# Commands that must not migrate the store before running
SCHEMA_COMMANDS = {"migrate", "rollback", "schema-status", "repair"}


def main(argv: Optional[List[str]] = None, config: Optional[Config] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    if args.verbose:
        configure_logging(logging.DEBUG)

    if config is None:
        config = load_config()
        if args.data_dir:
            config = Config(config.environment, data_dir=Path(args.data_dir))

    if args.command == "list-backups":
        return list_backups_cmd(config.backup_dir)

    config.ensure_directories()
    database = Database(config.database_url)
    ladder = MigrationLadder(database)

    try:
        if args.command not in SCHEMA_COMMANDS:
            ladder.ensure_current()

        if args.command == "migrate":
            return migrate_cmd(ladder)
        elif args.command == "rollback":
            return rollback_cmd(ladder, args.version)
        elif args.command == "schema-status":
            return schema_status_cmd(ladder)
        elif args.command == "repair":
            return repair_cmd(ladder)
        elif args.command == "share":
            return share_cmd(database, ladder, args.recipe_id, qr=args.qr, legacy=args.legacy)
        elif args.command == "decode":
            return decode_cmd(ShareImportService(database, ladder), args.link, qr=args.qr)
        elif args.command == "import":
            return import_cmd(
                ShareImportService(database, ladder),
                args.link,
                allow_duplicate=args.allow_duplicate,
                qr=args.qr,
            )
        elif args.command == "backup":
            return backup_cmd(BackupService(database, ladder, config.backup_dir))
        elif args.command == "check-backup":
            return check_backup_cmd(BackupService(database, ladder, config.backup_dir), args.file)
        elif args.command == "restore":
            return restore_cmd(BackupService(database, ladder, config.backup_dir), args.file, args.mode)
        else:
            print(f"Unknown command: {args.command}")
            return 1
    except ServiceError as e:
        print(f"ERROR: {e}")
        return 1
    finally:
        database.dispose()


if __name__ == "__main__":
    sys.exit(main())
