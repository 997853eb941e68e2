"""Services package - Business logic layer for MyRecipeBox.

This package contains the service modules behind recipe sharing, import
validation, schema migration and backups.

Architecture:
- Services: Functions and small service classes organized by concern
- Store: An explicit Database handle passed into every service
- Transactions: Managed via Database.session_scope() / connection_scope()
- Exceptions: Consistent error handling via ServiceError hierarchy
- Import results: ImportOutcome values instead of exceptions for bad input

Service Modules:
- recipe_service: Recipe record persistence
- preferences_service: Named preference strings and the auto-backup schedule
- migration_service: Schema migration ladder
- record_migration_service: Field-level upgrade of recipe records
- compatibility_service: Producer/consumer version policy
- sharing_service: Share link encoding and parsing
- qr_code_service: Share links for QR transport
- import_validation_service: Import pipeline for share links and backups
- backup_service: Versioned backup snapshots and restore

Infrastructure:
- database: Store handle, engine configuration
- exceptions: Custom exception classes for service layer errors
- logging_utils: Service logger naming and structured outcome logging
- dto: Import outcome value types
"""

# Service modules
from . import (
    database,
    recipe_service,
    preferences_service,
    migration_service,
    record_migration_service,
    compatibility_service,
    sharing_service,
    qr_code_service,
    backup_service,
    import_validation_service,
)

from .database import Database
from .dto import ImportOutcome, ImportStage, ImportStatus
from .migration_service import MigrationLadder, MigrationStep, StepResult
from .sharing_service import Transport
from .import_validation_service import ShareImportService
from .backup_service import BackupService, RestoreMode, RestoreResult

# Exceptions
from .exceptions import (
    ServiceError,
    RecipeNotFound,
    ValidationError,
    ShareEncodeError,
    PayloadTooLarge,
    SchemaVersionError,
    MigrationFailed,
    RollbackError,
    IntegrityViolation,
    BackupFileError,
)

__all__ = [
    # Modules
    "database",
    "recipe_service",
    "preferences_service",
    "migration_service",
    "record_migration_service",
    "compatibility_service",
    "sharing_service",
    "qr_code_service",
    "backup_service",
    "import_validation_service",
    # Classes
    "Database",
    "ImportOutcome",
    "ImportStage",
    "ImportStatus",
    "MigrationLadder",
    "MigrationStep",
    "StepResult",
    "Transport",
    "ShareImportService",
    "BackupService",
    "RestoreMode",
    "RestoreResult",
    # Exceptions
    "ServiceError",
    "RecipeNotFound",
    "ValidationError",
    "ShareEncodeError",
    "PayloadTooLarge",
    "SchemaVersionError",
    "MigrationFailed",
    "RollbackError",
    "IntegrityViolation",
    "BackupFileError",
]
