"""Service layer exception classes for MyRecipeBox.

This module defines the custom exceptions used by the service layer to provide
consistent error handling across the application.

Decoding a share link or a backup never raises: those paths classify their
input into an ImportOutcome (see import_validation_service). The exceptions
below cover the operations that cannot return a classification - encoding an
oversized recipe, running or rolling back the migration ladder, and reading
backup files.

Exception Hierarchy:
    ServiceError (base)
    ├── RecipeNotFound
    ├── ValidationError
    ├── ShareEncodeError
    │   └── PayloadTooLarge
    ├── SchemaVersionError
    ├── MigrationFailed
    ├── RollbackError
    ├── IntegrityViolation
    └── BackupFileError
"""

from typing import List, Optional


class ServiceError(Exception):
    """Base exception for all service layer errors.

    All service-specific exceptions should inherit from this class.
    """

    pass


class RecipeNotFound(ServiceError):
    """Raised when a recipe cannot be found by ID."""

    def __init__(self, recipe_id: str):
        self.recipe_id = recipe_id
        super().__init__(f"Recipe with ID {recipe_id} not found")


class ValidationError(ServiceError):
    """Raised when data validation fails."""

    def __init__(self, errors: list):
        self.errors = errors
        error_msg = "; ".join(errors)
        super().__init__(f"Validation failed: {error_msg}")


class ShareEncodeError(ServiceError):
    """Raised when a recipe cannot be encoded into a share token."""

    pass


class PayloadTooLarge(ShareEncodeError):
    """Raised when an encoded share link exceeds the transport's wire budget.

    Args:
        size: Encoded size in bytes
        limit: Budget of the transport the link was encoded for

    Example:
        >>> raise PayloadTooLarge(3100, 2048)
        PayloadTooLarge: Recipe data too large for sharing (3100 > 2048 bytes)
    """

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Recipe data too large for sharing ({size} > {limit} bytes)")


class SchemaVersionError(ServiceError):
    """Raised when data was written by a newer build than this one.

    A store whose recorded schema version is above the highest step this
    build knows is untrusted until the app is upgraded. Restoring a backup
    from a newer schema raises it too, with the compatibility message.
    """

    def __init__(self, current_version: int, latest_version: int, message: Optional[str] = None):
        self.current_version = current_version
        self.latest_version = latest_version
        super().__init__(
            message
            or f"Store schema version {current_version} is newer than this app supports "
            f"({latest_version}). Update the app."
        )


class MigrationFailed(ServiceError):
    """Raised when a migration step or a record transform fails.

    A failed step leaves the store at the last fully-applied version.

    Args:
        version: Version of the step or record transform that failed
        cause: Underlying error message
        results: Step results collected up to and including the failure
    """

    def __init__(self, version: int, cause: str, results: Optional[list] = None):
        self.version = version
        self.cause = cause
        self.results = results or []
        super().__init__(f"Migration {version} failed: {cause}")


class RollbackError(ServiceError):
    """Raised when a rollback cannot be started or cannot be completed.

    Args:
        version: Step version that blocked the rollback (None if the target was invalid)
        message: Description of the problem
        rolled_back: Versions already rolled back before the failure
    """

    def __init__(self, version: Optional[int], message: str, rolled_back: Optional[List[int]] = None):
        self.version = version
        self.rolled_back = rolled_back or []
        super().__init__(message)


class IntegrityViolation(ServiceError):
    """Raised when a backup snapshot fails its structural integrity checks."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__(f"Backup validation failed: {', '.join(errors)}")


class BackupFileError(ServiceError):
    """Raised when a backup file cannot be read or written."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"{path}: {message}")
