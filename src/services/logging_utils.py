"""Service layer logging.

Every service module logs through recipe_box.services.<module>. Operations
that end in a classification are logged with log_operation() so the
operation, its outcome and the versions involved travel as record
attributes:

    encode_share_link      success | size_exceeded
    parse_share_link       invalid_format | size_exceeded | corrupted
    validate_share_token   valid | update_required | duplicate
    import_recipe          success
    validate_backup        valid | integrity_violation | corrupted
    restore_snapshot       success
    restore_backup         <status of the refused backup>
    apply_migration        success | failed
    rollback_migration     success | failed

Rejections are logged at WARNING, failed migration steps at ERROR and
everything else at INFO.
"""

import logging
from typing import Any

ROOT_LOGGER_NAME = "recipe_box"


def get_service_logger(name: str) -> logging.Logger:
    """
    Get the logger for a service module.

    >>> get_service_logger("src.services.sharing_service").name
    'recipe_box.services.sharing_service'
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.services.{name.split('.')[-1]}")


def log_operation(
    logger: logging.Logger,
    operation: str,
    outcome: str,
    level: int = logging.INFO,
    **context: Any,
) -> None:
    """
    Log "<operation>: <outcome>" with the outcome and context as record attributes.

    Args:
        logger: Service logger
        operation: Operation name from the table above
        outcome: Outcome or ImportStatus value
        level: Log level
        **context: recipe_id, share_version, current_version, schema_version,
            size, limit, error and the like
    """
    extra = {"operation": operation, "outcome": outcome, **context}
    logger.log(level, f"{operation}: {outcome}", extra=extra)


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Install a single stream handler on the application logger.

    Later calls only adjust the level.

    Returns:
        The application root logger
    """
    app_logger = logging.getLogger(ROOT_LOGGER_NAME)
    app_logger.setLevel(level)
    if not app_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
        app_logger.addHandler(handler)
    return app_logger
