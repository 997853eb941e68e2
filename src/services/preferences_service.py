"""
Preferences Service - named preference strings stored in the database.

Preferences live in the user_preferences table so that a backup snapshot can
carry them and a restore can put them back. Values are always strings; an
empty value reads back as None.

Usage:
    from src.services.preferences_service import read_preference, write_preference

    write_preference(database, "theme", "dark")
    theme = read_preference(database, "theme")

    if should_auto_backup(database, now_ms()):
        ...
"""

from typing import Dict, Iterable, Optional

from sqlalchemy.orm import Session

from src.models import UserPreference
from src.services.database import Database
from src.services.logging_utils import get_service_logger
from src.utils.constants import (
    BACKUP_FREQUENCY_DAYS,
    DEFAULT_BACKUP_FREQUENCY,
    PREF_AUTO_BACKUP,
    PREF_BACKUP_FREQUENCY,
    PREF_LAST_BACKUP,
)

logger = get_service_logger(__name__)

MS_PER_DAY = 24 * 60 * 60 * 1000


# ============================================================================
# Read / write
# ============================================================================


def read_preference(database: Database, key: str, session: Optional[Session] = None) -> Optional[str]:
    """
    Get a single preference value.

    Args:
        database: Store handle
        key: Preference key
        session: Optional database session. If None, creates a new session.

    Returns:
        Preference value, or None if unset or empty
    """

    def _impl(sess: Session) -> Optional[str]:
        preference = sess.get(UserPreference, key)
        if preference is None:
            return None
        return preference.value or None

    if session is not None:
        return _impl(session)
    with database.session_scope() as sess:
        return _impl(sess)


def write_preference(
    database: Database, key: str, value: str, session: Optional[Session] = None
) -> None:
    """
    Set a single preference value, replacing any existing one.

    Args:
        database: Store handle
        key: Preference key
        value: Preference value
        session: Optional database session. If None, creates a new session.
    """

    def _impl(sess: Session) -> None:
        preference = sess.get(UserPreference, key)
        if preference is None:
            sess.add(UserPreference(key=key, value=value))
        else:
            preference.value = value
        sess.flush()

    if session is not None:
        _impl(session)
        return
    with database.session_scope() as sess:
        _impl(sess)


def get_all_preferences(
    database: Database,
    keys: Optional[Iterable[str]] = None,
    session: Optional[Session] = None,
) -> Dict[str, str]:
    """
    Get preferences as a dictionary.

    Args:
        database: Store handle
        keys: Keys to read; all keys when None. Unset or empty values are left out.
        session: Optional database session. If None, creates a new session.

    Returns:
        Dictionary of key -> value
    """

    def _impl(sess: Session) -> Dict[str, str]:
        query = sess.query(UserPreference)
        if keys is not None:
            query = query.filter(UserPreference.key.in_(list(keys)))
        return {pref.key: pref.value for pref in query.all() if pref.value}

    if session is not None:
        return _impl(session)
    with database.session_scope() as sess:
        return _impl(sess)


# ============================================================================
# Automatic backup schedule
# ============================================================================


def get_last_backup_time(database: Database) -> Optional[int]:
    """
    Get when the last backup was written.

    Returns:
        Epoch milliseconds, or None if no backup has been recorded
    """
    value = read_preference(database, PREF_LAST_BACKUP)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring invalid {PREF_LAST_BACKUP} preference: {value!r}")
        return None


def record_last_backup(database: Database, timestamp_ms: int) -> None:
    """Record when a backup was written."""
    write_preference(database, PREF_LAST_BACKUP, str(timestamp_ms))


def should_auto_backup(database: Database, now_ms: int) -> bool:
    """
    Decide whether an automatic backup is due.

    A backup is due when automatic backups are switched on ("true"), a previous
    backup has been recorded, and at least the configured frequency (daily or
    weekly, default weekly) has passed since it.

    Args:
        database: Store handle
        now_ms: Current time in epoch milliseconds

    Returns:
        True if a backup should be written now
    """
    if read_preference(database, PREF_AUTO_BACKUP) != "true":
        return False

    last_backup = get_last_backup_time(database)
    if last_backup is None:
        return False

    frequency = read_preference(database, PREF_BACKUP_FREQUENCY) or DEFAULT_BACKUP_FREQUENCY
    interval_days = BACKUP_FREQUENCY_DAYS.get(frequency)
    if interval_days is None:
        logger.warning(f"Unknown backup frequency: {frequency}")
        return False

    days_since = (now_ms - last_backup) / MS_PER_DAY
    return days_since >= interval_days
