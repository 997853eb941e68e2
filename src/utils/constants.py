"""
Constants and enumerations for the MyRecipeBox application.

This module defines all system-wide constants including:
- Application metadata
- Deep link and QR code wire limits
- Preference keys
- Backup file conventions
"""

from typing import Dict, List

# ============================================================================
# Application Metadata
# ============================================================================

APP_NAME = "MyRecipeBox"
APP_VERSION = "1.3.0"
DATABASE_FILENAME = "myrecipebox.db"

# ============================================================================
# Share Links
# ============================================================================

DEEP_LINK_SCHEME = "myrecipebox"
DEEP_LINK_PREFIX = f"{DEEP_LINK_SCHEME}://import/"
WEB_VIEW_URL = "https://myrecipebox.app/view/{recipe_id}"

# Share format version written by this build (matches the latest schema version)
CURRENT_SHARE_VERSION = 3

# Wire budgets
MAX_LINK_SIZE = 2048  # bytes, whole deep link
MAX_QR_SIZE = 2900  # characters, leaves margin below the ~2953 alphanumeric QR ceiling

# Imported text fields are capped at this length
MAX_TEXT_FIELD_LENGTH = 5000

# ============================================================================
# Recipe Fields
# ============================================================================

SOURCE_TYPE_URL = "url"
SOURCE_TYPE_MANUAL = "manual"

DEFAULT_RECIPE_TITLE = "Untitled Recipe"

# ============================================================================
# Preferences
# ============================================================================

PREF_THEME = "theme"
PREF_NOTIFICATIONS = "notifications"
PREF_AUTO_BACKUP = "autoBackup"
PREF_BACKUP_FREQUENCY = "backupFrequency"
PREF_LAST_BACKUP = "lastBackup"

# Preferences carried inside a backup snapshot
BACKUP_PREFERENCE_KEYS: List[str] = [
    PREF_THEME,
    PREF_NOTIFICATIONS,
    PREF_AUTO_BACKUP,
    PREF_BACKUP_FREQUENCY,
]

# Days between automatic backups per frequency setting
BACKUP_FREQUENCY_DAYS: Dict[str, int] = {
    "daily": 1,
    "weekly": 7,
}
DEFAULT_BACKUP_FREQUENCY = "weekly"

# ============================================================================
# Backups
# ============================================================================

# Legacy top-level "version" field written into every snapshot
BACKUP_FORMAT_VERSION = 1

MAX_BACKUPS = 5

BACKUP_FILENAME_PATTERN = r"backup_v(\d+)_(\d{4}-\d{2}-\d{2})_(\d+)\.json"
LEGACY_BACKUP_FILENAME_PATTERN = r"backup_(\d{4}-\d{2}-\d{2})_(\d+)\.json"

# ============================================================================
# User-facing messages
# ============================================================================

MSG_UPDATE_REQUIRED = "Update the app to import this recipe"
MSG_CORRUPTED = "Recipe data is corrupted. Ask the sender to reshare it."
MSG_INVALID = "Cannot read this recipe"
MSG_SIZE_LIMIT = "Link data exceeds size limit"
MSG_DUPLICATE = "You already have this recipe"
MSG_BACKUP_DAMAGED = "This backup is damaged"
