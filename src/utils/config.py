"""
Configuration management for the MyRecipeBox application.

This module handles:
- Database path configuration
- Backup directory configuration
- Environment-specific configuration (development vs. production)

Configuration objects are built explicitly and handed to whatever needs them;
there is no process-wide configuration singleton.
"""

import os
from pathlib import Path
from typing import Optional

from .constants import APP_NAME, APP_VERSION, DATABASE_FILENAME

ENVIRONMENT_VAR = "RECIPE_BOX_ENV"
DATA_DIR_VAR = "RECIPE_BOX_DATA_DIR"


class Config:
    """
    Application configuration manager.

    Handles the settings the interchange core needs: where the database lives,
    where backup files are written, and which environment is active.
    """

    def __init__(self, environment: str = "production", data_dir: Optional[Path] = None):
        """
        Initialize configuration.

        Args:
            environment: Environment mode - 'production' or 'development'
            data_dir: Optional explicit data directory, overrides the environment default
        """
        if environment not in ("production", "development"):
            raise ValueError(f"Unknown environment: {environment}")

        self.environment = environment
        self._app_name = APP_NAME
        self._app_version = APP_VERSION

        if data_dir is not None:
            self._base_dir = Path(data_dir)
        elif environment == "development":
            self._base_dir = self._get_project_data_dir()
        else:
            self._base_dir = self._get_user_data_dir()

        self._database_path = self._base_dir / DATABASE_FILENAME
        self._backup_dir = self._base_dir / "backups"

    def _get_project_data_dir(self) -> Path:
        """
        Get the project's data directory for development.

        Returns:
            Path to project data/ directory
        """
        project_root = Path(__file__).parent.parent.parent
        return project_root / "data"

    def _get_user_data_dir(self) -> Path:
        """
        Get the user's data directory for production.

        Returns:
            Path to an app-specific folder under the user's home
        """
        if os.name == "nt":  # Windows
            base = Path(os.environ.get("APPDATA", Path.home()))
        else:
            base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))
        return base / "MyRecipeBox"

    def ensure_directories(self) -> None:
        """Create the data and backup directories if they don't exist."""
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._backup_dir.mkdir(parents=True, exist_ok=True)

    @property
    def app_name(self) -> str:
        """Application name."""
        return self._app_name

    @property
    def app_version(self) -> str:
        """Application version."""
        return self._app_version

    @property
    def data_dir(self) -> Path:
        """Base directory for application data."""
        return self._base_dir

    @property
    def database_path(self) -> Path:
        """Full path to the database file."""
        return self._database_path

    @property
    def database_url(self) -> str:
        """
        SQLAlchemy database URL.

        Returns:
            Database URL string for SQLAlchemy
        """
        db_path_str = str(self._database_path).replace("\\", "/")
        return f"sqlite:///{db_path_str}"

    @property
    def backup_dir(self) -> Path:
        """Directory holding backup snapshot files."""
        return self._backup_dir

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    def database_exists(self) -> bool:
        """
        Check if database file exists.

        Returns:
            True if database file exists, False otherwise
        """
        return self._database_path.exists()

    def __repr__(self) -> str:
        """String representation of config."""
        return (
            f"Config(environment='{self.environment}', " f"database_path='{self._database_path}')"
        )


def load_config(environment: Optional[str] = None) -> Config:
    """
    Build a configuration from the environment.

    Args:
        environment: Optional environment name. If None, uses RECIPE_BOX_ENV
                    or defaults to production.

    Returns:
        New Config instance
    """
    if environment is None:
        environment = os.environ.get(ENVIRONMENT_VAR, "production")
    data_dir = os.environ.get(DATA_DIR_VAR)
    return Config(environment, data_dir=Path(data_dir) if data_dir else None)
