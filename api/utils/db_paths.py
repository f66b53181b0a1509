"""
Database path utilities for activity monitor services.
"""
from pathlib import Path

from config.settings import settings


def get_activity_db_path() -> str:
    """
    Get the path to the entity/ledger database.

    Creates the parent directory if it doesn't exist.

    Returns:
        Absolute path to the activity.db file
    """
    db_path = Path(settings.activity_db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return str(db_path.resolve())


def get_sync_health_db_path() -> Path:
    """Get the path to the run history database, creating its directory."""
    db_path = Path(settings.sync_health_db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return db_path
