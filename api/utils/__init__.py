"""
Shared utility functions for activity monitor API services.
"""

from api.utils.datetime_utils import make_aware, utc_now, utc_today
from api.utils.db_paths import get_activity_db_path, get_sync_health_db_path

__all__ = [
    "make_aware",
    "utc_now",
    "utc_today",
    "get_activity_db_path",
    "get_sync_health_db_path",
]
