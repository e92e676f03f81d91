"""Shared route dependencies."""
from formdesk.core.config import get_settings
from formdesk.core.security import get_current_user_id, get_optional_user_id
from formdesk.db.database import get_db

__all__ = [
    "get_db",
    "get_settings",
    "get_current_user_id",
    "get_optional_user_id",
]
