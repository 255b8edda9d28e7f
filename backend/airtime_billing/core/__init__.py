"""Core module for configuration and utilities."""

from airtime_billing.core.config import settings
from airtime_billing.core.database import Base, get_db, get_session

__all__ = [
    "settings",
    "Base",
    "get_db",
    "get_session",
]
