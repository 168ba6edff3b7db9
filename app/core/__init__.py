"""Core app configuration and database."""

from app.core.config import get_settings
from app.core.database import create_store_engine, get_db

__all__ = ["get_settings", "create_store_engine", "get_db"]
