"""Database connection and session management."""

from .connection import DatabaseManager, db_manager

__all__ = ["DatabaseManager", "db_manager"]
