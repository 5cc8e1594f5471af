"""Database module for the swap station engine."""

from swapstation.db.base import Base, TimestampMixin
from swapstation.db.engine import create_engine, create_tables, drop_tables, get_session

__all__ = ["Base", "TimestampMixin", "create_engine", "create_tables", "drop_tables", "get_session"]
