"""
Database Module
===============

Provides database session management and base model.
"""

from affirm.db.base import Base
from affirm.db.session import get_db, init_db, close_db, upsert_insert

__all__ = ["Base", "get_db", "init_db", "close_db", "upsert_insert"]
