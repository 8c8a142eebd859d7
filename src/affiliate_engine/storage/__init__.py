"""Ledger store: SQLAlchemy models and session management."""

from affiliate_engine.storage.db import Database, db
from affiliate_engine.storage.models import Base, to_money, utcnow

__all__ = ["Base", "Database", "db", "to_money", "utcnow"]
