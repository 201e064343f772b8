"""
Declarative base and timestamp helper shared by all models.
"""
from datetime import datetime, timezone

from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite DateTime columns store naive values)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
