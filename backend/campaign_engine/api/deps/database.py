"""Database session dependency."""
from campaign_engine.db.base import get_db

__all__ = ["get_db"]
