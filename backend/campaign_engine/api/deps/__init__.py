"""API dependencies package."""
from campaign_engine.api.deps.database import get_db
from campaign_engine.api.deps.dispatch import get_sequence_dispatcher

__all__ = ["get_db", "get_sequence_dispatcher"]
