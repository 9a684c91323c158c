"""API endpoints package."""
from campaign_engine.api.endpoints import campaigns, contacts, templates, tracking, dispatch

__all__ = ["campaigns", "contacts", "templates", "tracking", "dispatch"]
