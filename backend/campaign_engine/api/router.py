"""API router configuration."""
from fastapi import APIRouter
from campaign_engine.api.endpoints import campaigns, contacts, templates, tracking, dispatch

api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(campaigns.router)
api_router.include_router(contacts.router)
api_router.include_router(templates.router)
api_router.include_router(templates.catalog_router)
api_router.include_router(tracking.router)
api_router.include_router(dispatch.router)
