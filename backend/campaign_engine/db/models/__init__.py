"""Database models package."""
from campaign_engine.db.models.template import Template, CatalogItem
from campaign_engine.db.models.contact import Contact, ContactStatus
from campaign_engine.db.models.campaign import Campaign, CampaignContact, CampaignRun, CampaignStatus, SendType
from campaign_engine.db.models.delivery import Email, EmailStatus, FailureReason
from campaign_engine.db.models.tracking import EmailTracking, TrackingEvent, TrackingEventType
from campaign_engine.db.models.followup import Followup, FollowupStatus
from campaign_engine.db.models.unsubscribe import Unsubscribe

__all__ = [
    "Template",
    "CatalogItem",
    "Contact",
    "ContactStatus",
    "Campaign",
    "CampaignContact",
    "CampaignRun",
    "CampaignStatus",
    "SendType",
    "Email",
    "EmailStatus",
    "FailureReason",
    "EmailTracking",
    "TrackingEvent",
    "TrackingEventType",
    "Followup",
    "FollowupStatus",
    "Unsubscribe",
]
