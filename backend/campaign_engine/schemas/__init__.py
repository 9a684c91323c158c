"""Pydantic schemas package."""
from campaign_engine.schemas.campaign import (
    CampaignCreate, CampaignResponse, CampaignRunResponse, CampaignStats, RecalculateAllItem, SequenceStep, StepConditions,
)
from campaign_engine.schemas.contact import ContactCreate, ContactResponse, ReplySignal
from campaign_engine.schemas.delivery import EmailRecordResponse, PollResult, SchedulerStatus
from campaign_engine.schemas.template import TemplateCreate, TemplateResponse, CatalogItemCreate, CatalogItemResponse
from campaign_engine.schemas.tracking import DeliveryCallback, DeliveryCallbackResult, TrackingDetail, RepairResult

__all__ = [
    "CampaignCreate", "CampaignResponse", "CampaignRunResponse", "CampaignStats", "RecalculateAllItem",
    "SequenceStep", "StepConditions",
    "ContactCreate", "ContactResponse", "ReplySignal",
    "EmailRecordResponse", "PollResult", "SchedulerStatus",
    "TemplateCreate", "TemplateResponse", "CatalogItemCreate", "CatalogItemResponse",
    "DeliveryCallback", "DeliveryCallbackResult", "TrackingDetail", "RepairResult",
]
