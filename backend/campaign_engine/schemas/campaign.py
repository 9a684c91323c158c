"""Campaign schemas."""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from campaign_engine.db.models.campaign import CampaignStatus, SendType


class StepConditions(BaseModel):
    """Engagement gates checked against the previous step."""
    require_open: bool = False
    require_click: bool = False
    require_no_reply: bool = False


class SequenceStep(BaseModel):
    """One step of a campaign sequence."""
    delay_hours: float = Field(0, ge=0)
    content_type: Literal["template", "catalog"] = "template"
    template_id: Optional[int] = None
    catalog_item_ids: List[int] = []
    subject: Optional[str] = None
    message: Optional[str] = None
    conditions: StepConditions = StepConditions()


class CampaignCreate(BaseModel):
    """Schema for creating a draft campaign."""
    owner_id: int
    name: str
    subject: Optional[str] = None
    template_id: Optional[int] = None
    send_type: SendType = SendType.SEQUENCE
    scheduled_at: Optional[datetime] = None
    steps: List[SequenceStep] = []
    contact_ids: List[int] = []
    repeat_days: int = Field(0, ge=0)
    max_cycles: int = Field(0, ge=0)
    track_opens: bool = True
    track_clicks: bool = True

    @field_validator("contact_ids")
    @classmethod
    def dedupe_contacts(cls, value: List[int]) -> List[int]:
        return list(dict.fromkeys(value))


class CampaignStats(BaseModel):
    """Aggregate campaign counters, serialized in camelCase."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_sent: int = 0
    delivered: int = 0
    opened: int = 0
    clicked: int = 0
    bounced: int = 0
    unsubscribed: int = 0


class CampaignResponse(BaseModel):
    """Schema for campaign response."""
    campaign_id: int
    owner_id: int
    name: str
    subject: Optional[str] = None
    template_id: Optional[int] = None
    status: CampaignStatus
    send_type: SendType
    scheduled_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    steps: List[Dict[str, Any]] = []
    repeat_days: int
    max_cycles: int
    track_opens: bool
    track_clicks: bool
    restart_count: int
    current_run: int
    stats: CampaignStats
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class CampaignRunResponse(BaseModel):
    """Archived run of a campaign."""
    run_id: int
    run_number: int
    started_at: Optional[datetime] = None
    ended_at: datetime
    final_status: Optional[CampaignStatus] = None
    stats: CampaignStats

    class Config:
        from_attributes = True


class RecalculateAllItem(BaseModel):
    campaign_id: int
    success: bool
    stats: Optional[CampaignStats] = None
    error: Optional[str] = None
