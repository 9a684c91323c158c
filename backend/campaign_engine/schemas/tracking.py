"""Tracking schemas."""
from typing import List, Literal, Optional
from pydantic import BaseModel


class DeliveryCallback(BaseModel):
    """Delivery or bounce notification from the mail transport."""
    tracking_id: str
    event: Literal["delivered", "bounced"]
    reason: Optional[str] = None


class DeliveryCallbackResult(BaseModel):
    tracking_id: str
    event: str
    recorded: bool


class TrackingDetail(BaseModel):
    """Engagement summary of one delivery record."""
    email_id: int
    contact_id: int
    contact_email: Optional[str] = None
    followup_sequence: int
    step_index: int
    cycle: int
    run_number: int
    status: str
    scheduled_at: Optional[str] = None
    sent_at: Optional[str] = None
    delivered_at: Optional[str] = None
    opened_at: Optional[str] = None
    first_clicked_at: Optional[str] = None
    click_count: int = 0
    bounced_at: Optional[str] = None
    unsubscribed_at: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class RepairResult(BaseModel):
    fixed_count: int
    campaigns_updated: List[int]
