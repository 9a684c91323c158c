"""Delivery record and dispatcher schemas."""
from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel
from campaign_engine.db.models.delivery import EmailStatus, FailureReason


class EmailRecordResponse(BaseModel):
    """One delivery record of a campaign sequence."""
    email_id: int
    campaign_id: int
    contact_id: int
    parent_email_id: Optional[int] = None
    subject: Optional[str] = None
    status: EmailStatus
    failure_reason: Optional[FailureReason] = None
    last_error: Optional[str] = None
    attempts: int
    scheduled_at: datetime
    sent_at: Optional[datetime] = None
    followup_sequence: int
    step_index: int
    cycle: int
    run_number: int
    require_open: bool
    require_click: bool
    require_no_reply: bool

    class Config:
        from_attributes = True


class PollResult(BaseModel):
    """Outcome counts of one dispatch cycle."""
    candidates: int
    outcomes: Dict[str, int]


class SchedulerJob(BaseModel):
    id: str
    name: str
    next_run: Optional[str] = None


class SchedulerStatus(BaseModel):
    running: bool
    jobs: List[SchedulerJob]
