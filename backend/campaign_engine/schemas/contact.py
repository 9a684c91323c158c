"""Contact schemas."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, EmailStr
from campaign_engine.db.models.contact import ContactStatus


class ContactBase(BaseModel):
    """Base contact schema."""
    owner_id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None


class ContactCreate(ContactBase):
    """Schema for creating a contact."""
    email: EmailStr


class ContactResponse(ContactBase):
    """Schema for contact response."""
    contact_id: int
    email: str  # str, not EmailStr, so older rows never fail serialization
    status: ContactStatus
    last_replied_at: Optional[datetime] = None
    last_engagement_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ReplySignal(BaseModel):
    """Reply detected by the inbound mail collaborator."""
    replied_at: Optional[datetime] = None
