"""Legacy scheduled follow-up model kept for older campaigns."""
from enum import Enum as PyEnum
from sqlalchemy import Column, Integer, DateTime, Enum, Text, Boolean, ForeignKey, Index
from campaign_engine.db.base import Base


class FollowupStatus(str, PyEnum):
    """Legacy follow-up status."""
    SCHEDULED = "scheduled"
    SENT = "sent"
    CANCELLED = "cancelled"
    FAILED = "failed"


class Followup(Base):
    """Followup model - a single scheduled step in the pre-sequence format.

    Due rows are handed over to the Email model by the legacy sweep; ``email_id``
    links the delivery record created for the row.
    """

    __tablename__ = "followups"

    followup_id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_id = Column(Integer, ForeignKey('campaigns.campaign_id'), nullable=False)
    original_email_id = Column(Integer, ForeignKey('emails.email_id'), nullable=False)
    contact_id = Column(Integer, ForeignKey('contacts.contact_id'), nullable=False)
    template_id = Column(Integer, ForeignKey('templates.template_id'), nullable=False)
    owner_id = Column(Integer, nullable=False)
    sequence = Column(Integer, nullable=False)
    scheduled_at = Column(DateTime, nullable=False)
    sent_at = Column(DateTime, nullable=True)
    status = Column(Enum(FollowupStatus), default=FollowupStatus.SCHEDULED, nullable=False)
    message = Column(Text, nullable=True)

    require_open = Column(Boolean, default=False, nullable=False)
    require_click = Column(Boolean, default=False, nullable=False)
    require_no_reply = Column(Boolean, default=True, nullable=False)

    email_id = Column(Integer, ForeignKey('emails.email_id'), nullable=True)

    __table_args__ = (
        Index('idx_followup_scheduled_status', 'scheduled_at', 'status'),
    )

    def __repr__(self) -> str:
        return f"<Followup(followup_id={self.followup_id}, sequence={self.sequence}, status='{self.status}')>"
