"""Email delivery record - one row per (campaign, contact, sequence position)."""
from enum import Enum as PyEnum
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum, Text, ForeignKey, Index, UniqueConstraint
from campaign_engine.db.base import Base


class EmailStatus(str, PyEnum):
    """Delivery record status."""
    QUEUED = "queued"
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    BOUNCED = "bounced"
    FAILED = "failed"


class FailureReason(str, PyEnum):
    """Why a record ended in ``failed``. Only TRANSPORT is ever retried."""
    TRANSPORT = "transport"
    CONDITION_NOT_MET = "condition_not_met"
    SUPPRESSED = "suppressed"
    MISSING_CONTACT = "missing_contact"
    SUPERSEDED = "superseded"


OUTSTANDING_STATUSES = (EmailStatus.QUEUED, EmailStatus.SENDING)
SENT_STATUSES = (EmailStatus.SENT, EmailStatus.DELIVERED)


class Email(Base):
    """Email model - the unit of dispatch.

    ``followup_sequence`` increases monotonically per (campaign, contact)
    across steps, repeat cycles and restarts, so the unique key below is
    never reused. ``step_index`` is the position inside the campaign's step
    list and ``cycle`` counts repeat cycles within a run.

    ``processing_lock``/``lock_token``/``version`` form the lease: a worker
    owns the record only while its token is stored and the lock is younger
    than the configured timeout.
    """

    __tablename__ = "emails"

    email_id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_id = Column(Integer, ForeignKey('campaigns.campaign_id'), nullable=False)
    contact_id = Column(Integer, ForeignKey('contacts.contact_id'), nullable=False)
    template_id = Column(Integer, ForeignKey('templates.template_id'), nullable=True)
    owner_id = Column(Integer, nullable=False)
    parent_email_id = Column(Integer, ForeignKey('emails.email_id'), nullable=True)

    subject = Column(String(500), nullable=True)
    html_content = Column(Text, nullable=True)
    text_content = Column(Text, nullable=True)
    message_id = Column(String(255), nullable=True)

    status = Column(Enum(EmailStatus), default=EmailStatus.QUEUED, nullable=False)
    failure_reason = Column(Enum(FailureReason), nullable=True)
    last_error = Column(Text, nullable=True)
    attempts = Column(Integer, default=0, nullable=False)

    scheduled_at = Column(DateTime, nullable=False)
    sent_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    bounce_reason = Column(Text, nullable=True)

    # Position in the sequence
    is_followup = Column(Boolean, default=False, nullable=False)
    followup_number = Column(Integer, default=0, nullable=False)
    followup_sequence = Column(Integer, default=0, nullable=False)
    step_index = Column(Integer, default=0, nullable=False)
    cycle = Column(Integer, default=0, nullable=False)
    run_number = Column(Integer, default=1, nullable=False)

    # Step conditions copied from the campaign when the record was created
    require_open = Column(Boolean, default=False, nullable=False)
    require_click = Column(Boolean, default=False, nullable=False)
    require_no_reply = Column(Boolean, default=False, nullable=False)

    legacy_followup_id = Column(Integer, nullable=True, index=True)  # followups.followup_id
    tracking_pixel_id = Column(String(64), nullable=True, unique=True)

    processing_lock = Column(DateTime, nullable=True)
    lock_token = Column(String(64), nullable=True)
    version = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint('campaign_id', 'contact_id', 'followup_sequence', name='uq_email_campaign_contact_sequence'),
        Index('idx_email_status_scheduled', 'status', 'scheduled_at'),
        Index('idx_email_campaign_contact', 'campaign_id', 'contact_id'),
        Index('idx_email_campaign_run', 'campaign_id', 'run_number'),
    )

    @property
    def step_conditions(self) -> dict:
        return {
            "require_open": self.require_open,
            "require_click": self.require_click,
            "require_no_reply": self.require_no_reply,
        }

    def __repr__(self) -> str:
        return (
            f"<Email(email_id={self.email_id}, campaign_id={self.campaign_id}, "
            f"contact_id={self.contact_id}, seq={self.followup_sequence}, status='{self.status}')>"
        )
