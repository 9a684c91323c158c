"""Contact model for campaign recipients."""
from enum import Enum as PyEnum
from sqlalchemy import Column, Integer, String, DateTime, Enum, Index, UniqueConstraint
from campaign_engine.db.base import Base


class ContactStatus(str, PyEnum):
    """Deliverability status of a contact."""
    ACTIVE = "active"
    UNSUBSCRIBED = "unsubscribed"
    BOUNCED = "bounced"
    COMPLAINED = "complained"


SUPPRESSED_STATUSES = (ContactStatus.UNSUBSCRIBED, ContactStatus.BOUNCED, ContactStatus.COMPLAINED)


class Contact(Base):
    """Contact model - A recipient that campaigns can target."""

    __tablename__ = "contacts"

    contact_id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(Integer, nullable=False, index=True)
    email = Column(String(255), nullable=False, index=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    company = Column(String(255), nullable=True)
    status = Column(Enum(ContactStatus), default=ContactStatus.ACTIVE, nullable=False)

    # Set by the external reply-detection collaborator
    last_replied_at = Column(DateTime, nullable=True)
    last_engagement_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint('owner_id', 'email', name='uq_contact_owner_email'),
        Index('idx_contact_status', 'status'),
    )

    @property
    def is_suppressed(self) -> bool:
        return self.status in SUPPRESSED_STATUSES

    def __repr__(self) -> str:
        return f"<Contact(contact_id={self.contact_id}, email='{self.email}', status='{self.status}')>"
