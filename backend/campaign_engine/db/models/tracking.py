"""EmailTracking model - append-only engagement log per delivery record."""
import json
from datetime import datetime
from enum import Enum as PyEnum
from typing import Dict
from sqlalchemy import Column, Integer, String, DateTime, Enum, Text, ForeignKey, Index
from sqlalchemy.orm import relationship
from campaign_engine.db.base import Base


class TrackingEventType(str, PyEnum):
    """Engagement event type."""
    SENT = "sent"
    DELIVERED = "delivered"
    OPENED = "opened"
    CLICKED = "clicked"
    BOUNCED = "bounced"
    UNSUBSCRIBED = "unsubscribed"


# Event types whose first occurrence is also stamped on the parent record.
# The stamp is set with a conditional update, which makes it the guard for
# "record at most once" under concurrent hits.
FIRST_SEEN_COLUMNS = {
    TrackingEventType.SENT: "sent_at",
    TrackingEventType.DELIVERED: "delivered_at",
    TrackingEventType.OPENED: "opened_at",
    TrackingEventType.BOUNCED: "bounced_at",
    TrackingEventType.UNSUBSCRIBED: "unsubscribed_at",
}


class EmailTracking(Base):
    """Tracking record keyed by an opaque, unguessable pixel id."""

    __tablename__ = "email_tracking"

    tracking_id = Column(Integer, primary_key=True, autoincrement=True)
    tracking_pixel_id = Column(String(64), nullable=False, unique=True, index=True)
    email_id = Column(Integer, ForeignKey('emails.email_id'), nullable=False, index=True)
    campaign_id = Column(Integer, ForeignKey('campaigns.campaign_id'), nullable=False, index=True)
    contact_id = Column(Integer, ForeignKey('contacts.contact_id'), nullable=False)
    run_number = Column(Integer, default=1, nullable=False)

    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(1000), nullable=True)

    sent_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    opened_at = Column(DateTime, nullable=True)
    bounced_at = Column(DateTime, nullable=True)
    unsubscribed_at = Column(DateTime, nullable=True)

    events = relationship(
        "TrackingEvent",
        order_by="TrackingEvent.event_id",
        back_populates="tracking",
        lazy="selectin",
    )

    def has_event(self, event_type: TrackingEventType) -> bool:
        return any(e.event_type == event_type for e in self.events)

    def first_event(self, event_type: TrackingEventType):
        matching = [e for e in self.events if e.event_type == event_type]
        return min(matching, key=lambda e: e.occurred_at) if matching else None

    def __repr__(self) -> str:
        return f"<EmailTracking(tracking_id={self.tracking_id}, email_id={self.email_id})>"


class TrackingEvent(Base):
    """One engagement event. Rows are only ever inserted."""

    __tablename__ = "tracking_events"

    event_id = Column(Integer, primary_key=True, autoincrement=True)
    tracking_id = Column(Integer, ForeignKey('email_tracking.tracking_id'), nullable=False)
    event_type = Column(Enum(TrackingEventType), nullable=False)
    occurred_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    data_json = Column(Text, nullable=True)

    tracking = relationship("EmailTracking", back_populates="events")

    __table_args__ = (
        Index('idx_tracking_event_type', 'tracking_id', 'event_type'),
    )

    @property
    def data(self) -> Dict[str, str]:
        if not self.data_json:
            return {}
        return json.loads(self.data_json)

    def __repr__(self) -> str:
        return f"<TrackingEvent(event_id={self.event_id}, type='{self.event_type}')>"
