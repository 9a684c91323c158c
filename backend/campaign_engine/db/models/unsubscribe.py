"""Unsubscribe model for opt-out requests."""
from sqlalchemy import Column, Integer, String, Text, ForeignKey, Index
from campaign_engine.db.base import Base


class Unsubscribe(Base):
    """Unsubscribe model - One row per opt-out request received."""

    __tablename__ = "unsubscribes"

    unsubscribe_id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False)
    contact_id = Column(Integer, ForeignKey('contacts.contact_id'), nullable=True)
    campaign_id = Column(Integer, ForeignKey('campaigns.campaign_id'), nullable=True)
    tracking_pixel_id = Column(String(64), nullable=False, unique=True)
    reason = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(1000), nullable=True)

    __table_args__ = (
        Index('idx_unsubscribe_email', 'email'),
    )

    def __repr__(self) -> str:
        return f"<Unsubscribe(unsubscribe_id={self.unsubscribe_id}, email='{self.email}')>"
