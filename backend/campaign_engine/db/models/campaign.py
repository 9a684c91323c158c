"""Campaign model - sequence definition, run state and cached aggregate stats."""
import json
from datetime import datetime
from enum import Enum as PyEnum
from typing import Any, Dict, List
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum, Text, ForeignKey, Index, UniqueConstraint
from campaign_engine.db.base import Base


class CampaignStatus(str, PyEnum):
    """Campaign run status."""
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    SENDING = "sending"
    SENT = "sent"
    PAUSED = "paused"
    COMPLETED = "completed"


class SendType(str, PyEnum):
    """How the campaign is released.

    IMMEDIATE sends the first step once with no follow-ups, SCHEDULED requires a
    start time, SEQUENCE runs every step and any repeat cycles.
    """
    IMMEDIATE = "immediate"
    SCHEDULED = "scheduled"
    SEQUENCE = "sequence"


STAT_FIELDS = ("total_sent", "delivered", "opened", "clicked", "bounced", "unsubscribed")


class Campaign(Base):
    """Campaign model - multi-step outreach plan.

    ``sequence_json`` holds the ordered step list and is treated as immutable
    once the campaign has started; delivery records copy what they need from
    it at creation time. The ``stats_*`` columns are a cache rebuilt by the
    reconciler from Email and EmailTracking rows.
    """

    __tablename__ = "campaigns"

    campaign_id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    subject = Column(String(500), nullable=True)
    template_id = Column(Integer, ForeignKey('templates.template_id'), nullable=True)

    status = Column(Enum(CampaignStatus), default=CampaignStatus.DRAFT, nullable=False)
    send_type = Column(Enum(SendType), default=SendType.SEQUENCE, nullable=False)
    scheduled_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    paused_from = Column(Enum(CampaignStatus), nullable=True)

    sequence_json = Column(Text, nullable=False, default="[]")
    repeat_days = Column(Integer, default=0, nullable=False)
    max_cycles = Column(Integer, default=0, nullable=False)  # 0 = repeat until paused
    track_opens = Column(Boolean, default=True, nullable=False)
    track_clicks = Column(Boolean, default=True, nullable=False)

    processing_lock = Column(DateTime, nullable=True)
    restart_count = Column(Integer, default=0, nullable=False)
    current_run = Column(Integer, default=1, nullable=False)

    stats_total_sent = Column(Integer, default=0, nullable=False)
    stats_delivered = Column(Integer, default=0, nullable=False)
    stats_opened = Column(Integer, default=0, nullable=False)
    stats_clicked = Column(Integer, default=0, nullable=False)
    stats_bounced = Column(Integer, default=0, nullable=False)
    stats_unsubscribed = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index('idx_campaign_status', 'status'),
        Index('idx_campaign_scheduled_at', 'scheduled_at'),
    )

    @property
    def steps(self) -> List[Dict[str, Any]]:
        try:
            return json.loads(self.sequence_json or "[]")
        except (json.JSONDecodeError, TypeError):
            return []

    @property
    def stats(self) -> Dict[str, int]:
        return {field: getattr(self, f"stats_{field}") or 0 for field in STAT_FIELDS}

    def __repr__(self) -> str:
        return f"<Campaign(campaign_id={self.campaign_id}, name='{self.name}', status='{self.status}')>"


class CampaignContact(Base):
    """Campaign audience membership."""

    __tablename__ = "campaign_contacts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_id = Column(Integer, ForeignKey('campaigns.campaign_id'), nullable=False)
    contact_id = Column(Integer, ForeignKey('contacts.contact_id'), nullable=False)

    __table_args__ = (
        UniqueConstraint('campaign_id', 'contact_id', name='uq_campaign_contact'),
    )


class CampaignRun(Base):
    """Run history ledger - one row per archived campaign run."""

    __tablename__ = "campaign_runs"

    run_id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_id = Column(Integer, ForeignKey('campaigns.campaign_id'), nullable=False, index=True)
    run_number = Column(Integer, nullable=False)
    started_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    final_status = Column(Enum(CampaignStatus), nullable=True)
    stats_json = Column(Text, nullable=False, default="{}")

    __table_args__ = (
        UniqueConstraint('campaign_id', 'run_number', name='uq_campaign_run'),
    )

    @property
    def stats(self) -> Dict[str, int]:
        return json.loads(self.stats_json or "{}")
