"""Tracking event log primitives shared by the dispatcher, ingestor and reconciler."""
import json
from datetime import datetime
from typing import Dict, Optional
from sqlalchemy.orm import Session

from campaign_engine.db.models.campaign import Campaign, STAT_FIELDS
from campaign_engine.db.models.tracking import EmailTracking, TrackingEvent, TrackingEventType, FIRST_SEEN_COLUMNS


def find_tracking(db: Session, tracking_pixel_id: str) -> Optional[EmailTracking]:
    if not tracking_pixel_id:
        return None
    return db.query(EmailTracking).filter(EmailTracking.tracking_pixel_id == tracking_pixel_id).first()


def event_exists(db: Session, tracking_id: int, event_type: TrackingEventType) -> bool:
    return db.query(TrackingEvent.event_id).filter(
        TrackingEvent.tracking_id == tracking_id,
        TrackingEvent.event_type == event_type,
    ).first() is not None


def append_event(
    db: Session,
    tracking: EmailTracking,
    event_type: TrackingEventType,
    data: Optional[Dict[str, str]] = None,
    occurred_at: Optional[datetime] = None,
) -> bool:
    """Append an event to a tracking record. Returns False when it was dropped.

    Every type except ``clicked`` is first-write-wins: the ``*_at`` stamp is
    claimed with a conditional update, and only the caller that claims it
    inserts the event row. The caller commits.
    """
    occurred_at = occurred_at or datetime.utcnow()

    column_name = FIRST_SEEN_COLUMNS.get(event_type)
    if column_name is not None:
        column = getattr(EmailTracking, column_name)
        claimed = db.query(EmailTracking).filter(
            EmailTracking.tracking_id == tracking.tracking_id,
            column.is_(None),
        ).update({column: occurred_at}, synchronize_session=False)
        if claimed != 1:
            return False

    db.add(TrackingEvent(
        tracking_id=tracking.tracking_id,
        event_type=event_type,
        occurred_at=occurred_at,
        data_json=json.dumps(data) if data else None,
    ))
    return True


def increment_campaign_stat(db: Session, campaign_id: int, field: str, amount: int = 1, run_number: Optional[int] = None) -> bool:
    """Atomically add ``amount`` to one cached counter.

    With ``run_number`` the increment only lands while that run is still the
    campaign's current run, so late events for archived runs leave the live
    stats alone.
    """
    if field not in STAT_FIELDS:
        raise ValueError(f"Unknown stat field: {field}")
    if amount <= 0:
        return False

    column = getattr(Campaign, f"stats_{field}")
    query = db.query(Campaign).filter(Campaign.campaign_id == campaign_id)
    if run_number is not None:
        query = query.filter(Campaign.current_run == run_number)
    return query.update({column: column + amount}, synchronize_session=False) == 1
