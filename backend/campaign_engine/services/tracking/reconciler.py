"""Stats Reconciler - rebuilds cached campaign counters from the raw rows."""
from collections import Counter
from datetime import timedelta
from typing import Any, Dict, List, Optional
import structlog
from sqlalchemy import func, exists, and_
from sqlalchemy.orm import Session

from campaign_engine.db.models.campaign import Campaign, STAT_FIELDS
from campaign_engine.db.models.delivery import Email, SENT_STATUSES
from campaign_engine.db.models.tracking import EmailTracking, TrackingEvent, TrackingEventType
from campaign_engine.services.sequencing.lifecycle import CampaignNotFoundError
from campaign_engine.services.tracking.events import append_event, increment_campaign_stat

logger = structlog.get_logger()

_EVENT_STAT_FIELDS = {
    TrackingEventType.DELIVERED: "delivered",
    TrackingEventType.OPENED: "opened",
    TrackingEventType.CLICKED: "clicked",
    TrackingEventType.BOUNCED: "bounced",
    TrackingEventType.UNSUBSCRIBED: "unsubscribed",
}


def compute_campaign_stats(db: Session, campaign: Campaign) -> Dict[str, int]:
    """Ground-truth stats for the campaign's current run.

    ``total_sent`` counts delivery records; every other field counts tracking
    records holding at least one event of that type.
    """
    stats = {field: 0 for field in STAT_FIELDS}

    stats["total_sent"] = db.query(func.count(Email.email_id)).filter(
        Email.campaign_id == campaign.campaign_id,
        Email.run_number == campaign.current_run,
        Email.status.in_(SENT_STATUSES),
    ).scalar() or 0

    rows = (
        db.query(TrackingEvent.event_type, func.count(func.distinct(TrackingEvent.tracking_id)))
        .join(EmailTracking, EmailTracking.tracking_id == TrackingEvent.tracking_id)
        .filter(
            EmailTracking.campaign_id == campaign.campaign_id,
            EmailTracking.run_number == campaign.current_run,
        )
        .group_by(TrackingEvent.event_type)
        .all()
    )
    for event_type, count in rows:
        field = _EVENT_STAT_FIELDS.get(event_type)
        if field:
            stats[field] = count
    return stats


def recalculate_campaign_stats(db: Session, campaign_id: int) -> Dict[str, int]:
    """Overwrite the cached counters with recomputed values."""
    campaign = db.get(Campaign, campaign_id)
    if not campaign:
        raise CampaignNotFoundError(campaign_id)

    stats = compute_campaign_stats(db, campaign)
    db.query(Campaign).filter(Campaign.campaign_id == campaign_id).update(
        {getattr(Campaign, f"stats_{field}"): value for field, value in stats.items()},
        synchronize_session=False,
    )
    db.commit()
    db.refresh(campaign)

    logger.info("Campaign stats recalculated", campaign_id=campaign_id, **stats)
    return stats


def recalculate_all_campaigns(db: Session) -> List[Dict[str, Any]]:
    """Recalculate every campaign; one failure does not stop the rest."""
    results = []
    campaign_ids = [row[0] for row in db.query(Campaign.campaign_id).order_by(Campaign.campaign_id).all()]
    for campaign_id in campaign_ids:
        try:
            stats = recalculate_campaign_stats(db, campaign_id)
            results.append({"campaign_id": campaign_id, "success": True, "stats": stats})
        except Exception as e:
            db.rollback()
            logger.error("Stats recalculation failed", campaign_id=campaign_id, error=str(e))
            results.append({"campaign_id": campaign_id, "success": False, "error": str(e)})

    logger.info("Bulk recalculation complete", campaigns=len(results),
                failed=sum(1 for r in results if not r["success"]))
    return results


def repair_missing_opens(db: Session, campaign_id: Optional[int] = None) -> Dict[str, Any]:
    """Infer an open for every tracking record that has clicks but no open.

    The inferred event sits one second before the first click and carries
    ``source=inferred_from_click``. Safe to run repeatedly.
    """
    has_click = exists().where(and_(
        TrackingEvent.tracking_id == EmailTracking.tracking_id,
        TrackingEvent.event_type == TrackingEventType.CLICKED,
    ))
    has_open = exists().where(and_(
        TrackingEvent.tracking_id == EmailTracking.tracking_id,
        TrackingEvent.event_type == TrackingEventType.OPENED,
    ))

    query = db.query(EmailTracking).filter(has_click, ~has_open)
    if campaign_id is not None:
        query = query.filter(EmailTracking.campaign_id == campaign_id)

    repaired = Counter()
    for tracking in query.all():
        first_click = (
            db.query(TrackingEvent)
            .filter(TrackingEvent.tracking_id == tracking.tracking_id,
                    TrackingEvent.event_type == TrackingEventType.CLICKED)
            .order_by(TrackingEvent.occurred_at, TrackingEvent.event_id)
            .first()
        )
        click_data = first_click.data
        data = {
            "source": "inferred_from_click",
            "ip_address": click_data.get("ip_address", ""),
            "user_agent": click_data.get("user_agent", ""),
        }
        inferred_at = first_click.occurred_at - timedelta(seconds=1)
        if append_event(db, tracking, TrackingEventType.OPENED, data, inferred_at):
            repaired[(tracking.campaign_id, tracking.run_number)] += 1

    for (owner_campaign_id, run_number), count in repaired.items():
        increment_campaign_stat(db, owner_campaign_id, "opened", count, run_number)
    db.commit()

    fixed = sum(repaired.values())
    campaigns = sorted({key[0] for key in repaired})
    logger.info("Missing opens repaired", fixed_count=fixed, campaigns=campaigns)
    return {"fixed_count": fixed, "campaigns_updated": campaigns}
