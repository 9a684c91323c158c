"""Legacy follow-up hand-over.

Older campaigns stored each scheduled step as a Followup row. Due rows are
converted into queued Email records so a single dispatcher sends everything;
the Followup then mirrors the terminal outcome of its Email.
"""
from datetime import datetime
from typing import Dict, Optional
import structlog
from sqlalchemy.orm import Session

from campaign_engine.db.models.campaign import Campaign
from campaign_engine.db.models.contact import Contact
from campaign_engine.db.models.delivery import Email, EmailStatus, FailureReason
from campaign_engine.db.models.followup import Followup, FollowupStatus
from campaign_engine.services.sequencing.builder import create_delivery_record
from campaign_engine.services.sequencing.state_machine import DISPATCHABLE_CAMPAIGN_STATUSES

logger = structlog.get_logger()


def _legacy_step(followup: Followup) -> Dict:
    return {
        "content_type": "template",
        "template_id": followup.template_id,
        "message": followup.message,
        "conditions": {
            "require_open": followup.require_open,
            "require_click": followup.require_click,
            "require_no_reply": followup.require_no_reply,
        },
    }


def process_legacy_followups(db: Session, now: Optional[datetime] = None, limit: int = 500) -> Dict[str, int]:
    """Hand due Followup rows to the Email model."""
    now = now or datetime.utcnow()
    due = (
        db.query(Followup)
        .filter(
            Followup.status == FollowupStatus.SCHEDULED,
            Followup.scheduled_at <= now,
            Followup.email_id.is_(None),
        )
        .order_by(Followup.scheduled_at)
        .limit(limit)
        .all()
    )

    handed_over = waiting = failed = 0
    for followup in due:
        campaign = db.get(Campaign, followup.campaign_id)
        if not campaign or campaign.status not in DISPATCHABLE_CAMPAIGN_STATUSES:
            waiting += 1
            continue

        contact = db.get(Contact, followup.contact_id)
        original = db.get(Email, followup.original_email_id)
        if contact is None or original is None:
            followup.status = FollowupStatus.FAILED
            db.commit()
            failed += 1
            logger.warning("Legacy followup references missing rows", followup_id=followup.followup_id)
            continue

        try:
            email = create_delivery_record(
                db, campaign, contact, _legacy_step(followup),
                step_index=original.step_index,
                scheduled_at=followup.scheduled_at,
                cycle=original.cycle,
                parent=original,
                legacy_followup_id=followup.followup_id,
            )
            email.followup_number = followup.sequence
            followup.email_id = email.email_id
            db.commit()
            handed_over += 1
        except Exception as e:
            db.rollback()
            failed += 1
            logger.error("Legacy followup hand-over failed", followup_id=followup.followup_id, error=str(e))

    if due:
        logger.info("Legacy followups processed", handed_over=handed_over, waiting=waiting, failed=failed)
    return {"handed_over": handed_over, "waiting": waiting, "failed": failed}


def sync_legacy_followup(db: Session, email: Email, status: EmailStatus, failure_reason: Optional[FailureReason] = None, sent_at: Optional[datetime] = None) -> None:
    """Mirror a terminal Email outcome onto its Followup row (caller commits)."""
    if email.legacy_followup_id is None:
        return

    if status == EmailStatus.SENT:
        values = {Followup.status: FollowupStatus.SENT, Followup.sent_at: sent_at}
    elif failure_reason == FailureReason.CONDITION_NOT_MET:
        values = {Followup.status: FollowupStatus.CANCELLED}
    elif status == EmailStatus.FAILED:
        values = {Followup.status: FollowupStatus.FAILED}
    else:
        return

    db.query(Followup).filter(Followup.followup_id == email.legacy_followup_id).update(values, synchronize_session=False)
