"""Delivery record builder - materializes steps into Email + EmailTracking rows."""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from campaign_engine.db.models.campaign import Campaign, CampaignContact, SendType
from campaign_engine.db.models.contact import Contact
from campaign_engine.db.models.delivery import Email, EmailStatus
from campaign_engine.db.models.tracking import EmailTracking
from campaign_engine.services.sequencing.content import resolve_step_content
from campaign_engine.services.tracking.links import generate_tracking_id

logger = structlog.get_logger()


def campaign_steps(campaign: Campaign) -> List[Dict[str, Any]]:
    """Step list; a campaign without steps is a single send of its default template."""
    return campaign.steps or [{"delay_hours": 0}]


def step_delay(step: Dict[str, Any]) -> timedelta:
    return timedelta(hours=float(step.get("delay_hours") or 0))


def next_followup_sequence(db: Session, campaign_id: int, contact_id: int) -> int:
    current = db.query(func.max(Email.followup_sequence)).filter(
        Email.campaign_id == campaign_id,
        Email.contact_id == contact_id,
    ).scalar()
    return 0 if current is None else current + 1


def step_record_exists(db: Session, campaign: Campaign, contact_id: int, step_index: int, cycle: int) -> bool:
    return db.query(Email.email_id).filter(
        Email.campaign_id == campaign.campaign_id,
        Email.contact_id == contact_id,
        Email.run_number == campaign.current_run,
        Email.cycle == cycle,
        Email.step_index == step_index,
        Email.legacy_followup_id.is_(None),
    ).first() is not None


def create_delivery_record(
    db: Session,
    campaign: Campaign,
    contact: Contact,
    step: Dict[str, Any],
    step_index: int,
    scheduled_at: datetime,
    cycle: int = 0,
    parent: Optional[Email] = None,
    legacy_followup_id: Optional[int] = None,
) -> Email:
    """Create a queued Email and its tracking record (caller commits).

    The next free ``followup_sequence`` is taken for the pair, so numbering
    keeps increasing across steps, cycles and runs.
    """
    content = resolve_step_content(db, campaign, step)
    conditions = step.get("conditions") or {}
    sequence = next_followup_sequence(db, campaign.campaign_id, contact.contact_id)
    tracking_pixel_id = generate_tracking_id()

    email = Email(
        campaign_id=campaign.campaign_id,
        contact_id=contact.contact_id,
        template_id=content["template_id"],
        owner_id=campaign.owner_id,
        parent_email_id=parent.email_id if parent else None,
        subject=content["subject"],
        html_content=content["html_content"],
        text_content=content["text_content"],
        status=EmailStatus.QUEUED,
        attempts=0,
        scheduled_at=scheduled_at,
        is_followup=step_index > 0 or cycle > 0 or legacy_followup_id is not None,
        followup_number=step_index,
        followup_sequence=sequence,
        step_index=step_index,
        cycle=cycle,
        run_number=campaign.current_run,
        require_open=bool(conditions.get("require_open")),
        require_click=bool(conditions.get("require_click")),
        require_no_reply=bool(conditions.get("require_no_reply")),
        legacy_followup_id=legacy_followup_id,
        tracking_pixel_id=tracking_pixel_id,
        version=0,
    )
    db.add(email)
    db.flush()

    db.add(EmailTracking(
        tracking_pixel_id=tracking_pixel_id,
        email_id=email.email_id,
        campaign_id=campaign.campaign_id,
        contact_id=contact.contact_id,
        run_number=campaign.current_run,
    ))
    db.flush()
    return email


def audience(db: Session, campaign: Campaign) -> List[Contact]:
    return (
        db.query(Contact)
        .join(CampaignContact, CampaignContact.contact_id == Contact.contact_id)
        .filter(CampaignContact.campaign_id == campaign.campaign_id)
        .order_by(Contact.contact_id)
        .all()
    )


def materialize_campaign(db: Session, campaign: Campaign, now: datetime) -> Dict[str, int]:
    """Create first-step records of the current run for every eligible contact (caller commits)."""
    first_step = campaign_steps(campaign)[0]
    scheduled_at = now + step_delay(first_step)
    created = skipped = suppressed = 0

    for contact in audience(db, campaign):
        if contact.is_suppressed:
            suppressed += 1
            continue
        if step_record_exists(db, campaign, contact.contact_id, 0, 0):
            skipped += 1
            continue
        create_delivery_record(db, campaign, contact, first_step, 0, scheduled_at)
        created += 1

    logger.info("Campaign materialized", campaign_id=campaign.campaign_id, run=campaign.current_run,
                created=created, skipped=skipped, suppressed=suppressed)
    return {"created": created, "skipped": skipped, "suppressed": suppressed}


def schedule_next(db: Session, campaign: Campaign, sent_email: Email, contact: Contact, sent_at: datetime) -> Optional[Email]:
    """After a successful send, create the following step or the next repeat cycle.

    Records of archived runs and legacy hand-overs never advance. An immediate
    campaign is a one-shot send: only its first step goes out.
    """
    if sent_email.legacy_followup_id is not None or sent_email.run_number != campaign.current_run:
        return None
    if campaign.send_type == SendType.IMMEDIATE:
        return None
    if contact.is_suppressed:
        return None

    steps = campaign_steps(campaign)
    next_index = sent_email.step_index + 1
    if next_index < len(steps):
        if step_record_exists(db, campaign, contact.contact_id, next_index, sent_email.cycle):
            return None
        step = steps[next_index]
        return create_delivery_record(
            db, campaign, contact, step, next_index,
            scheduled_at=sent_at + step_delay(step),
            cycle=sent_email.cycle,
            parent=sent_email,
        )

    return schedule_repeat_cycle(db, campaign, sent_email, contact, sent_at)


def schedule_repeat_cycle(db: Session, campaign: Campaign, last_email: Email, contact: Contact, sent_at: datetime) -> Optional[Email]:
    if not campaign.repeat_days or campaign.repeat_days <= 0:
        return None
    next_cycle = last_email.cycle + 1
    if campaign.max_cycles and next_cycle >= campaign.max_cycles:
        return None
    if step_record_exists(db, campaign, contact.contact_id, 0, next_cycle):
        return None

    first_step = campaign_steps(campaign)[0]
    email = create_delivery_record(
        db, campaign, contact, first_step, 0,
        scheduled_at=sent_at + timedelta(days=campaign.repeat_days),
        cycle=next_cycle,
        parent=last_email,
    )
    logger.info("Repeat cycle scheduled", campaign_id=campaign.campaign_id,
                contact_id=contact.contact_id, cycle=next_cycle)
    return email
