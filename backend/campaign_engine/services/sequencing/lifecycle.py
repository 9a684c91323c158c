"""Campaign Lifecycle - create, start, pause, resume, restart and completion."""
import json
from datetime import datetime
from typing import Any, Dict, List, Optional
import structlog
from sqlalchemy import or_
from sqlalchemy.orm import Session

from campaign_engine.db.models.campaign import Campaign, CampaignContact, CampaignRun, CampaignStatus, SendType, STAT_FIELDS
from campaign_engine.db.models.contact import Contact
from campaign_engine.db.models.delivery import Email, EmailStatus, FailureReason, OUTSTANDING_STATUSES
from campaign_engine.services.sequencing.builder import audience, materialize_campaign
from campaign_engine.services.sequencing.content import CampaignConfigurationError
from campaign_engine.services.sequencing.locking import claim_campaign, lock_cutoff
from campaign_engine.services.sequencing.state_machine import (
    InvalidTransitionError,
    check_campaign_resume,
    check_campaign_transition,
    transition_campaign,
)

logger = structlog.get_logger()

RESTARTABLE_STATUSES = (CampaignStatus.SENT, CampaignStatus.COMPLETED, CampaignStatus.PAUSED)
RESUMABLE_TARGETS = (CampaignStatus.SCHEDULED, CampaignStatus.SENDING, CampaignStatus.SENT)
CAMPAIGN_LOCK_TIMEOUT_SECONDS = 300
CONTENT_TYPES = ("template", "catalog")


class CampaignNotFoundError(Exception):
    """Raised when a campaign id does not resolve."""

    def __init__(self, campaign_id: int):
        self.campaign_id = campaign_id
        super().__init__(f"Campaign {campaign_id} not found")


def get_campaign(db: Session, campaign_id: int) -> Campaign:
    campaign = db.get(Campaign, campaign_id)
    if not campaign:
        raise CampaignNotFoundError(campaign_id)
    return campaign


def validate_steps(steps: List[Dict[str, Any]]) -> None:
    """Reject step lists the dispatcher could never execute."""
    for index, step in enumerate(steps):
        delay = step.get("delay_hours") or 0
        if float(delay) < 0:
            raise CampaignConfigurationError(f"Step {index}: delay_hours must not be negative")

        content_type = step.get("content_type") or "template"
        if content_type not in CONTENT_TYPES:
            raise CampaignConfigurationError(f"Step {index}: unknown content_type '{content_type}'")
        if content_type == "catalog" and not step.get("catalog_item_ids"):
            raise CampaignConfigurationError(f"Step {index}: catalog step needs catalog_item_ids")

        conditions = step.get("conditions") or {}
        if index == 0 and (conditions.get("require_open") or conditions.get("require_click")):
            raise CampaignConfigurationError("The first step has no previous step to require an open or click on")


def create_campaign(
    db: Session,
    owner_id: int,
    name: str,
    steps: List[Dict[str, Any]],
    contact_ids: List[int],
    subject: Optional[str] = None,
    template_id: Optional[int] = None,
    send_type: SendType = SendType.SEQUENCE,
    scheduled_at: Optional[datetime] = None,
    repeat_days: int = 0,
    max_cycles: int = 0,
    track_opens: bool = True,
    track_clicks: bool = True,
) -> Campaign:
    """Create a draft campaign with its audience."""
    validate_steps(steps)
    if send_type == SendType.SCHEDULED and scheduled_at is None:
        raise CampaignConfigurationError("Scheduled campaigns need scheduled_at")

    campaign = Campaign(
        owner_id=owner_id,
        name=name,
        subject=subject,
        template_id=template_id,
        status=CampaignStatus.DRAFT,
        send_type=send_type,
        scheduled_at=scheduled_at,
        sequence_json=json.dumps(steps),
        repeat_days=repeat_days or 0,
        max_cycles=max_cycles or 0,
        track_opens=track_opens,
        track_clicks=track_clicks,
        current_run=1,
        restart_count=0,
    )
    db.add(campaign)
    db.flush()

    known = {c.contact_id for c in db.query(Contact.contact_id).filter(Contact.contact_id.in_(contact_ids)).all()} if contact_ids else set()
    for contact_id in dict.fromkeys(contact_ids):
        if contact_id in known:
            db.add(CampaignContact(campaign_id=campaign.campaign_id, contact_id=contact_id))

    db.commit()
    db.refresh(campaign)
    logger.info("Campaign created", campaign_id=campaign.campaign_id, steps=len(steps), contacts=len(known))
    return campaign


def start_campaign(db: Session, campaign_id: int, now: Optional[datetime] = None) -> Campaign:
    """Start a draft: defer to the activation sweep if scheduled later, else materialize now."""
    now = now or datetime.utcnow()
    campaign = get_campaign(db, campaign_id)

    if campaign.status != CampaignStatus.DRAFT:
        raise InvalidTransitionError("campaign", campaign.status, CampaignStatus.SENDING)
    if not audience(db, campaign):
        raise CampaignConfigurationError("Campaign has no contacts")

    campaign.started_at = now
    if campaign.scheduled_at and campaign.scheduled_at > now:
        transition_campaign(campaign, CampaignStatus.SCHEDULED)
        db.commit()
        logger.info("Campaign scheduled", campaign_id=campaign_id, scheduled_at=str(campaign.scheduled_at))
        return campaign

    try:
        materialize_campaign(db, campaign, now)
        transition_campaign(campaign, CampaignStatus.SENDING)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Campaign started", campaign_id=campaign_id)
    return campaign


def activate_scheduled_campaigns(db: Session, now: Optional[datetime] = None, lock_timeout_seconds: int = CAMPAIGN_LOCK_TIMEOUT_SECONDS) -> Dict[str, int]:
    """Materialize every scheduled campaign whose start time has passed.

    Each campaign is claimed through its processing lock first, so concurrent
    sweeps never materialize the same campaign twice.
    """
    now = now or datetime.utcnow()
    cutoff = lock_cutoff(now, lock_timeout_seconds)
    due_ids = [row[0] for row in db.query(Campaign.campaign_id).filter(
        Campaign.status == CampaignStatus.SCHEDULED,
        or_(Campaign.scheduled_at.is_(None), Campaign.scheduled_at <= now),
        or_(Campaign.processing_lock.is_(None), Campaign.processing_lock < cutoff),
    ).all()]

    activated = contended = failed = 0
    for campaign_id in due_ids:
        lock_value = claim_campaign(db, campaign_id, CampaignStatus.SCHEDULED, now, lock_timeout_seconds)
        if lock_value is None:
            contended += 1
            continue

        try:
            campaign = db.get(Campaign, campaign_id, populate_existing=True)
            materialize_campaign(db, campaign, now)
            transition_campaign(campaign, CampaignStatus.SENDING)
            campaign.started_at = campaign.started_at or now
            campaign.processing_lock = None
            db.commit()
            activated += 1
            logger.info("Scheduled campaign activated", campaign_id=campaign_id)
        except Exception as e:
            db.rollback()
            db.query(Campaign).filter(
                Campaign.campaign_id == campaign_id,
                Campaign.processing_lock == lock_value,
            ).update({Campaign.processing_lock: None}, synchronize_session=False)
            db.commit()
            failed += 1
            logger.error("Scheduled campaign activation failed", campaign_id=campaign_id, error=str(e))

    return {"activated": activated, "contended": contended, "failed": failed}


def pause_campaign(db: Session, campaign_id: int) -> Campaign:
    campaign = get_campaign(db, campaign_id)
    previous = campaign.status
    transition_campaign(campaign, CampaignStatus.PAUSED)
    campaign.paused_from = previous
    db.commit()
    logger.info("Campaign paused", campaign_id=campaign_id, paused_from=previous.value)
    return campaign


def resume_campaign(db: Session, campaign_id: int) -> Campaign:
    campaign = get_campaign(db, campaign_id)
    target = campaign.paused_from if campaign.paused_from in RESUMABLE_TARGETS else CampaignStatus.SENDING
    check_campaign_resume(campaign.status, target)
    transition_campaign(campaign, target)
    campaign.paused_from = None
    db.commit()
    logger.info("Campaign resumed", campaign_id=campaign_id, status=target.value)
    return campaign


def restart_campaign(db: Session, campaign_id: int, now: Optional[datetime] = None) -> Campaign:
    """Archive the current run and schedule a fresh one.

    Records of earlier runs are kept as they are. Still-queued records of the
    archived run are failed as superseded; in-flight sends are left to finish.
    """
    now = now or datetime.utcnow()
    campaign = get_campaign(db, campaign_id)
    if campaign.status not in RESTARTABLE_STATUSES:
        raise InvalidTransitionError("campaign", campaign.status, CampaignStatus.SCHEDULED)
    check_campaign_transition(campaign.status, CampaignStatus.SCHEDULED)

    db.add(CampaignRun(
        campaign_id=campaign.campaign_id,
        run_number=campaign.current_run,
        started_at=campaign.started_at,
        ended_at=now,
        final_status=campaign.status,
        stats_json=json.dumps(campaign.stats),
    ))

    superseded = db.query(Email).filter(
        Email.campaign_id == campaign.campaign_id,
        Email.run_number == campaign.current_run,
        Email.status == EmailStatus.QUEUED,
    ).update({
        Email.status: EmailStatus.FAILED,
        Email.failure_reason: FailureReason.SUPERSEDED,
        Email.version: Email.version + 1,
    }, synchronize_session=False)

    campaign.restart_count = (campaign.restart_count or 0) + 1
    campaign.current_run = (campaign.current_run or 1) + 1
    for field in STAT_FIELDS:
        setattr(campaign, f"stats_{field}", 0)
    transition_campaign(campaign, CampaignStatus.SCHEDULED)
    campaign.scheduled_at = now
    campaign.started_at = None
    campaign.sent_at = None
    campaign.completed_at = None
    campaign.paused_from = None
    db.commit()

    logger.info("Campaign restarted", campaign_id=campaign_id, run=campaign.current_run, superseded=superseded)
    return campaign


def _outstanding(db: Session, campaign: Campaign, initial_only: bool = False) -> int:
    query = db.query(Email.email_id).filter(
        Email.campaign_id == campaign.campaign_id,
        Email.run_number == campaign.current_run,
        Email.status.in_(OUTSTANDING_STATUSES),
    )
    if initial_only:
        query = query.filter(Email.step_index == 0, Email.cycle == 0, Email.legacy_followup_id.is_(None))
    return query.count()


def _move_if_unchanged(db: Session, campaign: Campaign, to_status: CampaignStatus, values: Dict[Any, Any]) -> bool:
    check_campaign_transition(campaign.status, to_status)
    update = dict(values)
    update[Campaign.status] = to_status
    moved = db.query(Campaign).filter(
        Campaign.campaign_id == campaign.campaign_id,
        Campaign.status == campaign.status,
    ).update(update, synchronize_session=False)
    db.commit()
    return moved == 1


def refresh_campaign_status(db: Session, campaign_id: int, now: Optional[datetime] = None) -> Optional[CampaignStatus]:
    """Move a dispatching campaign to sent/completed once its records allow it."""
    now = now or datetime.utcnow()
    campaign = db.get(Campaign, campaign_id, populate_existing=True)
    if not campaign or campaign.status not in (CampaignStatus.SENDING, CampaignStatus.SENT):
        return campaign.status if campaign else None

    if _outstanding(db, campaign) == 0:
        if _move_if_unchanged(db, campaign, CampaignStatus.COMPLETED, {Campaign.completed_at: now}):
            logger.info("Campaign completed", campaign_id=campaign_id)
            return CampaignStatus.COMPLETED
    elif campaign.status == CampaignStatus.SENDING and _outstanding(db, campaign, initial_only=True) == 0:
        if _move_if_unchanged(db, campaign, CampaignStatus.SENT, {Campaign.sent_at: now}):
            logger.info("Campaign initial sends finished", campaign_id=campaign_id)
            return CampaignStatus.SENT

    db.refresh(campaign)
    return campaign.status


def sweep_campaign_status(db: Session, now: Optional[datetime] = None) -> Dict[str, int]:
    now = now or datetime.utcnow()
    ids = [row[0] for row in db.query(Campaign.campaign_id).filter(
        Campaign.status.in_([CampaignStatus.SENDING, CampaignStatus.SENT])
    ).all()]
    changed = 0
    for campaign_id in ids:
        before = db.query(Campaign.status).filter(Campaign.campaign_id == campaign_id).scalar()
        if refresh_campaign_status(db, campaign_id, now) != before:
            changed += 1
    return {"checked": len(ids), "changed": changed}


def mark_contact_replied(db: Session, contact_id: int, replied_at: Optional[datetime] = None) -> Optional[Contact]:
    """Reply signal from the external reply-detection collaborator."""
    contact = db.get(Contact, contact_id)
    if not contact:
        return None
    contact.last_replied_at = replied_at or datetime.utcnow()
    db.commit()
    db.refresh(contact)
    logger.info("Contact reply recorded", contact_id=contact_id)
    return contact
