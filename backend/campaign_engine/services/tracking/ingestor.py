"""Engagement Tracking Ingestor - turns beacon hits and transport callbacks into events.

Beacon traffic is adversarial: mail scanners, link previewers and scripts hit
pixels and links without a human behind them. Hits classified as automated
get the same response as real ones but never touch tracking state.
"""
import base64
import ipaddress
import re
from datetime import datetime
from functools import lru_cache
from typing import Optional, Tuple
import structlog
from sqlalchemy.orm import Session

from campaign_engine.core.config import settings
from campaign_engine.db.models.contact import Contact, ContactStatus
from campaign_engine.db.models.delivery import Email, EmailStatus
from campaign_engine.db.models.tracking import EmailTracking, TrackingEventType
from campaign_engine.db.models.unsubscribe import Unsubscribe
from campaign_engine.services.notifications import broadcaster
from campaign_engine.services.sequencing.state_machine import can_transition_email
from campaign_engine.services.tracking.events import append_event, find_tracking, increment_campaign_stat

logger = structlog.get_logger()

# 1x1 transparent PNG
PIXEL_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)
PIXEL_MEDIA_TYPE = "image/png"
PIXEL_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


@lru_cache
def _bot_patterns(patterns: Tuple[str, ...]):
    return [re.compile(p, re.IGNORECASE) for p in patterns]


def is_loopback(ip_address: Optional[str]) -> bool:
    if not ip_address:
        return False
    try:
        return ipaddress.ip_address(ip_address.strip()).is_loopback
    except ValueError:
        return False


def is_bot_request(ip_address: Optional[str], user_agent: Optional[str]) -> bool:
    """Heuristic automation check: empty UA, known tool/bot UA, or loopback source."""
    if not user_agent or not user_agent.strip():
        return True
    if is_loopback(ip_address):
        return True
    return any(p.search(user_agent) for p in _bot_patterns(tuple(settings.BOT_USER_AGENT_PATTERNS)))


def _touch_contact(db: Session, contact_id: int, now: datetime) -> None:
    db.query(Contact).filter(Contact.contact_id == contact_id).update(
        {Contact.last_engagement_at: now}, synchronize_session=False
    )


def _remember_client(tracking: EmailTracking, ip_address: Optional[str], user_agent: Optional[str]) -> None:
    tracking.ip_address = ip_address
    tracking.user_agent = (user_agent or "")[:1000]


def record_open(db: Session, tracking_pixel_id: str, ip_address: Optional[str], user_agent: Optional[str], now: Optional[datetime] = None) -> bool:
    """Record the first legitimate open. Returns True only when an event was appended."""
    now = now or datetime.utcnow()

    if is_bot_request(ip_address, user_agent):
        logger.info("Bot open ignored", tracking_id=tracking_pixel_id, ip=ip_address, user_agent=user_agent)
        return False

    tracking = find_tracking(db, tracking_pixel_id)
    if not tracking:
        logger.debug("Open for unknown tracking id", tracking_id=tracking_pixel_id)
        return False

    data = {"ip_address": ip_address or "", "user_agent": user_agent or ""}
    if not append_event(db, tracking, TrackingEventType.OPENED, data, now):
        db.rollback()
        return False

    _remember_client(tracking, ip_address, user_agent)
    increment_campaign_stat(db, tracking.campaign_id, "opened", 1, tracking.run_number)
    _touch_contact(db, tracking.contact_id, now)
    db.commit()

    logger.info("Open recorded", tracking_id=tracking_pixel_id, campaign_id=tracking.campaign_id, email_id=tracking.email_id)
    broadcaster.publish("email_opened", {
        "campaign_id": tracking.campaign_id,
        "email_id": tracking.email_id,
        "contact_id": tracking.contact_id,
        "occurred_at": now.isoformat(),
    })
    return True


def record_click(db: Session, tracking_pixel_id: str, url: str, ip_address: Optional[str], user_agent: Optional[str], now: Optional[datetime] = None) -> bool:
    """Record a click. Every legitimate hit is appended and counted."""
    now = now or datetime.utcnow()

    if is_bot_request(ip_address, user_agent):
        logger.info("Bot click ignored", tracking_id=tracking_pixel_id, ip=ip_address, user_agent=user_agent)
        return False

    tracking = find_tracking(db, tracking_pixel_id)
    if not tracking:
        logger.debug("Click for unknown tracking id", tracking_id=tracking_pixel_id)
        return False

    data = {"url": url, "ip_address": ip_address or "", "user_agent": user_agent or ""}
    append_event(db, tracking, TrackingEventType.CLICKED, data, now)
    _remember_client(tracking, ip_address, user_agent)
    increment_campaign_stat(db, tracking.campaign_id, "clicked", 1, tracking.run_number)
    _touch_contact(db, tracking.contact_id, now)
    db.commit()

    logger.info("Click recorded", tracking_id=tracking_pixel_id, campaign_id=tracking.campaign_id, url=url)
    broadcaster.publish("email_clicked", {
        "campaign_id": tracking.campaign_id,
        "email_id": tracking.email_id,
        "contact_id": tracking.contact_id,
        "url": url,
        "occurred_at": now.isoformat(),
    })
    return True


def _move_email(db: Session, email_id: int, to_status: EmailStatus, **values) -> bool:
    email = db.get(Email, email_id)
    if not email or not can_transition_email(email.status, to_status):
        return False
    email.status = to_status
    for key, value in values.items():
        setattr(email, key, value)
    return True


def record_delivery(db: Session, tracking_pixel_id: str, now: Optional[datetime] = None) -> bool:
    """Transport confirmed delivery."""
    now = now or datetime.utcnow()
    tracking = find_tracking(db, tracking_pixel_id)
    if not tracking:
        logger.warning("Delivery callback for unknown tracking id", tracking_id=tracking_pixel_id)
        return False

    if not append_event(db, tracking, TrackingEventType.DELIVERED, None, now):
        db.rollback()
        return False

    _move_email(db, tracking.email_id, EmailStatus.DELIVERED, delivered_at=now)
    increment_campaign_stat(db, tracking.campaign_id, "delivered", 1, tracking.run_number)
    db.commit()
    logger.info("Delivery recorded", tracking_id=tracking_pixel_id, email_id=tracking.email_id)
    return True


def record_bounce(db: Session, tracking_pixel_id: str, reason: Optional[str] = None, now: Optional[datetime] = None) -> bool:
    """Transport reported a bounce; the contact is suppressed from further sends."""
    now = now or datetime.utcnow()
    tracking = find_tracking(db, tracking_pixel_id)
    if not tracking:
        logger.warning("Bounce callback for unknown tracking id", tracking_id=tracking_pixel_id)
        return False

    data = {"reason": reason} if reason else None
    if not append_event(db, tracking, TrackingEventType.BOUNCED, data, now):
        db.rollback()
        return False

    _move_email(db, tracking.email_id, EmailStatus.BOUNCED, bounce_reason=reason)
    db.query(Contact).filter(Contact.contact_id == tracking.contact_id).update(
        {Contact.status: ContactStatus.BOUNCED}, synchronize_session=False
    )
    increment_campaign_stat(db, tracking.campaign_id, "bounced", 1, tracking.run_number)
    db.commit()
    logger.info("Bounce recorded", tracking_id=tracking_pixel_id, email_id=tracking.email_id, reason=reason)
    return True


def record_unsubscribe(
    db: Session,
    tracking_pixel_id: str,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> bool:
    """Opt the contact out. Link scanners are filtered like opens."""
    now = now or datetime.utcnow()

    if is_bot_request(ip_address, user_agent):
        logger.info("Bot unsubscribe ignored", tracking_id=tracking_pixel_id, ip=ip_address)
        return False

    tracking = find_tracking(db, tracking_pixel_id)
    if not tracking:
        logger.debug("Unsubscribe for unknown tracking id", tracking_id=tracking_pixel_id)
        return False

    if not append_event(db, tracking, TrackingEventType.UNSUBSCRIBED, {"ip_address": ip_address or ""}, now):
        db.rollback()
        return False

    contact = db.get(Contact, tracking.contact_id)
    db.add(Unsubscribe(
        email=contact.email if contact else "",
        contact_id=tracking.contact_id,
        campaign_id=tracking.campaign_id,
        tracking_pixel_id=tracking_pixel_id,
        reason=reason,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:1000],
    ))
    if contact:
        contact.status = ContactStatus.UNSUBSCRIBED
    increment_campaign_stat(db, tracking.campaign_id, "unsubscribed", 1, tracking.run_number)
    db.commit()
    logger.info("Unsubscribe recorded", tracking_id=tracking_pixel_id, contact_id=tracking.contact_id)
    return True
