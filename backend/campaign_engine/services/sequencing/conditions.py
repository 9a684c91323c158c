"""Step condition gate, evaluated against the previous step's engagement."""
from typing import Optional, Tuple
from sqlalchemy.orm import Session

from campaign_engine.db.models.contact import Contact
from campaign_engine.db.models.delivery import Email
from campaign_engine.db.models.tracking import EmailTracking, TrackingEventType
from campaign_engine.services.tracking.events import event_exists


def has_replied_since(contact: Contact, previous: Email) -> bool:
    if contact.last_replied_at is None:
        return False
    reference = previous.sent_at or previous.scheduled_at
    return contact.last_replied_at >= reference


def evaluate_step_conditions(db: Session, email: Email, contact: Contact) -> Tuple[bool, Optional[str]]:
    """Return (passed, reason). A record without a previous step always passes."""
    if not (email.require_open or email.require_click or email.require_no_reply):
        return True, None

    previous = db.get(Email, email.parent_email_id) if email.parent_email_id else None
    if previous is None:
        return True, None

    tracking = db.query(EmailTracking).filter(EmailTracking.email_id == previous.email_id).first()

    if email.require_open and not (tracking and event_exists(db, tracking.tracking_id, TrackingEventType.OPENED)):
        return False, "previous step was not opened"
    if email.require_click and not (tracking and event_exists(db, tracking.tracking_id, TrackingEventType.CLICKED)):
        return False, "previous step was not clicked"
    if email.require_no_reply and has_replied_since(contact, previous):
        return False, "contact replied"
    return True, None
