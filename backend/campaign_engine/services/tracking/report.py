"""Tracking Report - per-record engagement details and CSV export."""
import csv
import io
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session

from campaign_engine.db.models.contact import Contact
from campaign_engine.db.models.delivery import Email
from campaign_engine.db.models.tracking import EmailTracking, TrackingEventType

EXPORT_FIELDS = [
    "email_id", "contact_id", "contact_email", "followup_sequence", "step_index", "cycle",
    "run_number", "status", "scheduled_at", "sent_at", "delivered_at", "opened_at",
    "first_clicked_at", "click_count", "bounced_at", "unsubscribed_at", "ip_address", "user_agent",
]


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def build_tracking_details(db: Session, campaign_id: int, run_number: Optional[int] = None) -> List[Dict[str, Any]]:
    query = (
        db.query(Email, EmailTracking, Contact)
        .outerjoin(EmailTracking, EmailTracking.email_id == Email.email_id)
        .outerjoin(Contact, Contact.contact_id == Email.contact_id)
        .filter(Email.campaign_id == campaign_id)
    )
    if run_number is not None:
        query = query.filter(Email.run_number == run_number)

    data = []
    for email, tracking, contact in query.order_by(Email.contact_id, Email.followup_sequence).all():
        clicks = [e for e in tracking.events if e.event_type == TrackingEventType.CLICKED] if tracking else []
        first_click = min((e.occurred_at for e in clicks), default=None)
        data.append({
            "email_id": email.email_id,
            "contact_id": email.contact_id,
            "contact_email": contact.email if contact else None,
            "followup_sequence": email.followup_sequence,
            "step_index": email.step_index,
            "cycle": email.cycle,
            "run_number": email.run_number,
            "status": email.status.value,
            "scheduled_at": _iso(email.scheduled_at),
            "sent_at": _iso(email.sent_at),
            "delivered_at": _iso(tracking.delivered_at) if tracking else None,
            "opened_at": _iso(tracking.opened_at) if tracking else None,
            "first_clicked_at": _iso(first_click),
            "click_count": len(clicks),
            "bounced_at": _iso(tracking.bounced_at) if tracking else None,
            "unsubscribed_at": _iso(tracking.unsubscribed_at) if tracking else None,
            "ip_address": tracking.ip_address if tracking else None,
            "user_agent": tracking.user_agent if tracking else None,
        })
    return data


def export_tracking_csv(db: Session, campaign_id: int, run_number: Optional[int] = None) -> str:
    data = build_tracking_details(db, campaign_id, run_number)

    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=EXPORT_FIELDS)
    writer.writeheader()
    writer.writerows(data)
    return output.getvalue()
