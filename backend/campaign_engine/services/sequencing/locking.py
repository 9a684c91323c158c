"""Store-side leases for delivery records and campaigns.

No in-process mutex guards dispatch. A worker owns a record only after a
conditional UPDATE that matched exactly one row; every later write presents
the lease token it was handed. Leases older than the lock timeout are
treated as abandoned and may be claimed again.
"""
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from campaign_engine.db.models.campaign import Campaign, CampaignStatus
from campaign_engine.db.models.delivery import Email, EmailStatus


def lock_cutoff(now: datetime, lock_timeout_seconds: int) -> datetime:
    return now - timedelta(seconds=lock_timeout_seconds)


def claimable_email_clause(now: datetime, lock_timeout_seconds: int):
    """Due queued records without a live lease, plus sending records whose lease expired."""
    cutoff = lock_cutoff(now, lock_timeout_seconds)
    return or_(
        and_(
            Email.status == EmailStatus.QUEUED,
            Email.scheduled_at <= now,
            or_(Email.processing_lock.is_(None), Email.processing_lock < cutoff),
        ),
        and_(
            Email.status == EmailStatus.SENDING,
            Email.processing_lock.isnot(None),
            Email.processing_lock < cutoff,
        ),
    )


def claim_email(db: Session, email_id: int, seen_version: int, now: datetime, lock_timeout_seconds: int) -> Optional[str]:
    """Compare-and-set queued -> sending. Returns the lease token, or None if another worker won."""
    token = uuid.uuid4().hex
    claimed = db.query(Email).filter(
        Email.email_id == email_id,
        Email.version == seen_version,
        claimable_email_clause(now, lock_timeout_seconds),
    ).update({
        Email.status: EmailStatus.SENDING,
        Email.processing_lock: now,
        Email.lock_token: token,
        Email.version: Email.version + 1,
    }, synchronize_session=False)
    db.commit()
    return token if claimed == 1 else None


def release_email(db: Session, email_id: int, token: str, values: Dict[Any, Any]) -> bool:
    """Write the outcome and drop the lease, only while still holding it (caller commits)."""
    update = dict(values)
    update.update({
        Email.processing_lock: None,
        Email.lock_token: None,
        Email.version: Email.version + 1,
    })
    released = db.query(Email).filter(
        Email.email_id == email_id,
        Email.lock_token == token,
    ).update(update, synchronize_session=False)
    return released == 1


def claim_campaign(db: Session, campaign_id: int, expected_status: CampaignStatus, now: datetime, lock_timeout_seconds: int) -> Optional[datetime]:
    """Take the campaign-level lease used by the activation sweep.

    Returns the stored lock value, which acts as the token for ``release_campaign``.
    """
    cutoff = lock_cutoff(now, lock_timeout_seconds)
    # MySQL DATETIME drops microseconds
    lock_value = now.replace(microsecond=0)
    claimed = db.query(Campaign).filter(
        Campaign.campaign_id == campaign_id,
        Campaign.status == expected_status,
        or_(Campaign.processing_lock.is_(None), Campaign.processing_lock < cutoff),
    ).update({Campaign.processing_lock: lock_value}, synchronize_session=False)
    db.commit()
    return lock_value if claimed == 1 else None


def release_campaign(db: Session, campaign_id: int, lock_value: datetime) -> bool:
    released = db.query(Campaign).filter(
        Campaign.campaign_id == campaign_id,
        Campaign.processing_lock == lock_value,
    ).update({Campaign.processing_lock: None}, synchronize_session=False)
    return released == 1
