"""Sequence Dispatcher - sends due delivery records exactly once per lease.

One poll cycle selects due records, then processes each on a bounded worker
pool. Every worker opens its own session, claims the record through the
store-side lease and only then looks at conditions, suppression and the
campaign state. The transport call runs with a timeout on a separate pool so
one slow send cannot hold up the rest of the batch.
"""
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed, TimeoutError as FutureTimeoutError
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple
import structlog
from sqlalchemy.orm import Session

from campaign_engine.core.config import settings
from campaign_engine.db.base import SessionLocal
from campaign_engine.db.models.campaign import Campaign
from campaign_engine.db.models.contact import Contact
from campaign_engine.db.models.delivery import Email, EmailStatus, FailureReason
from campaign_engine.db.models.tracking import EmailTracking, TrackingEventType
from campaign_engine.services.adapters.base import EmailSendAdapter
from campaign_engine.services.adapters.email_sending import get_email_adapter
from campaign_engine.services.notifications import EventBroadcaster, broadcaster
from campaign_engine.services.sequencing.builder import schedule_next
from campaign_engine.services.sequencing.conditions import evaluate_step_conditions
from campaign_engine.services.sequencing.legacy import sync_legacy_followup
from campaign_engine.services.sequencing.lifecycle import refresh_campaign_status
from campaign_engine.services.sequencing.locking import claim_email, claimable_email_clause, release_email
from campaign_engine.services.sequencing.state_machine import DISPATCHABLE_CAMPAIGN_STATUSES, check_email_transition
from campaign_engine.services.tracking.events import append_event, increment_campaign_stat
from campaign_engine.services.tracking.links import inject_tracking

logger = structlog.get_logger()

# Per-record outcomes reported by a poll cycle
SENT = "sent"
RETRY = "retry"
FAILED = "failed"
SKIPPED = "skipped"
SUPPRESSED = "suppressed"
SUPERSEDED = "superseded"
DEFERRED = "deferred"
CONTENDED = "contended"
LEASE_LOST = "lease_lost"
ERROR = "error"


class SequenceDispatcher:
    """Processes due Email records against a mail transport."""

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        adapter: Optional[EmailSendAdapter] = None,
        notifier: Optional[EventBroadcaster] = None,
        batch_size: Optional[int] = None,
        concurrency: Optional[int] = None,
        lock_timeout_seconds: Optional[int] = None,
        max_attempts: Optional[int] = None,
        retry_backoff_seconds: Optional[int] = None,
        transport_timeout_seconds: Optional[float] = None,
        transport_pool_size: Optional[int] = None,
    ):
        self.session_factory = session_factory or SessionLocal
        self.adapter = adapter or get_email_adapter()
        self.notifier = notifier or broadcaster
        self.batch_size = batch_size or settings.DISPATCH_BATCH_SIZE
        self.concurrency = max(1, concurrency or settings.DISPATCH_CONCURRENCY)
        self.lock_timeout_seconds = lock_timeout_seconds or settings.LOCK_TIMEOUT_SECONDS
        self.max_attempts = max(1, max_attempts or settings.MAX_SEND_ATTEMPTS)
        self.retry_backoff_seconds = settings.RETRY_BACKOFF_SECONDS if retry_backoff_seconds is None else retry_backoff_seconds
        self.transport_timeout_seconds = transport_timeout_seconds or settings.TRANSPORT_TIMEOUT_SECONDS
        self.transport_pool_size = max(1, transport_pool_size or settings.TRANSPORT_POOL_SIZE or self.concurrency * 2)
        self._transport_pool = ThreadPoolExecutor(max_workers=self.transport_pool_size, thread_name_prefix="transport")

    def close(self) -> None:
        """Wait for in-flight transport calls and release the pool."""
        self._transport_pool.shutdown(wait=True)

    def find_due(self, now: datetime) -> List[Tuple[int, int, int]]:
        """(email_id, version, campaign_id) for claimable records of dispatchable campaigns."""
        db = self.session_factory()
        try:
            rows = (
                db.query(Email.email_id, Email.version, Email.campaign_id)
                .join(Campaign, Campaign.campaign_id == Email.campaign_id)
                .filter(
                    claimable_email_clause(now, self.lock_timeout_seconds),
                    Campaign.status.in_(DISPATCHABLE_CAMPAIGN_STATUSES),
                )
                .order_by(Email.scheduled_at, Email.email_id)
                .limit(self.batch_size)
                .all()
            )
            return [(r.email_id, r.version, r.campaign_id) for r in rows]
        finally:
            db.close()

    def poll_due(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Run one dispatch cycle and return outcome counts."""
        now = now or datetime.utcnow()
        candidates = self.find_due(now)
        outcomes = Counter()

        if len(candidates) == 1 or self.concurrency == 1:
            for email_id, version, _ in candidates:
                outcomes[self.process_email(email_id, version, now)] += 1
        elif candidates:
            workers = min(self.concurrency, len(candidates))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="dispatch") as pool:
                futures = [pool.submit(self.process_email, email_id, version, now) for email_id, version, _ in candidates]
                for future in as_completed(futures):
                    outcomes[future.result()] += 1

        for campaign_id in sorted({c[2] for c in candidates}):
            db = self.session_factory()
            try:
                refresh_campaign_status(db, campaign_id, now)
            except Exception as e:
                db.rollback()
                logger.error("Campaign status refresh failed", campaign_id=campaign_id, error=str(e))
            finally:
                db.close()

        summary = {"candidates": len(candidates)}
        summary.update(outcomes)
        if candidates:
            logger.info("Poll cycle complete", **summary)
        return summary

    def process_email(self, email_id: int, seen_version: int, now: datetime) -> str:
        """Claim and process one record. Never raises."""
        db = self.session_factory()
        token = None
        try:
            token = claim_email(db, email_id, seen_version, now, self.lock_timeout_seconds)
            if token is None:
                logger.debug("Record claimed by another worker", email_id=email_id)
                return CONTENDED
            return self._process_claimed(db, email_id, token, now)
        except Exception as e:
            db.rollback()
            logger.error("Dispatch failed", email_id=email_id, error=str(e))
            if token is not None:
                try:
                    email = db.get(Email, email_id, populate_existing=True)
                    self._retry_or_fail(db, email, token, str(e), now)
                except Exception as release_error:
                    db.rollback()
                    logger.error("Could not release record after failure", email_id=email_id, error=str(release_error))
            return ERROR
        finally:
            db.close()

    def _process_claimed(self, db: Session, email_id: int, token: str, now: datetime) -> str:
        email = db.get(Email, email_id, populate_existing=True)
        campaign = db.get(Campaign, email.campaign_id)

        if campaign is None or campaign.status not in DISPATCHABLE_CAMPAIGN_STATUSES:
            # Paused after selection: hand the record back without using an attempt
            check_email_transition(EmailStatus.SENDING, EmailStatus.QUEUED)
            release_email(db, email_id, token, {Email.status: EmailStatus.QUEUED})
            db.commit()
            logger.info("Campaign not dispatchable, record released", email_id=email_id, campaign_id=email.campaign_id)
            return DEFERRED

        if email.run_number != campaign.current_run:
            self._finish_failed(db, email, token, FailureReason.SUPERSEDED, "run archived by restart")
            return SUPERSEDED

        contact = db.get(Contact, email.contact_id)
        if contact is None:
            self._finish_failed(db, email, token, FailureReason.MISSING_CONTACT, "contact no longer exists")
            return FAILED
        if contact.is_suppressed:
            self._finish_failed(db, email, token, FailureReason.SUPPRESSED, f"contact is {contact.status.value}")
            logger.info("Suppressed contact skipped", email_id=email_id, contact_id=contact.contact_id)
            return SUPPRESSED

        passed, reason = evaluate_step_conditions(db, email, contact)
        if not passed:
            self._finish_failed(db, email, token, FailureReason.CONDITION_NOT_MET, reason)
            logger.info("Step condition not met", email_id=email_id, campaign_id=campaign.campaign_id, reason=reason)
            return SKIPPED

        html_body = inject_tracking(
            email.html_content or "",
            email.tracking_pixel_id,
            track_opens=campaign.track_opens,
            track_clicks=campaign.track_clicks,
        )
        result = self._send(contact.email, email.subject or "", html_body, email.text_content, email.tracking_pixel_id)
        if not result.get("success"):
            return self._retry_or_fail(db, email, token, result.get("error") or "transport reported failure", now)

        return self._finish_sent(db, campaign, email, contact, token, html_body, result, now)

    def _send(self, to_email: str, subject: str, html_body: str, text_body: Optional[str], tracking_pixel_id: str) -> Dict[str, Any]:
        started = threading.Event()

        def call():
            started.set()
            return self.adapter.send_email(
                to_email=to_email,
                subject=subject,
                body_html=html_body,
                body_text=text_body,
                tracking_pixel_id=tracking_pixel_id,
            )

        future = self._transport_pool.submit(call)
        # The timeout covers the call itself, not time spent queued behind abandoned calls
        if not started.wait(self.transport_timeout_seconds) and future.cancel():
            logger.warning("No transport worker free", to_email=to_email, pool_size=self.transport_pool_size)
            return {"success": False, "message_id": None,
                    "error": f"no transport worker free within {self.transport_timeout_seconds}s"}
        try:
            return future.result(timeout=self.transport_timeout_seconds)
        except FutureTimeoutError:
            logger.warning("Transport call abandoned after timeout", to_email=to_email)
            return {"success": False, "message_id": None, "error": f"transport timed out after {self.transport_timeout_seconds}s"}
        except Exception as e:
            return {"success": False, "message_id": None, "error": str(e)}

    def _finish_sent(self, db: Session, campaign: Campaign, email: Email, contact: Contact, token: str,
                     html_body: str, result: Dict[str, Any], now: datetime) -> str:
        check_email_transition(EmailStatus.SENDING, EmailStatus.SENT)
        released = release_email(db, email.email_id, token, {
            Email.status: EmailStatus.SENT,
            Email.sent_at: now,
            Email.message_id: result.get("message_id"),
            Email.html_content: html_body,
            Email.attempts: (email.attempts or 0) + 1,
            Email.last_error: None,
            Email.failure_reason: None,
        })
        if not released:
            db.rollback()
            logger.warning("Lease lost after send", email_id=email.email_id)
            return LEASE_LOST

        tracking = db.query(EmailTracking).filter(EmailTracking.email_id == email.email_id).first()
        if tracking:
            append_event(db, tracking, TrackingEventType.SENT, {"message_id": result.get("message_id") or ""}, now)
        increment_campaign_stat(db, campaign.campaign_id, "total_sent", 1, email.run_number)
        sync_legacy_followup(db, email, EmailStatus.SENT, sent_at=now)
        db.commit()

        # The send is durable before the next step is created
        try:
            next_email = schedule_next(db, campaign, email, contact, now)
            db.commit()
            if next_email is not None:
                logger.debug("Next step scheduled", email_id=next_email.email_id, parent_email_id=email.email_id,
                             scheduled_at=str(next_email.scheduled_at))
        except Exception as e:
            db.rollback()
            logger.error("Scheduling next step failed", email_id=email.email_id, campaign_id=campaign.campaign_id, error=str(e))

        self.notifier.publish("email_sent", {
            "campaign_id": campaign.campaign_id,
            "email_id": email.email_id,
            "contact_id": contact.contact_id,
            "sent_at": now.isoformat(),
        })
        return SENT

    def _finish_failed(self, db: Session, email: Email, token: str, reason: FailureReason, error: Optional[str]) -> bool:
        check_email_transition(EmailStatus.SENDING, EmailStatus.FAILED)
        released = release_email(db, email.email_id, token, {
            Email.status: EmailStatus.FAILED,
            Email.failure_reason: reason,
            Email.last_error: error,
        })
        if not released:
            db.rollback()
            logger.warning("Lease lost before recording outcome", email_id=email.email_id, reason=reason.value)
            return False
        sync_legacy_followup(db, email, EmailStatus.FAILED, reason)
        db.commit()
        return True

    def _retry_or_fail(self, db: Session, email: Email, token: str, error: str, now: datetime) -> str:
        attempts = (email.attempts or 0) + 1
        if attempts >= self.max_attempts:
            db.query(Email).filter(Email.email_id == email.email_id, Email.lock_token == token).update(
                {Email.attempts: attempts}, synchronize_session=False
            )
            self._finish_failed(db, email, token, FailureReason.TRANSPORT, error)
            logger.error("Transport failure, giving up", email_id=email.email_id, attempts=attempts, error=error)
            return FAILED

        retry_at = now + timedelta(seconds=self.retry_backoff_seconds * 2 ** (attempts - 1))
        check_email_transition(EmailStatus.SENDING, EmailStatus.QUEUED)
        released = release_email(db, email.email_id, token, {
            Email.status: EmailStatus.QUEUED,
            Email.attempts: attempts,
            Email.last_error: error,
            Email.scheduled_at: retry_at,
        })
        if not released:
            db.rollback()
            logger.warning("Lease lost before scheduling retry", email_id=email.email_id)
            return LEASE_LOST
        db.commit()
        logger.warning("Transport failure, retry scheduled", email_id=email.email_id, attempt=attempts,
                       retry_at=str(retry_at), error=error)
        return RETRY


_dispatcher: Optional[SequenceDispatcher] = None


def get_dispatcher() -> SequenceDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = SequenceDispatcher()
    return _dispatcher


def shutdown_dispatcher() -> None:
    global _dispatcher
    if _dispatcher is not None:
        _dispatcher.close()
        _dispatcher = None


def poll_due(now: Optional[datetime] = None) -> Dict[str, int]:
    """Run one poll cycle with the process-wide dispatcher."""
    return get_dispatcher().poll_due(now)
