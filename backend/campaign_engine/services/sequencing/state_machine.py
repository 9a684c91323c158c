"""Campaign and delivery record state machines.

All status changes for Campaign and Email go through this module. Illegal
transitions raise ``InvalidTransitionError`` instead of being silently written.

Campaign:
    draft -> scheduled | sending
    scheduled -> sending | paused
    sending -> sent | completed | paused
    sent -> completed | paused
    paused -> scheduled | sending | sent      (resume)
    sent | completed | paused -> scheduled    (restart)

Email:
    queued -> sending | failed
    sending -> sent | failed | queued         (queued = retry or released)
    sent -> delivered | bounced
    delivered -> bounced
    bounced, failed -> terminal
"""
from typing import Dict, Set

from campaign_engine.db.models.campaign import Campaign, CampaignStatus
from campaign_engine.db.models.delivery import Email, EmailStatus


VALID_CAMPAIGN_TRANSITIONS: Dict[CampaignStatus, Set[CampaignStatus]] = {
    CampaignStatus.DRAFT: {CampaignStatus.SCHEDULED, CampaignStatus.SENDING},
    CampaignStatus.SCHEDULED: {CampaignStatus.SENDING, CampaignStatus.PAUSED},
    CampaignStatus.SENDING: {CampaignStatus.SENT, CampaignStatus.COMPLETED, CampaignStatus.PAUSED},
    CampaignStatus.SENT: {CampaignStatus.COMPLETED, CampaignStatus.PAUSED, CampaignStatus.SCHEDULED},
    CampaignStatus.PAUSED: {CampaignStatus.SCHEDULED, CampaignStatus.SENDING, CampaignStatus.SENT},
    CampaignStatus.COMPLETED: {CampaignStatus.SCHEDULED},
}

VALID_EMAIL_TRANSITIONS: Dict[EmailStatus, Set[EmailStatus]] = {
    EmailStatus.QUEUED: {EmailStatus.SENDING, EmailStatus.FAILED},
    EmailStatus.SENDING: {EmailStatus.SENT, EmailStatus.FAILED, EmailStatus.QUEUED},
    EmailStatus.SENT: {EmailStatus.DELIVERED, EmailStatus.BOUNCED},
    EmailStatus.DELIVERED: {EmailStatus.BOUNCED},
    EmailStatus.BOUNCED: set(),
    EmailStatus.FAILED: set(),
}

# Campaign states in which due records may be dispatched.
DISPATCHABLE_CAMPAIGN_STATUSES = (CampaignStatus.SENDING, CampaignStatus.SENT)

# Campaign states from which resume is allowed.
RESUMABLE_CAMPAIGN_STATUSES = (CampaignStatus.PAUSED,)


class InvalidTransitionError(Exception):
    """Raised when a status change is not allowed from the current status."""

    def __init__(self, entity: str, from_status, to_status):
        self.entity = entity
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Illegal {entity} transition: {_value(from_status)} -> {_value(to_status)}"
        )


def _value(status) -> str:
    return status.value if hasattr(status, "value") else str(status)


def can_transition_campaign(from_status: CampaignStatus, to_status: CampaignStatus) -> bool:
    return to_status in VALID_CAMPAIGN_TRANSITIONS.get(from_status, set())


def can_transition_email(from_status: EmailStatus, to_status: EmailStatus) -> bool:
    return to_status in VALID_EMAIL_TRANSITIONS.get(from_status, set())


def check_campaign_transition(from_status: CampaignStatus, to_status: CampaignStatus) -> None:
    if not can_transition_campaign(from_status, to_status):
        raise InvalidTransitionError("campaign", from_status, to_status)


def check_email_transition(from_status: EmailStatus, to_status: EmailStatus) -> None:
    if not can_transition_email(from_status, to_status):
        raise InvalidTransitionError("email", from_status, to_status)


def transition_campaign(campaign: Campaign, to_status: CampaignStatus) -> Campaign:
    """Apply a validated status change to a loaded campaign (caller commits)."""
    check_campaign_transition(campaign.status, to_status)
    campaign.status = to_status
    return campaign


def transition_email(email: Email, to_status: EmailStatus) -> Email:
    """Apply a validated status change to a loaded delivery record (caller commits)."""
    check_email_transition(email.status, to_status)
    email.status = to_status
    return email


def check_campaign_resume(from_status: CampaignStatus, to_status: CampaignStatus) -> None:
    """Resume is only defined for paused campaigns, even where the target edge itself exists."""
    if from_status not in RESUMABLE_CAMPAIGN_STATUSES:
        raise InvalidTransitionError("campaign", from_status, to_status)
    check_campaign_transition(from_status, to_status)
