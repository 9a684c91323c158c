"""Campaign endpoints - definition, lifecycle, stats and tracking views."""
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from campaign_engine.api.deps import get_db
from campaign_engine.db.models.campaign import Campaign, CampaignRun, CampaignStatus
from campaign_engine.db.models.delivery import Email
from campaign_engine.schemas.campaign import (
    CampaignCreate, CampaignResponse, CampaignRunResponse, CampaignStats, RecalculateAllItem,
)
from campaign_engine.schemas.delivery import EmailRecordResponse
from campaign_engine.schemas.tracking import TrackingDetail
from campaign_engine.services.sequencing import lifecycle
from campaign_engine.services.sequencing.content import CampaignConfigurationError
from campaign_engine.services.sequencing.lifecycle import CampaignNotFoundError
from campaign_engine.services.sequencing.state_machine import InvalidTransitionError
from campaign_engine.services.tracking.reconciler import recalculate_campaign_stats, recalculate_all_campaigns
from campaign_engine.services.tracking.report import build_tracking_details, export_tracking_csv

router = APIRouter(prefix="/campaigns", tags=["Campaigns"])


def _run_lifecycle(action, *args):
    """Call a lifecycle operation, mapping domain errors to HTTP errors."""
    try:
        return action(*args)
    except CampaignNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except CampaignConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


def _get_or_404(db: Session, campaign_id: int) -> Campaign:
    campaign = db.get(Campaign, campaign_id)
    if not campaign:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Campaign {campaign_id} not found")
    return campaign


@router.post("", response_model=CampaignResponse, status_code=status.HTTP_201_CREATED)
async def create_campaign(
    campaign_in: CampaignCreate,
    db: Session = Depends(get_db),
):
    """Create a draft campaign with its sequence and audience."""
    return _run_lifecycle(
        lambda: lifecycle.create_campaign(
            db,
            owner_id=campaign_in.owner_id,
            name=campaign_in.name,
            steps=[step.model_dump() for step in campaign_in.steps],
            contact_ids=campaign_in.contact_ids,
            subject=campaign_in.subject,
            template_id=campaign_in.template_id,
            send_type=campaign_in.send_type,
            scheduled_at=campaign_in.scheduled_at,
            repeat_days=campaign_in.repeat_days,
            max_cycles=campaign_in.max_cycles,
            track_opens=campaign_in.track_opens,
            track_clicks=campaign_in.track_clicks,
        )
    )


@router.get("", response_model=List[CampaignResponse])
async def list_campaigns(
    owner_id: Optional[int] = None,
    campaign_status: Optional[CampaignStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
):
    """List campaigns."""
    query = db.query(Campaign)
    if owner_id is not None:
        query = query.filter(Campaign.owner_id == owner_id)
    if campaign_status:
        query = query.filter(Campaign.status == campaign_status)
    return query.order_by(Campaign.created_at.desc()).all()


@router.post("/recalculate-all", response_model=List[RecalculateAllItem])
async def recalculate_all(db: Session = Depends(get_db)):
    """Recalculate stats for every campaign."""
    return recalculate_all_campaigns(db)


@router.get("/{campaign_id}", response_model=CampaignResponse)
async def get_campaign(campaign_id: int, db: Session = Depends(get_db)):
    """Get campaign by ID."""
    return _get_or_404(db, campaign_id)


@router.post("/{campaign_id}/start", response_model=CampaignResponse)
async def start_campaign(campaign_id: int, db: Session = Depends(get_db)):
    """Start a draft campaign, now or at its scheduled time."""
    return _run_lifecycle(lifecycle.start_campaign, db, campaign_id, datetime.utcnow())


@router.post("/{campaign_id}/pause", response_model=CampaignResponse)
async def pause_campaign(campaign_id: int, db: Session = Depends(get_db)):
    """Pause dispatching. In-flight sends still complete."""
    return _run_lifecycle(lifecycle.pause_campaign, db, campaign_id)


@router.post("/{campaign_id}/resume", response_model=CampaignResponse)
async def resume_campaign(campaign_id: int, db: Session = Depends(get_db)):
    """Resume a paused campaign."""
    return _run_lifecycle(lifecycle.resume_campaign, db, campaign_id)


@router.post("/{campaign_id}/restart", response_model=CampaignResponse)
async def restart_campaign(campaign_id: int, db: Session = Depends(get_db)):
    """Archive the current run and schedule a new one."""
    return _run_lifecycle(lifecycle.restart_campaign, db, campaign_id, datetime.utcnow())


@router.post("/{campaign_id}/recalculate", response_model=CampaignStats)
async def recalculate_campaign(campaign_id: int, db: Session = Depends(get_db)):
    """Rebuild the campaign's cached stats from delivery and tracking rows."""
    return _run_lifecycle(recalculate_campaign_stats, db, campaign_id)


@router.get("/{campaign_id}/emails", response_model=List[EmailRecordResponse])
async def list_campaign_emails(
    campaign_id: int,
    run_number: Optional[int] = None,
    contact_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    """Sequence status: every delivery record of the campaign."""
    _get_or_404(db, campaign_id)
    query = db.query(Email).filter(Email.campaign_id == campaign_id)
    if run_number is not None:
        query = query.filter(Email.run_number == run_number)
    if contact_id is not None:
        query = query.filter(Email.contact_id == contact_id)
    return query.order_by(Email.contact_id, Email.followup_sequence).all()


@router.get("/{campaign_id}/runs", response_model=List[CampaignRunResponse])
async def list_campaign_runs(campaign_id: int, db: Session = Depends(get_db)):
    """Archived runs, oldest first."""
    _get_or_404(db, campaign_id)
    return db.query(CampaignRun).filter(CampaignRun.campaign_id == campaign_id).order_by(CampaignRun.run_number).all()


@router.get("/{campaign_id}/tracking", response_model=List[TrackingDetail])
async def get_campaign_tracking(campaign_id: int, run_number: Optional[int] = None, db: Session = Depends(get_db)):
    """Per-record engagement details."""
    _get_or_404(db, campaign_id)
    return build_tracking_details(db, campaign_id, run_number)


@router.get("/{campaign_id}/tracking/export")
async def export_campaign_tracking(campaign_id: int, run_number: Optional[int] = None, db: Session = Depends(get_db)):
    """Tracking details as CSV."""
    _get_or_404(db, campaign_id)
    content = export_tracking_csv(db, campaign_id, run_number)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="campaign_{campaign_id}_tracking.csv"'},
    )
