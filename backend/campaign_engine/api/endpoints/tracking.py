"""Tracking endpoints.

``beacon_router`` holds the pixel, click and unsubscribe endpoints embedded in
outbound mail; it is mounted at the application root. They never surface
errors to the remote client. ``router`` holds the operator and transport
callback endpoints under the API prefix.
"""
from typing import Optional
from urllib.parse import urlparse
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from sqlalchemy.orm import Session
import structlog

from campaign_engine.api.deps import get_db
from campaign_engine.core.config import settings
from campaign_engine.schemas.tracking import DeliveryCallback, DeliveryCallbackResult, RepairResult
from campaign_engine.services.tracking.ingestor import (
    PIXEL_BYTES, PIXEL_HEADERS, PIXEL_MEDIA_TYPE,
    record_bounce, record_click, record_delivery, record_open, record_unsubscribe,
)
from campaign_engine.services.tracking.reconciler import repair_missing_opens

logger = structlog.get_logger()

beacon_router = APIRouter(prefix="/tracking", tags=["Tracking Beacons"])
router = APIRouter(prefix="/tracking", tags=["Tracking"])

UNSUBSCRIBE_PAGE = (
    "<!DOCTYPE html><html><head><meta charset=\"UTF-8\"><title>Unsubscribed</title></head>"
    "<body style=\"font-family:Arial,sans-serif;text-align:center;padding:40px;\">"
    "<h2>You have been unsubscribed</h2>"
    "<p>You will no longer receive emails from this sender.</p>"
    "</body></html>"
)


def get_client_ip(request: Request) -> Optional[str]:
    if settings.TRUST_FORWARDED_FOR:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _is_redirectable(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _pixel_response() -> Response:
    return Response(content=PIXEL_BYTES, media_type=PIXEL_MEDIA_TYPE, headers=dict(PIXEL_HEADERS))


@beacon_router.get("/pixel/{tracking_id}")
def tracking_pixel(tracking_id: str, request: Request, db: Session = Depends(get_db)):
    """Open beacon. Always answers with the same 1x1 PNG."""
    try:
        record_open(db, tracking_id, get_client_ip(request), request.headers.get("user-agent"))
    except Exception as e:
        db.rollback()
        logger.error("Open tracking failed", tracking_id=tracking_id, error=str(e))
    return _pixel_response()


@beacon_router.get("/click/{tracking_id}")
def tracking_click(tracking_id: str, request: Request, url: Optional[str] = None, db: Session = Depends(get_db)):
    """Click beacon. Records the click and redirects to the original link."""
    if not url:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing url parameter")

    # Query parameters arrive percent-decoded
    target = url
    if not _is_redirectable(target):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid url parameter")

    try:
        record_click(db, tracking_id, target, get_client_ip(request), request.headers.get("user-agent"))
    except Exception as e:
        db.rollback()
        logger.error("Click tracking failed", tracking_id=tracking_id, error=str(e))
    return RedirectResponse(url=target, status_code=status.HTTP_302_FOUND)


@beacon_router.get("/unsubscribe/{tracking_id}", response_class=HTMLResponse)
def tracking_unsubscribe(tracking_id: str, request: Request, db: Session = Depends(get_db)):
    """Unsubscribe link. Unknown ids get the same confirmation page."""
    try:
        record_unsubscribe(db, tracking_id, get_client_ip(request), request.headers.get("user-agent"))
    except Exception as e:
        db.rollback()
        logger.error("Unsubscribe failed", tracking_id=tracking_id, error=str(e))
    return HTMLResponse(content=UNSUBSCRIBE_PAGE)


@router.post("/events", response_model=DeliveryCallbackResult)
async def delivery_callback(callback: DeliveryCallback, db: Session = Depends(get_db)):
    """Delivery/bounce notification from the mail transport."""
    if callback.event == "delivered":
        recorded = record_delivery(db, callback.tracking_id)
    else:
        recorded = record_bounce(db, callback.tracking_id, callback.reason)
    return DeliveryCallbackResult(tracking_id=callback.tracking_id, event=callback.event, recorded=recorded)


@router.post("/fix-missing-opens", response_model=RepairResult)
async def fix_missing_opens(campaign_id: Optional[int] = None, db: Session = Depends(get_db)):
    """Infer opens for records that were clicked but never registered an open."""
    return repair_missing_opens(db, campaign_id)
