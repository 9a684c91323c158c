"""Dispatcher operations - manual poll and scheduler status."""
from datetime import datetime
from fastapi import APIRouter, Depends

from campaign_engine.api.deps import get_sequence_dispatcher
from campaign_engine.schemas.delivery import PollResult, SchedulerStatus
from campaign_engine.services.scheduler import get_scheduler_status
from campaign_engine.services.sequencing.dispatcher import SequenceDispatcher

router = APIRouter(prefix="/dispatch", tags=["Dispatch"])


@router.post("/poll", response_model=PollResult)
def run_poll_cycle(dispatcher: SequenceDispatcher = Depends(get_sequence_dispatcher)):
    """Run one dispatch cycle synchronously."""
    summary = dispatcher.poll_due(datetime.utcnow())
    candidates = summary.pop("candidates", 0)
    return PollResult(candidates=candidates, outcomes=summary)


@router.get("/scheduler", response_model=SchedulerStatus)
async def scheduler_status():
    """Background job status."""
    return get_scheduler_status()
