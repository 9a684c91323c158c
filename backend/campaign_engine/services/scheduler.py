"""APScheduler Integration - background jobs that drive campaign sequencing."""
from datetime import datetime
import structlog

from campaign_engine.core.config import settings

logger = structlog.get_logger()
_scheduler = None


def get_scheduler():
    global _scheduler
    return _scheduler


def init_scheduler():
    global _scheduler
    try:
        from apscheduler.schedulers.background import BackgroundScheduler
        from apscheduler.triggers.interval import IntervalTrigger

        _scheduler = BackgroundScheduler(timezone="UTC")

        # max_instances=1: a slow cycle is skipped rather than stacked
        _scheduler.add_job(job_dispatch_due, IntervalTrigger(seconds=settings.DISPATCH_INTERVAL_SECONDS), id="dispatch_due", name="Dispatch Due Emails", replace_existing=True, max_instances=1, coalesce=True)
        _scheduler.add_job(job_activate_campaigns, IntervalTrigger(seconds=settings.CAMPAIGN_SWEEP_INTERVAL_SECONDS), id="activate_campaigns", name="Activate Scheduled Campaigns", replace_existing=True, max_instances=1, coalesce=True)
        _scheduler.add_job(job_campaign_status_sweep, IntervalTrigger(seconds=settings.CAMPAIGN_SWEEP_INTERVAL_SECONDS), id="campaign_status_sweep", name="Campaign Completion Sweep", replace_existing=True, max_instances=1, coalesce=True)
        _scheduler.add_job(job_legacy_followups, IntervalTrigger(minutes=settings.LEGACY_FOLLOWUP_INTERVAL_MINUTES), id="legacy_followups", name="Legacy Follow-up Hand-over", replace_existing=True, max_instances=1, coalesce=True)
        _scheduler.add_job(job_reconcile_stats, IntervalTrigger(minutes=settings.RECONCILE_INTERVAL_MINUTES), id="reconcile_stats", name="Reconcile Campaign Stats", replace_existing=True, max_instances=1, coalesce=True)

        _scheduler.start()
        logger.info("Campaign scheduler started", jobs=len(_scheduler.get_jobs()))
        return _scheduler
    except Exception as e:
        logger.error("Failed to start scheduler", error=str(e))
        _scheduler = None
        return None


def shutdown_scheduler():
    global _scheduler
    if _scheduler:
        # Let running jobs finish so leases are released cleanly
        _scheduler.shutdown(wait=True)
        logger.info("Campaign scheduler stopped")
        _scheduler = None

    from campaign_engine.services.sequencing.dispatcher import shutdown_dispatcher
    shutdown_dispatcher()


def _get_db():
    from campaign_engine.db.base import SessionLocal
    return SessionLocal()


def job_dispatch_due():
    try:
        from campaign_engine.services.sequencing.dispatcher import poll_due
        poll_due(datetime.utcnow())
    except Exception as e:
        logger.error("Dispatch cycle failed", error=str(e))


def job_activate_campaigns():
    db = _get_db()
    try:
        from campaign_engine.services.sequencing.lifecycle import activate_scheduled_campaigns
        result = activate_scheduled_campaigns(db, datetime.utcnow())
        if result["activated"] or result["failed"]:
            logger.info("Scheduled campaign sweep complete", result=result)
    except Exception as e:
        logger.error("Scheduled campaign sweep failed", error=str(e))
    finally:
        db.close()


def job_campaign_status_sweep():
    db = _get_db()
    try:
        from campaign_engine.services.sequencing.lifecycle import sweep_campaign_status
        result = sweep_campaign_status(db, datetime.utcnow())
        if result["changed"]:
            logger.info("Campaign status sweep complete", result=result)
    except Exception as e:
        logger.error("Campaign status sweep failed", error=str(e))
    finally:
        db.close()


def job_legacy_followups():
    logger.info("Running legacy follow-up hand-over")
    db = _get_db()
    try:
        from campaign_engine.services.sequencing.legacy import process_legacy_followups
        result = process_legacy_followups(db, datetime.utcnow())
        logger.info("Legacy follow-up hand-over complete", result=result)
    except Exception as e:
        logger.error("Legacy follow-up hand-over failed", error=str(e))
    finally:
        db.close()


def job_reconcile_stats():
    logger.info("Running stats reconciliation")
    db = _get_db()
    try:
        from campaign_engine.services.tracking.reconciler import recalculate_all_campaigns
        results = recalculate_all_campaigns(db)
        logger.info("Stats reconciliation complete", campaigns=len(results))
    except Exception as e:
        logger.error("Stats reconciliation failed", error=str(e))
    finally:
        db.close()


def get_scheduler_status() -> dict:
    if not _scheduler:
        return {"running": False, "jobs": []}
    jobs = []
    for job in _scheduler.get_jobs():
        jobs.append({"id": job.id, "name": job.name, "next_run": str(job.next_run_time) if job.next_run_time else None})
    return {"running": _scheduler.running, "jobs": jobs}
