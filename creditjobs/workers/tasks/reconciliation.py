"""
Celery beat tasks: continue detached jobs and force-settle orphaned reservations.
"""
import logging

from creditjobs.core.celery_app import celery_app
from creditjobs.db.session import SessionLocal
from creditjobs.services.reconciliation.service import ReconciliationService
from creditjobs.services.providers import default_registry

logger = logging.getLogger(__name__)


@celery_app.task(
    name="creditjobs.workers.tasks.reconciliation.resume_detached_jobs",
    time_limit=120,
    soft_time_limit=110,
)
def resume_detached_jobs() -> dict:
    """One status query per detached job; settle what finished or ran out of time."""
    db = SessionLocal()
    try:
        report = ReconciliationService(db, default_registry()).resume_detached()
        return {"ok": True, **report.to_dict()}
    except Exception:
        logger.exception("resume_detached_jobs_error")
        db.rollback()
        return {"ok": False}
    finally:
        db.close()


@celery_app.task(
    name="creditjobs.workers.tasks.reconciliation.sweep_orphaned_reservations",
    time_limit=120,
    soft_time_limit=110,
)
def sweep_orphaned_reservations(grace_seconds: int | None = None) -> dict:
    """Find reservations with no settlement past the grace period and resolve them."""
    db = SessionLocal()
    try:
        report = ReconciliationService(db, default_registry()).sweep_orphans(grace_seconds=grace_seconds)
        if report.orphans:
            logger.warning("orphan_sweep_resolved", extra={"count": len(report.orphans)})
        return {"ok": True, **report.to_dict()}
    except Exception:
        logger.exception("sweep_orphaned_reservations_error")
        db.rollback()
        return {"ok": False}
    finally:
        db.close()
