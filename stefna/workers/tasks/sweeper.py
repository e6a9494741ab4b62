"""
Celery beat tasks: safety-net sweeps.
- sweep_stuck_jobs: pending/processing jobs past the job ceiling -> failed + refund
- sweep_stale_reservations: ledger rows left `reserved` past max age -> refunded
"""
import logging

from stefna.core.celery_app import celery_app
from stefna.db.session import SessionLocal
from stefna.services.credits.service import CreditLedger
from stefna.services.orchestrator import build_orchestrator
from stefna.utils.metrics import sweep_actions_total
from stefna.workers.tasks.generation import config_cache

logger = logging.getLogger(__name__)


@celery_app.task(
    name="stefna.workers.tasks.sweeper.sweep_stuck_jobs",
    time_limit=120,
    soft_time_limit=110,
)
def sweep_stuck_jobs() -> dict:
    db = SessionLocal()
    try:
        orchestrator = build_orchestrator(db, config_cache)
        swept = orchestrator.sweep_stuck_jobs()
        sweep_actions_total.labels(sweep="stuck_jobs").inc(swept)
        return {"ok": True, "swept": swept}
    except Exception:
        logger.exception("sweep_stuck_jobs_error")
        db.rollback()
        return {"ok": False}
    finally:
        db.close()


@celery_app.task(
    name="stefna.workers.tasks.sweeper.sweep_stale_reservations",
    time_limit=120,
    soft_time_limit=110,
)
def sweep_stale_reservations() -> dict:
    db = SessionLocal()
    try:
        refunded = CreditLedger(db).sweep_stale_reservations()
        sweep_actions_total.labels(sweep="stale_reservations").inc(refunded)
        return {"ok": True, "refunded": refunded}
    except Exception:
        logger.exception("sweep_stale_reservations_error")
        db.rollback()
        return {"ok": False}
    finally:
        db.close()
