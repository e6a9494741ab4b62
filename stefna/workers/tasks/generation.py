"""
Worker side of a generation job: one task per job id, executed through the orchestrator.
"""
import logging

from stefna.core.celery_app import celery_app
from stefna.core.config import settings
from stefna.core.config_cache import ConfigCache
from stefna.db.session import SessionLocal
from stefna.services.orchestrator import build_orchestrator

logger = logging.getLogger(__name__)

# One per worker process
config_cache = ConfigCache(settings.config_cache_ttl_seconds)


def run_generation_job(media_kind: str, job_id: str, cache: ConfigCache | None = None) -> dict:
    """Execute a job in its own session. Shared by the Celery task and the inline queue."""
    db = SessionLocal()
    try:
        orchestrator = build_orchestrator(db, cache or config_cache)
        return orchestrator.execute(media_kind, job_id)
    except Exception:
        logger.exception("execute_generation_error", extra={"job_id": job_id, "media_kind": media_kind})
        db.rollback()
        return {"ok": False, "error": "internal_error"}
    finally:
        db.close()


@celery_app.task(
    name="stefna.workers.tasks.generation.execute_generation",
    soft_time_limit=settings.job_ceiling_seconds + 60,
)
def execute_generation(media_kind: str, job_id: str) -> dict:
    logger.info("execute_generation_started", extra={"job_id": job_id, "media_kind": media_kind})
    return run_generation_job(media_kind, job_id)
