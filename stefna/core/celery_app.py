"""
Celery application: broker and result backend from settings.
Tasks are in stefna.workers.tasks (generation, sweeper).
"""
from celery import Celery
from celery.schedules import crontab

from stefna.core.config import settings

celery_app = Celery(
    "stefna",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "stefna.workers.tasks.generation",
        "stefna.workers.tasks.sweeper",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    # Hard backstop above the orchestrator's own job ceiling
    task_time_limit=settings.job_ceiling_seconds + 120,
    result_expires=86400,
    beat_schedule={
        "sweep-stuck-jobs": {
            "task": "stefna.workers.tasks.sweeper.sweep_stuck_jobs",
            "schedule": crontab(minute="*/2"),
        },
        "sweep-stale-reservations": {
            "task": "stefna.workers.tasks.sweeper.sweep_stale_reservations",
            "schedule": crontab(minute="*/5"),
        },
    },
)

celery_app.conf.task_routes = {
    "stefna.workers.tasks.generation.execute_generation": {"queue": settings.generation_queue},
}
