"""
Job hand-off from the submit path to workers.
Celery in production; inline execution for local development and tests.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable

from stefna.core.config import settings

logger = logging.getLogger(__name__)

EXECUTE_GENERATION_TASK = "stefna.workers.tasks.generation.execute_generation"


class TaskQueue(ABC):
    @abstractmethod
    def enqueue(self, media_kind: str, job_id: str) -> None:
        """Hand the job to a worker. Raises on failure; the caller refunds."""
        raise NotImplementedError


class CeleryTaskQueue(TaskQueue):
    def __init__(self, celery_app: Any = None, queue: str | None = None) -> None:
        if celery_app is None:
            from stefna.core.celery_app import celery_app as default_app

            celery_app = default_app
        self.celery_app = celery_app
        self.queue = queue or settings.generation_queue

    def enqueue(self, media_kind: str, job_id: str) -> None:
        self.celery_app.send_task(EXECUTE_GENERATION_TASK, args=[media_kind, job_id], queue=self.queue)
        logger.info("job_enqueued", extra={"job_id": job_id, "media_kind": media_kind})


class InlineTaskQueue(TaskQueue):
    """Runs the job synchronously inside enqueue()."""

    def __init__(self, runner: Callable[[str, str], Any] | None = None) -> None:
        self.runner = runner

    def enqueue(self, media_kind: str, job_id: str) -> None:
        runner = self.runner
        if runner is None:
            from stefna.workers.tasks.generation import run_generation_job

            runner = run_generation_job
        logger.info("job_running_inline", extra={"job_id": job_id, "media_kind": media_kind})
        runner(media_kind, job_id)


def get_task_queue() -> TaskQueue:
    if settings.task_queue_backend == "inline":
        return InlineTaskQueue()
    return CeleryTaskQueue()
