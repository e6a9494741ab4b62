"""
Job store and dedup guard over the per-media-kind job tables.

(user_id, run_id) is unique per table. Status only moves forward through guarded UPDATEs;
a failed job is deleted when the same run id is retried, and the new row gets attempt + 1.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from stefna.models.generation_job import ACTIVE_STATUSES, JOB_MODELS, JobStatus, MediaKind
from stefna.services.errors import PersistenceError

logger = logging.getLogger(__name__)


def ledger_request_id(kind: MediaKind | str, run_id: str, attempt: int) -> str:
    """Ledger request id of one generation attempt; single-use, so each retry gets its own."""
    kind_value = kind.value if isinstance(kind, MediaKind) else kind
    return f"{kind_value}:{run_id}:{attempt}"


def next_attempt(existing: Any | None) -> int:
    if existing is None:
        return 1
    if existing.status == JobStatus.FAILED.value:
        return (existing.attempt or 1) + 1
    return existing.attempt or 1


class JobStore:
    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def model_for(kind: MediaKind | str) -> type:
        return JOB_MODELS[MediaKind(kind)]

    def find(self, user_id: str, run_id: str, kind: MediaKind | str):
        model = self.model_for(kind)
        return (
            self.db.query(model)
            .filter(model.user_id == user_id, model.run_id == run_id)
            .one_or_none()
        )

    def get(self, kind: MediaKind | str, job_id: str):
        model = self.model_for(kind)
        return self.db.query(model).filter(model.id == job_id).one_or_none()

    def create_or_get_job(
        self,
        user_id: str,
        run_id: str,
        kind: MediaKind | str,
        prompt: str,
        source_url: str | None = None,
        input_params: dict[str, Any] | None = None,
        attempt: int = 1,
        ledger_request_id: str | None = None,
    ) -> tuple[Any, bool]:
        """
        Return (job, is_new). A completed or in-flight job is returned untouched;
        a failed one is replaced by a fresh pending row.
        """
        kind = MediaKind(kind)
        model = self.model_for(kind)
        existing = self.find(user_id, run_id, kind)
        if existing is not None:
            if existing.status != JobStatus.FAILED.value:
                return existing, False
            logger.info(
                "job_failed_replaced",
                extra={"job_id": existing.id, "user_id": user_id, "run_id": run_id, "attempt": existing.attempt},
            )

        try:
            if existing is not None:
                # Guarded on status so a concurrent retry cannot delete a fresh pending row
                self.db.query(model).filter(
                    model.id == existing.id,
                    model.status == JobStatus.FAILED.value,
                ).delete(synchronize_session=False)
                self.db.expunge(existing)
            job = model(
                user_id=user_id,
                run_id=run_id,
                media_kind=kind.value,
                prompt=prompt,
                source_url=source_url,
                status=JobStatus.PENDING.value,
                attempt=attempt,
                ledger_request_id=ledger_request_id,
                input_params=dict(input_params or {}),
                provider_meta={},
            )
            self.db.add(job)
            self.db.commit()
            self.db.refresh(job)
        except IntegrityError:
            self.db.rollback()
            winner = self.find(user_id, run_id, kind)
            if winner is None:
                raise PersistenceError("Job insert conflicted but no job found", detail={"run_id": run_id})
            logger.info("job_create_conflict", extra={"job_id": winner.id, "user_id": user_id, "run_id": run_id})
            return winner, False
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Could not create job: {e}", detail={"run_id": run_id}) from e

        logger.info(
            "job_created",
            extra={"job_id": job.id, "user_id": user_id, "run_id": run_id, "media_kind": kind.value, "attempt": attempt},
        )
        return job, True

    def mark_processing(self, kind: MediaKind | str, job_id: str) -> bool:
        """pending -> processing; False when another worker already took the job or it is terminal."""
        model = self.model_for(kind)
        now = datetime.now(timezone.utc)
        try:
            result = self.db.execute(
                update(model)
                .where(model.id == job_id, model.status == JobStatus.PENDING.value)
                .values(status=JobStatus.PROCESSING.value, started_at=now, updated_at=now)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Could not mark job processing: {e}", detail={"job_id": job_id}) from e
        return result.rowcount == 1

    def update_job_result(
        self,
        kind: MediaKind | str,
        job_id: str,
        status: JobStatus | str,
        output_url: str | None = None,
        output_public_id: str | None = None,
        provider: str | None = None,
        model_name: str | None = None,
        attempt_count: int | None = None,
        provider_meta: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> bool:
        """
        Single terminal write, applied only while the job is still pending/processing.
        False means the job was already terminal (e.g. swept) and this result is discarded.
        """
        status = JobStatus(status)
        if status not in (JobStatus.COMPLETED, JobStatus.FAILED):
            raise ValueError(f"Not a terminal status: {status}")
        if status == JobStatus.COMPLETED and not output_url:
            raise ValueError("A completed job needs an output url")

        model = self.model_for(kind)
        now = datetime.now(timezone.utc)
        values: dict[str, Any] = {
            "status": status.value,
            "output_url": output_url,
            "output_public_id": output_public_id,
            "error": error,
            "finished_at": now,
            "updated_at": now,
        }
        if provider is not None:
            values["provider"] = provider
        if model_name is not None:
            values["model"] = model_name
        if attempt_count is not None:
            values["attempt_count"] = attempt_count
        if provider_meta is not None:
            values["provider_meta"] = provider_meta

        try:
            result = self.db.execute(
                update(model)
                .where(model.id == job_id, model.status.in_(ACTIVE_STATUSES))
                .values(**values)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Could not write job result: {e}", detail={"job_id": job_id}) from e

        if result.rowcount == 0:
            logger.warning("job_result_discarded", extra={"job_id": job_id, "status": status.value})
            return False
        logger.info("job_result_written", extra={"job_id": job_id, "status": status.value, "provider": provider})
        return True

    def find_stuck(self, kind: MediaKind | str, older_than_seconds: int, limit: int = 200) -> list:
        """Jobs still pending/processing whose last update is older than the ceiling."""
        model = self.model_for(kind)
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=older_than_seconds)
        return (
            self.db.query(model)
            .filter(model.status.in_(ACTIVE_STATUSES), model.updated_at < cutoff)
            .order_by(model.updated_at)
            .limit(limit)
            .all()
        )
