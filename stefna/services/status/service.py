"""
Job status lookup by job id or run id, scoped to the requesting user.
Without a media kind every job table is searched in JOB_MODELS order; the first match wins.
"""
from dataclasses import asdict, dataclass
from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.orm import Session

from stefna.models.generation_job import JOB_MODELS, MediaKind

NOT_FOUND = "not_found"


@dataclass
class JobStatusView:
    status: str
    output_url: str | None = None
    error: str | None = None
    job_id: str | None = None
    run_id: str | None = None
    media_kind: str | None = None
    provider: str | None = None
    attempt: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def found(self) -> bool:
        return self.status != NOT_FOUND

    def to_dict(self) -> dict:
        return asdict(self)


class StatusResolver:
    def __init__(self, db: Session):
        self.db = db

    def get_status(self, user_id: str, job_or_run_id: str, media_kind: MediaKind | str | None = None) -> JobStatusView:
        if not user_id or not job_or_run_id:
            return JobStatusView(status=NOT_FOUND)

        if media_kind:
            models = [JOB_MODELS[MediaKind(media_kind)]]
        else:
            models = list(JOB_MODELS.values())

        for model in models:
            job = (
                self.db.query(model)
                .filter(
                    model.user_id == user_id,
                    or_(model.id == job_or_run_id, model.run_id == job_or_run_id),
                )
                .order_by(model.created_at.desc())
                .first()
            )
            if job is not None:
                return self._view(job)
        return JobStatusView(status=NOT_FOUND)

    @staticmethod
    def _view(job) -> JobStatusView:
        return JobStatusView(
            status=job.status,
            output_url=job.output_url,
            # Raw provider text stays in provider_meta; clients only get a short reason
            error=job.error[:300] if job.error else None,
            job_id=job.id,
            run_id=job.run_id,
            media_kind=job.media_kind,
            provider=job.provider,
            attempt=job.attempt,
            created_at=job.created_at,
            updated_at=job.updated_at,
            finished_at=job.finished_at,
        )
