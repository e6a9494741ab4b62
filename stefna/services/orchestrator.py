"""
Generation orchestrator: submit (dedup -> reserve -> create -> enqueue) and
execute (processing -> cascade -> terminal write -> finalize), for every media kind.

Any failure after a successful reservation is resolved into a refund before it surfaces.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import urlparse

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stefna.core.config import settings as default_settings
from stefna.core.config_cache import ConfigCache, RuntimeConfig, load_runtime_config
from stefna.models.generation_job import ACTIVE_STATUSES, JobStatus, MediaKind
from stefna.models.ledger_entry import LEDGER_REFUNDED
from stefna.services.circuit_breaker import get_circuit_breaker
from stefna.services.credits.service import CreditLedger
from stefna.services.errors import (
    CascadeExhausted,
    GenerationDisabled,
    InsufficientCredits,
    PersistenceError,
    ValidationError,
)
from stefna.services.generation.base import GenerationProvider, GenerationRequest
from stefna.services.generation.cascade import CascadeExecutor
from stefna.services.generation.factory import ProviderFactory
from stefna.services.jobs.media_kinds import MEDIA_KINDS, MediaKindSpec, build_prompt, parse_media_kind
from stefna.services.jobs.service import JobStore, ledger_request_id, next_attempt
from stefna.services.storage.base import Storage
from stefna.services.task_queue import TaskQueue, get_task_queue
from stefna.utils.metrics import active_jobs, job_duration_seconds, jobs_completed_total, jobs_failed_total, jobs_submitted_total

logger = logging.getLogger(__name__)

MAX_RUN_ID_LENGTH = 128


@dataclass
class SubmitCommand:
    user_id: str
    prompt: str
    media_kind: str
    run_id: str
    source_url: str | None = None
    negative_prompt: str | None = None
    seed: int | None = None


@dataclass
class SubmitResult:
    job_id: str
    run_id: str
    media_kind: str
    status: str
    output_url: str | None = None
    is_new: bool = False
    attempt: int = 1


ProviderBuilder = Callable[[MediaKindSpec, RuntimeConfig], list[GenerationProvider]]


class GenerationOrchestrator:
    def __init__(
        self,
        db: Session,
        cascade: CascadeExecutor,
        task_queue: TaskQueue,
        config_cache: ConfigCache,
        ledger: CreditLedger | None = None,
        jobs: JobStore | None = None,
        provider_builder: ProviderBuilder | None = None,
        settings: Any = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.db = db
        self.settings = settings or default_settings
        self.ledger = ledger or CreditLedger(db)
        self.jobs = jobs or JobStore(db)
        self.cascade = cascade
        self.task_queue = task_queue
        self.config_cache = config_cache
        self.provider_builder = provider_builder or self._default_providers
        self.clock = clock

    def runtime_config(self) -> RuntimeConfig:
        return self.config_cache.get(lambda: load_runtime_config(self.db))

    def _default_providers(self, spec: MediaKindSpec, runtime: RuntimeConfig) -> list[GenerationProvider]:
        return ProviderFactory.build_cascade(spec.providers, self.settings, runtime.disabled_providers)

    # ------------------------------------------------------------------ submit

    def validate(self, command: SubmitCommand) -> MediaKind:
        if not command.user_id or not command.user_id.strip():
            raise ValidationError("userId is required")
        if not command.run_id or not command.run_id.strip():
            raise ValidationError("runId is required")
        if len(command.run_id) > MAX_RUN_ID_LENGTH:
            raise ValidationError(f"runId must be at most {MAX_RUN_ID_LENGTH} characters")
        if not command.prompt or not command.prompt.strip():
            raise ValidationError("prompt is required")
        if len(command.prompt) > self.settings.max_prompt_length:
            raise ValidationError(f"prompt must be at most {self.settings.max_prompt_length} characters")
        try:
            kind = parse_media_kind(command.media_kind)
        except ValueError:
            raise ValidationError(f"Unknown mediaKind: {command.media_kind}", detail={"mediaKind": command.media_kind})

        spec = MEDIA_KINDS[kind]
        if command.source_url:
            parsed = urlparse(command.source_url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise ValidationError("sourceUrl must be an http(s) URL")
        elif spec.requires_source:
            raise ValidationError(f"sourceUrl is required for {kind.value}")
        return kind

    def submit(self, command: SubmitCommand) -> SubmitResult:
        """
        Create (or return) the job for (user, run id, media kind).
        A completed job is replayed and an in-flight job returned, both without a new reservation.
        Raises ValidationError, GenerationDisabled, InsufficientCredits, PersistenceError.
        """
        kind = self.validate(command)
        spec = MEDIA_KINDS[kind]
        user_id = command.user_id.strip()
        run_id = command.run_id.strip()
        log_extra = {"user_id": user_id, "run_id": run_id, "media_kind": kind.value}

        existing = self.jobs.find(user_id, run_id, kind)
        if existing is not None and existing.is_replayable:
            jobs_submitted_total.labels(media_kind=kind.value, outcome="replayed").inc()
            logger.info("submit_replayed", extra={**log_extra, "job_id": existing.id})
            return self._result(existing, is_new=False)
        if existing is not None and existing.status in ACTIVE_STATUSES:
            jobs_submitted_total.labels(media_kind=kind.value, outcome="in_flight").inc()
            logger.info("submit_in_flight", extra={**log_extra, "job_id": existing.id})
            return self._result(existing, is_new=False)

        runtime = self.runtime_config()
        if not runtime.generation_enabled:
            raise GenerationDisabled("Generation is temporarily disabled")

        attempt = self._next_attempt(user_id, run_id, kind, existing)
        request_id = ledger_request_id(kind, run_id, attempt)
        cost = runtime.cost_for(kind.value, spec.cost)
        try:
            reservation = self.ledger.reserve(
                user_id,
                cost,
                request_id,
                spec.action,
                meta={"run_id": run_id, "media_kind": kind.value, "attempt": attempt},
            )
        except InsufficientCredits:
            jobs_submitted_total.labels(media_kind=kind.value, outcome="rejected").inc()
            raise

        try:
            job, is_new = self.jobs.create_or_get_job(
                user_id,
                run_id,
                kind,
                prompt=build_prompt(spec, command.prompt),
                source_url=command.source_url,
                input_params={
                    "prompt": command.prompt,
                    "negative_prompt": command.negative_prompt,
                    "seed": command.seed,
                    "cost": cost,
                },
                attempt=attempt,
                ledger_request_id=request_id,
            )
        except PersistenceError:
            if not reservation.replayed and not self._claimed_by_job(user_id, run_id, kind, request_id):
                self._refund(user_id, request_id, "job_create_failed", log_extra)
            raise

        if not is_new:
            # Lost a race: the winner's job owns its own reservation
            if not reservation.replayed and job.ledger_request_id != request_id:
                self._refund(user_id, request_id, "duplicate_submit", log_extra)
            jobs_submitted_total.labels(media_kind=kind.value, outcome="in_flight").inc()
            return self._result(job, is_new=False)

        if reservation.replayed:
            # The reservation came from a concurrent submit that may have refunded it since
            entry = self.ledger.get_entry(user_id, request_id)
            if entry is None or entry.status == LEDGER_REFUNDED:
                self.jobs.update_job_result(kind, job.id, JobStatus.FAILED, error="credit reservation was refunded")
                raise PersistenceError("Credit reservation is no longer held", detail={"job_id": job.id})

        try:
            self.task_queue.enqueue(kind.value, job.id)
        except Exception as e:
            logger.exception("job_enqueue_failed", extra={**log_extra, "job_id": job.id})
            self.jobs.update_job_result(kind, job.id, JobStatus.FAILED, error=f"enqueue failed: {e}")
            self._refund(user_id, request_id, "enqueue_failed", log_extra)
            raise PersistenceError("Could not enqueue generation job", detail={"job_id": job.id}) from e

        jobs_submitted_total.labels(media_kind=kind.value, outcome="created").inc()
        logger.info("submit_created", extra={**log_extra, "job_id": job.id, "attempt": attempt, "amount": cost})
        # Inline queues may already have finished the job
        self.db.expire(job)
        return self._result(job, is_new=True)

    # ----------------------------------------------------------------- execute

    def execute(self, media_kind: str, job_id: str) -> dict:
        """
        Run one job to a terminal state and settle its reservation.
        Returns a small summary dict (worker task result); never raises for provider failures.
        """
        kind = MediaKind(media_kind)
        spec = MEDIA_KINDS[kind]
        job = self.jobs.get(kind, job_id)
        if job is None:
            logger.error("execute_job_not_found", extra={"job_id": job_id, "media_kind": kind.value})
            return {"ok": False, "error": "job_not_found"}

        if not self.jobs.mark_processing(kind, job_id):
            self.db.refresh(job)
            logger.info("execute_skipped", extra={"job_id": job_id, "status": job.status})
            return {"ok": False, "skipped": job.status}
        self.db.refresh(job)

        log_extra = {"job_id": job.id, "user_id": job.user_id, "run_id": job.run_id, "media_kind": kind.value}
        user_id = job.user_id
        request_id = job.ledger_request_id
        params = job.input_params or {}
        request = GenerationRequest(
            prompt=job.prompt,
            source_url=job.source_url,
            resource_type=spec.resource_type,
            negative_prompt=params.get("negative_prompt"),
            strength=spec.strength,
            guidance_scale=spec.guidance_scale,
            steps=spec.steps,
            seed=params.get("seed"),
            aspect_ratio=spec.aspect_ratio,
            extra_params=dict(spec.extra_params) or None,
        )

        started = self.clock()
        deadline = started + self.settings.job_ceiling_seconds
        active_jobs.inc()
        try:
            providers = self.provider_builder(spec, self.runtime_config())
            result = self.cascade.execute(request, providers, deadline=deadline, public_id=job.id, log_extra=log_extra)
        except CascadeExhausted as e:
            return self._fail(kind, job_id, user_id, request_id, e, "cascade_exhausted", log_extra)
        except Exception as e:
            logger.exception("execute_unexpected_error", extra=log_extra)
            return self._fail(kind, job_id, user_id, request_id, e, "unexpected", log_extra)
        finally:
            active_jobs.dec()
            job_duration_seconds.labels(media_kind=kind.value).observe(self.clock() - started)

        try:
            written = self.jobs.update_job_result(
                kind,
                job_id,
                JobStatus.COMPLETED,
                output_url=result.output_url,
                output_public_id=result.public_id,
                provider=result.provider,
                model_name=result.model,
                attempt_count=result.attempt_count,
                provider_meta={"attempts": result.attempts},
            )
        except PersistenceError:
            logger.exception("execute_result_write_failed", extra=log_extra)
            try:
                self.jobs.update_job_result(kind, job_id, JobStatus.FAILED, error="Result could not be saved")
            except PersistenceError:
                logger.exception("execute_failure_write_failed", extra=log_extra)
            self._refund(user_id, request_id, "persistence_error", log_extra)
            jobs_failed_total.labels(media_kind=kind.value, reason="persistence_error").inc()
            return {"ok": False, "error": "persistence_error"}

        if not written:
            # Swept past the ceiling while running; the sweep already refunded
            self._refund(user_id, request_id, "result_discarded", log_extra)
            return {"ok": False, "status": "discarded"}

        if request_id:
            self.ledger.finalize(user_id, request_id, success=True, meta={"job_id": job_id, "provider": result.provider})
        jobs_completed_total.labels(media_kind=kind.value, provider=result.provider).inc()
        logger.info(
            "execute_completed",
            extra={**log_extra, "provider": result.provider, "model": result.model, "attempt": result.attempt_count},
        )
        return {"ok": True, "status": JobStatus.COMPLETED.value, "output_url": result.output_url, "provider": result.provider}

    # ------------------------------------------------------------------ sweeps

    def sweep_stuck_jobs(self, older_than_seconds: int | None = None) -> int:
        """Fail and refund every pending/processing job older than the job ceiling."""
        ceiling = self.settings.job_ceiling_seconds if older_than_seconds is None else older_than_seconds
        swept = 0
        for kind in MEDIA_KINDS:
            for job in self.jobs.find_stuck(kind, ceiling):
                written = self.jobs.update_job_result(
                    kind,
                    job.id,
                    JobStatus.FAILED,
                    error="Job exceeded the processing time limit",
                )
                if not written:
                    continue
                swept += 1
                jobs_failed_total.labels(media_kind=kind.value, reason="ceiling").inc()
                self._refund(job.user_id, job.ledger_request_id, "job_ceiling", {"job_id": job.id, "media_kind": kind.value})
        if swept:
            logger.warning("stuck_jobs_swept", extra={"count": swept})
        return swept

    # ----------------------------------------------------------------- helpers

    def _fail(
        self,
        kind: MediaKind,
        job_id: str,
        user_id: str,
        request_id: str | None,
        error: Exception,
        reason: str,
        log_extra: dict,
    ) -> dict:
        cause = error.last_error if isinstance(error, CascadeExhausted) and error.last_error else error
        attempts = error.attempts if isinstance(error, CascadeExhausted) else []
        try:
            self.jobs.update_job_result(
                kind,
                job_id,
                JobStatus.FAILED,
                attempt_count=len(attempts),
                provider_meta={"attempts": attempts, "reason": reason},
                error=str(cause)[:1000],
            )
        except PersistenceError:
            logger.exception("execute_failure_write_failed", extra=log_extra)
        self._refund(user_id, request_id, reason, log_extra)
        jobs_failed_total.labels(media_kind=kind.value, reason=reason).inc()
        logger.warning("execute_failed", extra={**log_extra, "error": str(cause)[:300], "count": len(attempts)})
        return {"ok": False, "status": JobStatus.FAILED.value, "error": reason}

    def _next_attempt(self, user_id: str, run_id: str, kind: MediaKind, existing) -> int:
        """First attempt number whose ledger request id has not been refunded already."""
        attempt = next_attempt(existing)
        while True:
            entry = self.ledger.get_entry(user_id, ledger_request_id(kind, run_id, attempt))
            if entry is None or entry.status != LEDGER_REFUNDED:
                return attempt
            attempt += 1

    def _claimed_by_job(self, user_id: str, run_id: str, kind: MediaKind, request_id: str) -> bool:
        """True when a job row (from a concurrent submit) already holds this reservation."""
        try:
            job = self.jobs.find(user_id, run_id, kind)
        except SQLAlchemyError:
            self.db.rollback()
            return False
        return job is not None and job.ledger_request_id == request_id

    def _refund(self, user_id: str, request_id: str | None, reason: str, log_extra: dict) -> None:
        if not request_id:
            return
        try:
            self.ledger.finalize(user_id, request_id, success=False, meta={"refund_reason": reason})
        except PersistenceError:
            # Left reserved; the stale reservation sweep refunds it
            logger.exception("ledger_refund_failed", extra={**log_extra, "request_id": request_id})

    @staticmethod
    def _result(job, is_new: bool) -> SubmitResult:
        return SubmitResult(
            job_id=job.id,
            run_id=job.run_id,
            media_kind=job.media_kind,
            status=job.status,
            output_url=job.output_url,
            is_new=is_new,
            attempt=job.attempt,
        )


def build_cascade_executor(storage: Storage | None = None, settings: Any = None) -> CascadeExecutor:
    settings = settings or default_settings
    if storage is None:
        from stefna.services.storage.cloudinary import CloudinaryStorage

        storage = CloudinaryStorage()
    return CascadeExecutor(storage, breaker_factory=get_circuit_breaker if settings.cb_enabled else None)


def build_orchestrator(
    db: Session,
    config_cache: ConfigCache,
    task_queue: TaskQueue | None = None,
    cascade: CascadeExecutor | None = None,
) -> GenerationOrchestrator:
    """Composition root shared by the API and the workers."""
    return GenerationOrchestrator(
        db,
        cascade=cascade or build_cascade_executor(),
        task_queue=task_queue or get_task_queue(),
        config_cache=config_cache,
    )
