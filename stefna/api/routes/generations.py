"""
Generation API: submit a job for a media kind, poll its status.
"""
from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.orm import Session

from stefna.api.deps import get_orchestrator, resolve_user_id
from stefna.db.session import get_db
from stefna.schemas.generation import GenerationStatusOut, GenerationSubmitIn, GenerationSubmitOut
from stefna.services.errors import ValidationError
from stefna.services.jobs.media_kinds import parse_media_kind
from stefna.services.orchestrator import GenerationOrchestrator, SubmitCommand
from stefna.services.status.service import StatusResolver

router = APIRouter(prefix="/generations", tags=["generations"])


@router.post("", response_model=GenerationSubmitOut, response_model_by_alias=True, response_model_exclude_none=True)
def submit_generation(
    payload: GenerationSubmitIn,
    request: Request,
    response: Response,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """202 for a newly created job, 200 when an existing job for this run id is returned."""
    result = orchestrator.submit(
        SubmitCommand(
            user_id=resolve_user_id(request, payload.user_id),
            prompt=payload.prompt,
            media_kind=payload.media_kind,
            run_id=payload.run_id,
            source_url=payload.source_url,
            negative_prompt=payload.negative_prompt,
            seed=payload.seed,
        )
    )
    response.status_code = 202 if result.is_new else 200
    return GenerationSubmitOut(
        job_id=result.job_id,
        run_id=result.run_id,
        media_kind=result.media_kind,
        status=result.status,
        output_url=result.output_url,
        attempt=result.attempt,
    )


@router.get("/status", response_model=GenerationStatusOut, response_model_by_alias=True, response_model_exclude_none=True)
def generation_status(
    request: Request,
    id: str = Query(..., min_length=1),
    media_kind: str | None = Query(default=None, alias="mediaKind"),
    user_id: str | None = Query(default=None, alias="userId"),
    db: Session = Depends(get_db),
):
    kind = None
    if media_kind:
        try:
            kind = parse_media_kind(media_kind)
        except ValueError:
            raise ValidationError(f"Unknown mediaKind: {media_kind}")
    view = StatusResolver(db).get_status(resolve_user_id(request, user_id), id, kind)
    return GenerationStatusOut(
        status=view.status,
        output_url=view.output_url,
        error=view.error,
        job_id=view.job_id,
        run_id=view.run_id,
        media_kind=view.media_kind,
        provider=view.provider,
    )
