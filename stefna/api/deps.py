import secrets

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from stefna.core.config import settings
from stefna.db.session import get_db
from stefna.services.orchestrator import GenerationOrchestrator, build_orchestrator


def get_orchestrator(request: Request, db: Session = Depends(get_db)) -> GenerationOrchestrator:
    return build_orchestrator(
        db,
        request.app.state.config_cache,
        task_queue=getattr(request.app.state, "task_queue", None),
        cascade=getattr(request.app.state, "cascade", None),
    )


def resolve_user_id(request: Request, explicit: str | None) -> str:
    """
    User id set by the auth gateway header; an explicit userId must match it.
    Without the header (direct/internal calls) the explicit value is used.
    """
    header_user = (request.headers.get(settings.user_id_header) or "").strip()
    explicit_user = (explicit or "").strip()
    if header_user:
        if explicit_user and explicit_user != header_user:
            raise HTTPException(status_code=403, detail="userId does not match the authenticated user")
        return header_user
    if not explicit_user:
        raise HTTPException(status_code=400, detail="userId is required")
    return explicit_user


def require_admin(x_admin_key: str | None = Header(default=None)) -> None:
    if not settings.admin_api_key:
        raise HTTPException(status_code=503, detail="Admin API is not configured")
    if not x_admin_key or not secrets.compare_digest(x_admin_key, settings.admin_api_key):
        raise HTTPException(status_code=401, detail="Invalid admin key")
