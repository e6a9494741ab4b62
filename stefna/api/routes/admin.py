"""
Admin API: runtime generation config (enable flag, per-kind cost overrides, disabled providers).
"""
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from stefna.api.deps import require_admin
from stefna.core.config_cache import load_runtime_config, save_runtime_config
from stefna.db.session import get_db
from stefna.schemas.admin import RuntimeConfigOut, RuntimeConfigUpdate
from stefna.services.errors import ValidationError
from stefna.services.jobs.media_kinds import parse_media_kind

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


def _out(config) -> RuntimeConfigOut:
    return RuntimeConfigOut(
        generation_enabled=config.generation_enabled,
        cost_overrides=dict(config.cost_overrides),
        disabled_providers=list(config.disabled_providers),
    )


@router.get("/config", response_model=RuntimeConfigOut)
def get_config(db: Session = Depends(get_db)):
    return _out(load_runtime_config(db))


@router.put("/config", response_model=RuntimeConfigOut)
def update_config(payload: RuntimeConfigUpdate, request: Request, db: Session = Depends(get_db)):
    cost_overrides = None
    if payload.cost_overrides is not None:
        cost_overrides = {}
        for kind, cost in payload.cost_overrides.items():
            try:
                cost_overrides[parse_media_kind(kind).value] = cost
            except ValueError:
                raise ValidationError(f"Unknown media kind: {kind}")
    config = save_runtime_config(
        db,
        generation_enabled=payload.generation_enabled,
        cost_overrides=cost_overrides,
        disabled_providers=payload.disabled_providers,
    )
    request.app.state.config_cache.invalidate()
    logger.info("admin_config_updated", extra={"status": "enabled" if config.generation_enabled else "disabled"})
    return _out(config)
