"""
Main FastAPI application for the Stefna generation API.
Serves generations, credits, admin config, health and metrics.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from stefna.api.routes import admin, credits, generations, health
from stefna.core.config import settings
from stefna.core.config_cache import ConfigCache
from stefna.core.logging import configure_logging
from stefna.services.errors import (
    CascadeExhausted,
    GenerationDisabled,
    GenerationServiceError,
    InsufficientCredits,
    NotFound,
    PersistenceError,
    ValidationError,
)
from stefna.utils.metrics import router as metrics_router

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: 400,
    InsufficientCredits: 402,
    NotFound: 404,
    CascadeExhausted: 502,
    GenerationDisabled: 503,
    PersistenceError: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    if settings.app_env == "local":
        from stefna.db.base import Base
        from stefna.db.session import engine
        import stefna.models  # noqa: F401

        Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(
    title="Stefna Generation API",
    description="Generation jobs, credits and provider cascade",
    version="1.0.0",
    lifespan=lifespan,
)
app.state.config_cache = ConfigCache(settings.config_cache_ttl_seconds)

# CORS
origins = settings.cors_origins_list
if not origins:
    origins = ["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:8888"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def status_for(exc: GenerationServiceError) -> int:
    for error_type, status_code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status_code
    return 500


@app.exception_handler(GenerationServiceError)
async def generation_error_handler(request: Request, exc: GenerationServiceError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(
            "request_failed",
            extra={"path": request.url.path, "method": request.method, "status_code": status_code, "error": str(exc)},
        )
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "message": str(exc), "detail": exc.detail or None},
    )


# Routers
app.include_router(health.router, tags=["health"])
app.include_router(generations.router)
app.include_router(credits.router)
app.include_router(admin.router)
app.include_router(metrics_router)
