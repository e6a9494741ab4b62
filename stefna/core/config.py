"""
Application configuration.
All settings are loaded from environment variables (or .env).
Provider credentials are optional: a provider without a key is skipped by the cascade.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: database_url has no default - it MUST be set.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    cors_origins: str = ""
    # Header set by the upstream auth gateway with the authenticated user id
    user_id_header: str = "X-User-Id"

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default
    db_pool_size: int = 10
    db_max_overflow: int = 20

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str = ""  # Empty = circuit breakers keep state in memory
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/1"
    # celery | inline (inline runs the job in-process, for local dev and tests)
    task_queue_backend: str = "celery"
    generation_queue: str = "generation"

    # ===========================================
    # BFL (Black Forest Labs)
    # ===========================================
    bfl_api_key: str = ""
    bfl_api_url: str = "https://api.bfl.ai/v1"
    bfl_timeout: float = 60.0
    bfl_poll_interval: float = 0.5

    # ===========================================
    # STABILITY.AI
    # ===========================================
    stability_api_key: str = ""
    stability_api_url: str = "https://api.stability.ai/v2beta/stable-image/generate"
    stability_timeout: float = 30.0

    # ===========================================
    # FAL.AI
    # ===========================================
    fal_key: str = ""
    fal_api_url: str = "https://fal.run"
    fal_timeout: float = 120.0

    # ===========================================
    # AIML API
    # ===========================================
    aiml_api_key: str = ""
    aiml_api_url: str = "https://api.aimlapi.com/v1"
    aiml_timeout: float = 90.0

    # ===========================================
    # REPLICATE
    # ===========================================
    replicate_api_token: str = ""
    replicate_api_url: str = "https://api.replicate.com/v1"
    replicate_timeout: float = 180.0
    replicate_poll_interval: float = 2.0

    # ===========================================
    # STORAGE (Cloudinary)
    # ===========================================
    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""
    cloudinary_upload_url: str = "https://api.cloudinary.com/v1_1"
    cloudinary_folder: str = "stefna/generated"
    cloudinary_timeout: float = 60.0

    # ===========================================
    # CREDITS
    # ===========================================
    starter_credits: int = 30
    default_generation_cost: int = 2
    # Reservations older than this are refunded by the sweep
    reservation_max_age_seconds: int = 1800

    # ===========================================
    # ORCHESTRATION
    # ===========================================
    # Coarse ceiling for one job; pending/processing jobs older than this are failed by the sweep
    job_ceiling_seconds: int = 600
    max_prompt_length: int = 4000
    config_cache_ttl_seconds: float = 60.0

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_enabled: bool = True
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # ADMIN API
    # ===========================================
    admin_api_key: str | None = None

    # ===========================================
    # LOGGING
    # ===========================================
    log_level: str = "INFO"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("task_queue_backend")
    @classmethod
    def validate_task_queue_backend(cls, v: str) -> str:
        value = v.strip().lower()
        if value not in ("celery", "inline"):
            raise ValueError("task_queue_backend must be 'celery' or 'inline'")
        return value

    @field_validator("starter_credits", "default_generation_cost")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("credit amounts must be >= 0")
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def cloudinary_configured(self) -> bool:
        return bool(self.cloudinary_cloud_name and self.cloudinary_api_key and self.cloudinary_api_secret)

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
