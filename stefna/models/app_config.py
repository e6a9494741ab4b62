from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer

from stefna.db.base import Base


class AppConfig(Base):
    """Runtime generation config (single row, id=1). Edited from the admin API, read through ConfigCache."""

    __tablename__ = "app_config"

    id = Column(Integer, primary_key=True, default=1)
    generation_enabled = Column(Boolean, nullable=False, default=True)
    cost_overrides = Column(JSON, nullable=False, default=dict)  # {"presets": 3, ...}
    disabled_providers = Column(JSON, nullable=False, default=list)  # ["stability", "fal:fal-ai/wan-pro/image-to-video"]
    updated_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
