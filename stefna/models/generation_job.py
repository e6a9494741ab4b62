"""
Generation job tables, one per media kind.
All tables share GenerationJobMixin; (user_id, run_id) is unique within each table.
"""
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import declared_attr

from stefna.db.base import Base


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_STATUSES = (JobStatus.PENDING.value, JobStatus.PROCESSING.value)
TERMINAL_STATUSES = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)


class MediaKind(str, Enum):
    PRESETS = "presets"
    CUSTOM = "custom"
    EMOTION_MASK = "emotion_mask"
    GHIBLI_REACTION = "ghibli_reaction"
    NEO_GLITCH = "neo_glitch"
    STORY_TIME = "story_time"


class GenerationJobMixin:
    @declared_attr
    def __table_args__(cls):
        return (UniqueConstraint("user_id", "run_id", name=f"uq_{cls.__tablename__}_user_run"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    run_id = Column(String, nullable=False, index=True)
    media_kind = Column(String, nullable=False)
    prompt = Column(Text, nullable=False)
    source_url = Column(String, nullable=True)
    output_url = Column(String, nullable=True)
    output_public_id = Column(String, nullable=True)
    status = Column(String, nullable=False, default=JobStatus.PENDING.value, index=True)
    provider = Column(String, nullable=True)
    model = Column(String, nullable=True)
    attempt_count = Column(Integer, nullable=False, default=0)  # providers tried in the cascade
    attempt = Column(Integer, nullable=False, default=1)  # generation attempt for this run_id
    ledger_request_id = Column(String, nullable=True)
    error = Column(Text, nullable=True)
    provider_meta = Column(JSON, nullable=False, default=dict)
    input_params = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_replayable(self) -> bool:
        return self.status == JobStatus.COMPLETED.value and bool(self.output_url)


class PresetsJob(GenerationJobMixin, Base):
    __tablename__ = "presets_media"


class CustomPromptJob(GenerationJobMixin, Base):
    __tablename__ = "custom_prompt_media"


class EmotionMaskJob(GenerationJobMixin, Base):
    __tablename__ = "emotion_mask_media"


class GhibliReactionJob(GenerationJobMixin, Base):
    __tablename__ = "ghibli_reaction_media"


class NeoGlitchJob(GenerationJobMixin, Base):
    __tablename__ = "neo_glitch_media"


class StoryTimeJob(GenerationJobMixin, Base):
    __tablename__ = "story_time_media"


# Fixed search order for status lookups without a media kind
JOB_MODELS: dict[MediaKind, type] = {
    MediaKind.NEO_GLITCH: NeoGlitchJob,
    MediaKind.EMOTION_MASK: EmotionMaskJob,
    MediaKind.PRESETS: PresetsJob,
    MediaKind.GHIBLI_REACTION: GhibliReactionJob,
    MediaKind.CUSTOM: CustomPromptJob,
    MediaKind.STORY_TIME: StoryTimeJob,
}
