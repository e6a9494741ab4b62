"""
ORM models. Importing this package registers every table on Base.metadata.
"""
from .app_config import AppConfig
from .credit_account import CreditAccount
from .generation_job import (
    ACTIVE_STATUSES,
    JOB_MODELS,
    TERMINAL_STATUSES,
    CustomPromptJob,
    EmotionMaskJob,
    GenerationJobMixin,
    GhibliReactionJob,
    JobStatus,
    MediaKind,
    NeoGlitchJob,
    PresetsJob,
    StoryTimeJob,
)
from .ledger_entry import LEDGER_COMPLETED, LEDGER_REFUNDED, LEDGER_RESERVED, LedgerEntry

__all__ = [
    "AppConfig",
    "CreditAccount",
    "LedgerEntry",
    "LEDGER_RESERVED",
    "LEDGER_COMPLETED",
    "LEDGER_REFUNDED",
    "GenerationJobMixin",
    "JobStatus",
    "MediaKind",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "JOB_MODELS",
    "PresetsJob",
    "CustomPromptJob",
    "EmotionMaskJob",
    "GhibliReactionJob",
    "NeoGlitchJob",
    "StoryTimeJob",
]
