"""
Media generation with multi-provider cascade.
"""
from .base import (
    GenerationProvider,
    GenerationRequest,
    PollHandle,
    ProviderOutput,
    ProviderRef,
    sanitize_response_for_log,
)
from .cascade import CascadeExecutor, CascadeResult
from .factory import ProviderFactory
from .failure_types import FailureType, classify_failure
from .normalize import normalize_output

__all__ = [
    "GenerationProvider",
    "GenerationRequest",
    "PollHandle",
    "ProviderOutput",
    "ProviderRef",
    "sanitize_response_for_log",
    "CascadeExecutor",
    "CascadeResult",
    "ProviderFactory",
    "FailureType",
    "classify_failure",
    "normalize_output",
]
