"""
Error taxonomy for the generation pipeline.
Validation and credit errors surface with no side effects; provider errors are absorbed
by the cascade; everything after a reservation resolves to a refund before surfacing.
"""
from typing import Any


class GenerationServiceError(Exception):
    """Base class; code is the stable machine-readable label returned to clients."""

    code = "internal_error"

    def __init__(self, message: str, detail: dict[str, Any] | None = None):
        super().__init__(message)
        self.detail = detail or {}


class ValidationError(GenerationServiceError):
    code = "validation_error"


class InsufficientCredits(GenerationServiceError):
    code = "insufficient_credits"

    def __init__(self, user_id: str, balance: int, required: int):
        super().__init__(
            f"Insufficient credits: need {required}, have {balance}",
            detail={"balance": balance, "required": required, "shortfall": max(required - balance, 0)},
        )
        self.user_id = user_id
        self.balance = balance
        self.required = required


class ProviderError(GenerationServiceError):
    """Single-attempt provider failure. detail may hold http_status, retry_after, raw provider text."""

    code = "provider_error"

    def __init__(self, message: str, provider: str | None = None, detail: dict[str, Any] | None = None):
        super().__init__(message, detail)
        self.provider = provider


class ProviderTimeout(ProviderError):
    code = "provider_timeout"


class MalformedOutput(ProviderError):
    code = "malformed_output"


class ProviderUnavailable(ProviderError):
    """Provider not configured or its circuit breaker is open."""

    code = "provider_unavailable"


class StorageError(GenerationServiceError):
    code = "storage_error"


class CascadeExhausted(GenerationServiceError):
    code = "cascade_exhausted"

    def __init__(self, message: str, last_error: Exception | None = None, attempts: list[dict] | None = None):
        super().__init__(message, detail={"attempts": attempts or []})
        self.last_error = last_error
        self.attempts = attempts or []
        if last_error is not None:
            self.__cause__ = last_error


class PersistenceError(GenerationServiceError):
    code = "persistence_error"


class NotFound(GenerationServiceError):
    code = "not_found"


class GenerationDisabled(GenerationServiceError):
    """Generation switched off from the admin config."""

    code = "generation_disabled"
