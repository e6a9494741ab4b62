"""
Failure classification for provider attempts.
Used by the cascade for structured logs, per-attempt diagnostics and metrics labels.
"""
from enum import Enum

from stefna.services.errors import (
    MalformedOutput,
    ProviderError,
    ProviderTimeout,
    ProviderUnavailable,
    StorageError,
)


class FailureType(str, Enum):
    TRANSPORT_TRANSIENT = "transport_transient"  # 429, 5xx, network
    CLIENT_NON_RETRIABLE = "client_non_retriable"  # 4xx except 429
    TIMEOUT = "timeout"
    MALFORMED_OUTPUT = "malformed_output"  # empty / unreadable / content filtered
    UNAVAILABLE = "unavailable"  # not configured, circuit open
    STORAGE = "storage"  # re-hosting failed
    UNEXPECTED = "unexpected"


def classify_failure(error: BaseException) -> FailureType:
    if isinstance(error, ProviderTimeout):
        return FailureType.TIMEOUT
    if isinstance(error, MalformedOutput):
        return FailureType.MALFORMED_OUTPUT
    if isinstance(error, ProviderUnavailable):
        return FailureType.UNAVAILABLE
    if isinstance(error, StorageError):
        return FailureType.STORAGE
    if isinstance(error, ProviderError):
        http_status = error.detail.get("http_status")
        if http_status is not None:
            if http_status == 429 or 500 <= http_status < 600:
                return FailureType.TRANSPORT_TRANSIENT
            if 400 <= http_status < 500:
                return FailureType.CLIENT_NON_RETRIABLE
        return FailureType.TRANSPORT_TRANSIENT
    return FailureType.UNEXPECTED
