"""
Base classes and types for generation providers.
Used by the factory, the cascade executor and all providers (bfl, stability, fal, aiml, replicate).
"""
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

import httpx

from stefna.services.errors import MalformedOutput, ProviderError, ProviderTimeout


@dataclass
class GenerationRequest:
    """Provider-agnostic generation input."""
    prompt: str
    source_url: str | None = None
    resource_type: str = "image"  # image | video
    negative_prompt: str | None = None
    strength: float | None = None
    guidance_scale: float | None = None
    steps: int | None = None
    seed: int | None = None
    aspect_ratio: str | None = None
    extra_params: dict[str, Any] | None = None


@dataclass
class PollHandle:
    """Async job reference returned by providers that finish out of band."""
    url: str
    provider: str
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderOutput:
    """
    Raw provider result before normalization. One of url / urls / inline / poll is expected;
    the cascade turns any of them into a durable URL.
    """
    url: str | None = None
    urls: list[Any] | None = None
    inline: str | bytes | None = None
    poll: PollHandle | None = None
    content_type: str | None = None
    raw_response_sanitized: dict[str, Any] | None = None


@dataclass(frozen=True)
class ProviderRef:
    """One entry of a cascade: provider name, model, per-model parameter overrides."""
    name: str
    model: str
    params: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def key(self) -> str:
        return f"{self.name}:{self.model}"


def _sanitize_value(value: Any) -> Any:
    """Recursively replace inline media payloads with a placeholder."""
    if value is None:
        return None
    if isinstance(value, dict):
        return {
            k: "[REDACTED]" if k in ("image", "b64_json", "base64", "data") and isinstance(v, str) and len(v) > 256
            else _sanitize_value(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_sanitize_value(v) for v in value]
    if isinstance(value, str) and value.startswith("data:") and len(value) > 256:
        return value[:32] + "...[REDACTED]"
    return value


def sanitize_response_for_log(result: Any) -> dict[str, Any]:
    """Return a copy of a provider response safe for logging and provider_meta (no inline media)."""
    if not result:
        return {}
    out = _sanitize_value(result)
    return out if isinstance(out, dict) else {"value": out}


@contextmanager
def translate_http_errors(provider: str) -> Iterator[None]:
    """Map httpx failures to the provider error taxonomy."""
    try:
        yield
    except httpx.TimeoutException as e:
        raise ProviderTimeout(f"{provider} request timed out: {e}", provider=provider) from e
    except httpx.HTTPStatusError as e:
        response = e.response
        detail: dict[str, Any] = {"http_status": response.status_code, "body": response.text[:500]}
        retry_after = response.headers.get("retry-after")
        if retry_after:
            detail["retry_after"] = retry_after
        raise ProviderError(
            f"{provider} returned HTTP {response.status_code}",
            provider=provider,
            detail=detail,
        ) from e
    except httpx.HTTPError as e:
        raise ProviderError(f"{provider} transport error: {e}", provider=provider) from e
    except ValueError as e:
        # JSON decode errors and unexpected payload shapes
        raise MalformedOutput(f"{provider} returned an unreadable response: {e}", provider=provider) from e


class GenerationProvider(ABC):
    """Base class for generation providers."""

    name = "base"

    def __init__(self, config: dict, model: str, params: dict[str, Any] | None = None) -> None:
        self.config = config
        self.model = model
        self.params = params or {}
        self.timeout = float(config.get("timeout", 60.0))

    @property
    def key(self) -> str:
        return f"{self.name}:{self.model}"

    @abstractmethod
    def is_available(self) -> bool:
        """Check if provider is configured."""
        pass

    @abstractmethod
    def generate(self, request: GenerationRequest, timeout: float) -> ProviderOutput:
        """Start or run a generation. Raises ProviderError (or a subclass) on failure."""
        pass

    def poll(self, handle: PollHandle, deadline: float) -> ProviderOutput:
        """Resolve a poll handle; deadline is a time.monotonic() value. Override for async providers."""
        raise MalformedOutput(f"{self.name} does not support poll handles", provider=self.key)

    def merged_params(self, request: GenerationRequest) -> dict[str, Any]:
        """Numeric controls from the request, overridden by per-model params from the cascade entry."""
        values = {
            "strength": request.strength,
            "guidance_scale": request.guidance_scale,
            "num_inference_steps": request.steps,
            "seed": request.seed,
        }
        values.update(self.params)
        return {k: v for k, v in values.items() if v is not None}
