"""
Black Forest Labs (BFL) Flux API provider.
Submitting a request returns a polling URL; poll() waits until the sample is Ready.
"""
import base64
import time
from typing import Any

import httpx

from stefna.services.errors import MalformedOutput, ProviderError, ProviderTimeout, ProviderUnavailable
from stefna.services.generation.base import (
    GenerationProvider,
    GenerationRequest,
    PollHandle,
    ProviderOutput,
    sanitize_response_for_log,
    translate_http_errors,
)

DIMENSIONS = {
    "4:5": (1024, 1280),
    "3:4": (960, 1280),
    "16:9": (1280, 720),
    "9:16": (720, 1280),
    "1:1": (1024, 1024),
}

FAILED_STATUSES = frozenset({"Error", "Failed", "Content Moderated", "Request Moderated"})


def dimensions_for(aspect_ratio: str | None) -> tuple[int, int]:
    return DIMENSIONS.get(aspect_ratio or "1:1", DIMENSIONS["1:1"])


class BflProvider(GenerationProvider):
    """BFL Flux Pro endpoints (flux-pro-1.1, flux-pro-1.1-raw, flux-pro-1.1-ultra)."""

    name = "bfl"

    def __init__(self, config: dict, model: str, params: dict[str, Any] | None = None):
        super().__init__(config, model, params)
        self.api_key = config.get("api_key")
        self.api_url = (config.get("api_url") or "https://api.bfl.ai/v1").rstrip("/")
        self.poll_interval = float(config.get("poll_interval", 0.5))

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> dict[str, str]:
        return {
            "x-key": self.api_key,
            "accept": "application/json",
            "Content-Type": "application/json",
        }

    def generate(self, request: GenerationRequest, timeout: float) -> ProviderOutput:
        """Submit a generation and return the poll handle for its polling URL."""
        if not self.is_available():
            raise ProviderUnavailable("BFL provider not configured", provider=self.key)

        width, height = dimensions_for(request.aspect_ratio)
        payload: dict[str, Any] = {
            "prompt": request.prompt,
            "prompt_upsampling": True,
            "safety_tolerance": 3,
            "output_format": "jpeg",
            "width": width,
            "height": height,
        }
        if request.seed is not None:
            payload["seed"] = request.seed
        if self.model.endswith("-ultra"):
            payload["raw"] = False
        payload.update(self.params)

        with httpx.Client(timeout=timeout) as client, translate_http_errors(self.key):
            if request.source_url:
                # BFL takes the source image inline as base64
                source = client.get(request.source_url)
                source.raise_for_status()
                payload["image_prompt"] = base64.b64encode(source.content).decode("ascii")
                strength = self.merged_params(request).get("strength")
                if strength is not None:
                    payload["image_prompt_strength"] = strength
            response = client.post(f"{self.api_url}/{self.model}", headers=self._headers(), json=payload)
            response.raise_for_status()
            submitted = response.json()

        polling_url = submitted.get("polling_url")
        if not polling_url:
            raise MalformedOutput("BFL response has no polling_url", provider=self.key)
        return ProviderOutput(poll=PollHandle(url=polling_url, provider=self.key, meta={"request_id": submitted.get("id")}))

    def poll(self, handle: PollHandle, deadline: float) -> ProviderOutput:
        with httpx.Client(timeout=self.timeout) as client, translate_http_errors(self.key):
            while time.monotonic() < deadline:
                response = client.get(handle.url, headers=self._headers())
                response.raise_for_status()
                result = response.json()
                status = result.get("status")
                if status == "Ready":
                    sample = (result.get("result") or {}).get("sample")
                    if not sample:
                        raise MalformedOutput("BFL result is Ready but has no sample", provider=self.key)
                    return ProviderOutput(url=sample, raw_response_sanitized=sanitize_response_for_log(result))
                if status in FAILED_STATUSES:
                    raise ProviderError(f"BFL generation {status}", provider=self.key, detail={"status": status})
                time.sleep(min(self.poll_interval, max(deadline - time.monotonic(), 0)))

        raise ProviderTimeout("BFL result not ready before deadline", provider=self.key)
