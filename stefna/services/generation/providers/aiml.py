"""
AIML API provider (OpenAI-compatible /images/generations).
Returns either `data: [{url}|{b64_json}]` or `images: [{url}]` depending on the model.
"""
from typing import Any

import httpx

from stefna.services.errors import MalformedOutput, ProviderUnavailable
from stefna.services.generation.base import (
    GenerationProvider,
    GenerationRequest,
    ProviderOutput,
    sanitize_response_for_log,
    translate_http_errors,
)


class AimlProvider(GenerationProvider):
    name = "aiml"

    def __init__(self, config: dict, model: str, params: dict[str, Any] | None = None):
        super().__init__(config, model, params)
        self.api_key = config.get("api_key")
        self.api_url = (config.get("api_url") or "https://api.aimlapi.com/v1").rstrip("/")

    def is_available(self) -> bool:
        return bool(self.api_key)

    def generate(self, request: GenerationRequest, timeout: float) -> ProviderOutput:
        if not self.is_available():
            raise ProviderUnavailable("AIML provider not configured", provider=self.key)

        payload: dict[str, Any] = {"model": self.model, "prompt": request.prompt}
        if request.source_url:
            payload["image_url"] = request.source_url
        payload.update(self.merged_params(request))
        if request.negative_prompt:
            payload["negative_prompt"] = request.negative_prompt

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        with httpx.Client(timeout=timeout) as client, translate_http_errors(self.key):
            response = client.post(f"{self.api_url}/images/generations", headers=headers, json=payload)
            response.raise_for_status()
            result = response.json()

        sanitized = sanitize_response_for_log(result)
        items = result.get("data") or result.get("images") or []
        if not isinstance(items, list) or not items:
            raise MalformedOutput(f"No images in AIML {self.model} response", provider=self.key)
        first = items[0]
        if isinstance(first, dict) and first.get("b64_json"):
            return ProviderOutput(inline=first["b64_json"], raw_response_sanitized=sanitized)
        return ProviderOutput(urls=items, raw_response_sanitized=sanitized)
