"""
Fal.ai provider (synchronous fal.run endpoints).
Image models return `images: [{url}]` or `image: {url}`; video models return `video: {url}`.
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


class FalProvider(GenerationProvider):
    name = "fal"

    def __init__(self, config: dict, model: str, params: dict[str, Any] | None = None):
        super().__init__(config, model, params)
        self.api_key = config.get("api_key")
        self.api_url = (config.get("api_url") or "https://fal.run").rstrip("/")

    def is_available(self) -> bool:
        return bool(self.api_key)

    def build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {"prompt": request.prompt}
        if request.source_url:
            payload["image_url"] = request.source_url
        if request.resource_type == "video":
            payload["duration"] = str(self.params.get("duration", "5"))
            if request.aspect_ratio:
                payload["aspect_ratio"] = request.aspect_ratio
            if request.negative_prompt:
                payload["negative_prompt"] = request.negative_prompt
            return payload
        payload.update(self.merged_params(request))
        if request.negative_prompt:
            payload["negative_prompt"] = request.negative_prompt
        if request.extra_params:
            payload.update(request.extra_params)
        return payload

    def generate(self, request: GenerationRequest, timeout: float) -> ProviderOutput:
        if not self.is_available():
            raise ProviderUnavailable("Fal.ai provider not configured", provider=self.key)

        headers = {
            "Authorization": f"Key {self.api_key}",
            "Content-Type": "application/json",
        }
        with httpx.Client(timeout=timeout) as client, translate_http_errors(self.key):
            response = client.post(f"{self.api_url}/{self.model}", headers=headers, json=self.build_payload(request))
            response.raise_for_status()
            result = response.json()

        sanitized = sanitize_response_for_log(result)
        if isinstance(result.get("images"), list) and result["images"]:
            return ProviderOutput(urls=result["images"], raw_response_sanitized=sanitized)
        for key in ("video", "image"):
            item = result.get(key)
            if isinstance(item, dict) and item.get("url"):
                content_type = "video/mp4" if key == "video" else None
                return ProviderOutput(url=item["url"], content_type=content_type, raw_response_sanitized=sanitized)
        raise MalformedOutput(f"No media in Fal.ai {self.model} response", provider=self.key)
