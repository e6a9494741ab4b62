"""
Stability.ai v2beta stable-image provider.
Each tier (core, sd3, ultra) is a separate cascade entry; responses carry inline base64 images.
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

# Tiers that accept a source image (mode=image-to-image)
IMAGE_TO_IMAGE_TIERS = frozenset({"sd3", "ultra"})
SUPPORTED_TIERS = ("core", "sd3", "ultra")


class StabilityProvider(GenerationProvider):
    name = "stability"

    def __init__(self, config: dict, model: str, params: dict[str, Any] | None = None):
        super().__init__(config, model, params)
        self.api_key = config.get("api_key")
        self.api_url = (config.get("api_url") or "https://api.stability.ai/v2beta/stable-image/generate").rstrip("/")

    def is_available(self) -> bool:
        return bool(self.api_key)

    def generate(self, request: GenerationRequest, timeout: float) -> ProviderOutput:
        if not self.is_available():
            raise ProviderUnavailable("Stability.ai provider not configured", provider=self.key)
        if self.model not in SUPPORTED_TIERS:
            raise ProviderUnavailable(f"Unknown Stability.ai tier: {self.model}", provider=self.key)

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
        }
        data: dict[str, Any] = {
            "prompt": request.prompt,
            "output_format": "jpeg",
        }
        if request.negative_prompt:
            data["negative_prompt"] = request.negative_prompt
        if request.seed is not None:
            data["seed"] = str(request.seed)

        with httpx.Client(timeout=timeout) as client, translate_http_errors(self.key):
            files: dict[str, Any] = {"none": ("", b"")}
            if request.source_url and self.model in IMAGE_TO_IMAGE_TIERS:
                source = client.get(request.source_url)
                source.raise_for_status()
                files = {"image": ("source.jpg", source.content, "image/jpeg")}
                data["mode"] = "image-to-image"
                strength = self.merged_params(request).get("strength")
                if strength is not None:
                    data["strength"] = str(strength)
            elif request.aspect_ratio:
                data["aspect_ratio"] = request.aspect_ratio

            response = client.post(f"{self.api_url}/{self.model}", headers=headers, data=data, files=files)
            response.raise_for_status()
            result = response.json()

        finish_reason = (result.get("finish_reason") or "SUCCESS").upper()
        if finish_reason != "SUCCESS":
            raise MalformedOutput(
                f"Stability.ai {self.model} finished with {finish_reason}",
                provider=self.key,
                detail={"finish_reason": finish_reason},
            )
        image = result.get("image")
        if not image:
            raise MalformedOutput(f"No image in Stability.ai {self.model} response", provider=self.key)
        return ProviderOutput(
            inline=image,
            content_type="image/jpeg",
            raw_response_sanitized=sanitize_response_for_log(result),
        )
