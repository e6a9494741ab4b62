"""
Replicate API provider.
Creating a prediction returns a poll handle unless it already finished; poll() waits for it.
"""
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


class ReplicateProvider(GenerationProvider):
    """Replicate API provider for image generation."""

    name = "replicate"

    def __init__(self, config: dict, model: str, params: dict[str, Any] | None = None):
        super().__init__(config, model, params)
        self.api_token = config.get("api_token")
        self.api_url = (config.get("api_url") or "https://api.replicate.com/v1").rstrip("/")
        self.poll_interval = float(config.get("poll_interval", 2.0))

    def is_available(self) -> bool:
        """Check if Replicate is configured."""
        return bool(self.api_token)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    def generate(self, request: GenerationRequest, timeout: float) -> ProviderOutput:
        """Create a prediction; return its output if done, otherwise a poll handle."""
        if not self.is_available():
            raise ProviderUnavailable("Replicate provider not configured", provider=self.key)

        model_input: dict[str, Any] = {"prompt": request.prompt}
        if request.source_url:
            model_input["image"] = request.source_url
        if request.negative_prompt:
            model_input["negative_prompt"] = request.negative_prompt
        model_input.update(self.merged_params(request))
        if request.extra_params:
            model_input.update(request.extra_params)

        # "owner/name:version" pins a version; bare "owner/name" uses the model's latest
        if ":" in self.model:
            url = f"{self.api_url}/predictions"
            payload = {"version": self.model.split(":", 1)[1], "input": model_input}
        else:
            url = f"{self.api_url}/models/{self.model}/predictions"
            payload = {"input": model_input}

        with httpx.Client(timeout=timeout) as client, translate_http_errors(self.key):
            response = client.post(url, headers=self._headers(), json=payload)
            response.raise_for_status()
            prediction = response.json()

        return self._to_output(prediction)

    def poll(self, handle: PollHandle, deadline: float) -> ProviderOutput:
        """Poll prediction until it leaves the starting/processing states or the deadline passes."""
        with httpx.Client(timeout=self.timeout) as client, translate_http_errors(self.key):
            while time.monotonic() < deadline:
                response = client.get(handle.url, headers=self._headers())
                response.raise_for_status()
                output = self._to_output(response.json())
                if output.poll is None:
                    return output
                time.sleep(min(self.poll_interval, max(deadline - time.monotonic(), 0)))

        raise ProviderTimeout("Replicate prediction not finished before deadline", provider=self.key)

    def _to_output(self, prediction: dict[str, Any]) -> ProviderOutput:
        status = prediction.get("status")
        if status == "succeeded":
            output = prediction.get("output")
            sanitized = sanitize_response_for_log({"id": prediction.get("id"), "output": output})
            if isinstance(output, list) and output:
                return ProviderOutput(urls=output, raw_response_sanitized=sanitized)
            if isinstance(output, str) and output:
                return ProviderOutput(url=output, raw_response_sanitized=sanitized)
            raise MalformedOutput(f"Unexpected Replicate output format: {type(output).__name__}", provider=self.key)
        if status in ("failed", "canceled"):
            error = prediction.get("error") or "Unknown error"
            raise ProviderError(f"Replicate prediction {status}: {error}", provider=self.key, detail={"error": str(error)})

        get_url = (prediction.get("urls") or {}).get("get")
        if not get_url:
            raise MalformedOutput("Replicate prediction has no polling URL", provider=self.key)
        return ProviderOutput(poll=PollHandle(url=get_url, provider=self.key, meta={"prediction_id": prediction.get("id")}))
