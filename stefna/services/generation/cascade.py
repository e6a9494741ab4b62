"""
Provider cascade: try an ordered list of providers until one yields a durable output.

Each attempt is bounded by the provider's own timeout, clipped to the overall deadline.
Any failure (provider error, malformed output, re-hosting failure, unexpected exception)
advances to the next provider; only when every provider failed is CascadeExhausted raised.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

import pybreaker

from stefna.services.errors import CascadeExhausted, ProviderTimeout, ProviderUnavailable
from stefna.services.generation.base import GenerationProvider, GenerationRequest
from stefna.services.generation.failure_types import classify_failure
from stefna.services.generation.normalize import describe_output, normalize_output
from stefna.services.storage.base import Storage, StoredMedia
from stefna.utils.metrics import provider_attempt_duration_seconds, provider_attempts_total

logger = logging.getLogger(__name__)


@dataclass
class CascadeResult:
    output_url: str
    public_id: str | None
    provider: str
    model: str
    attempt_count: int
    attempts: list[dict[str, Any]] = field(default_factory=list)


class CascadeExecutor:
    def __init__(
        self,
        storage: Storage,
        breaker_factory: Callable[[str], pybreaker.CircuitBreaker] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.storage = storage
        self.breaker_factory = breaker_factory
        self.clock = clock

    def execute(
        self,
        request: GenerationRequest,
        providers: Sequence[GenerationProvider],
        deadline: float | None = None,
        public_id: str | None = None,
        log_extra: dict[str, Any] | None = None,
    ) -> CascadeResult:
        """
        Run providers in order. deadline is a clock() value; None means each provider's own timeout only.
        Raises CascadeExhausted carrying the last error and per-attempt diagnostics.
        """
        log_extra = log_extra or {}
        attempts: list[dict[str, Any]] = []
        last_error: Exception | None = None

        if not providers:
            raise CascadeExhausted("No providers configured for this media kind")

        for index, provider in enumerate(providers, start=1):
            if not provider.is_available():
                last_error = ProviderUnavailable(f"{provider.key} is not configured", provider=provider.key)
                attempts.append(self._attempt_record(provider, last_error, 0.0))
                continue

            timeout = provider.timeout
            if deadline is not None:
                remaining = deadline - self.clock()
                if remaining <= 0:
                    last_error = ProviderTimeout("Job deadline reached", provider=provider.key)
                    attempts.append(self._attempt_record(provider, last_error, 0.0))
                    break
                timeout = min(timeout, remaining)

            started = self.clock()
            try:
                stored = self._attempt(provider, request, timeout, public_id)
            except pybreaker.CircuitBreakerError as e:
                last_error = ProviderUnavailable(f"{provider.key} circuit open: {e}", provider=provider.key)
            except Exception as e:
                last_error = e
            else:
                elapsed = self.clock() - started
                provider_attempts_total.labels(provider=provider.name, outcome="success").inc()
                provider_attempt_duration_seconds.labels(provider=provider.name).observe(elapsed)
                attempts.append({"provider": provider.key, "outcome": "success", "duration": round(elapsed, 3)})
                logger.info(
                    "cascade_attempt_succeeded",
                    extra={**log_extra, "provider": provider.name, "model": provider.model, "attempt": index},
                )
                return CascadeResult(
                    output_url=stored.url,
                    public_id=stored.public_id,
                    provider=provider.name,
                    model=provider.model,
                    attempt_count=index,
                    attempts=attempts,
                )

            elapsed = self.clock() - started
            record = self._attempt_record(provider, last_error, elapsed)
            attempts.append(record)
            provider_attempts_total.labels(provider=provider.name, outcome="failure").inc()
            provider_attempt_duration_seconds.labels(provider=provider.name).observe(elapsed)
            logger.warning(
                "cascade_attempt_failed",
                extra={
                    **log_extra,
                    "provider": provider.name,
                    "model": provider.model,
                    "attempt": index,
                    "failure_type": record["failure_type"],
                    "error": record["error"],
                },
            )

        logger.error(
            "cascade_exhausted",
            extra={**log_extra, "count": len(attempts), "error": str(last_error) if last_error else None},
        )
        raise CascadeExhausted(
            f"All {len(providers)} providers failed",
            last_error=last_error,
            attempts=attempts,
        )

    def _attempt(
        self,
        provider: GenerationProvider,
        request: GenerationRequest,
        timeout: float,
        public_id: str | None,
    ) -> StoredMedia:
        attempt_deadline = self.clock() + timeout

        def run() -> StoredMedia:
            output = provider.generate(request, timeout)
            logger.debug("cascade_provider_output", extra={"provider": provider.key, "status": describe_output(output)})
            return normalize_output(
                output,
                provider,
                self.storage,
                request.resource_type,
                attempt_deadline,
                public_id=public_id,
                clock=self.clock,
            )

        if self.breaker_factory is None:
            return run()
        return self.breaker_factory(provider.key).call(run)

    @staticmethod
    def _attempt_record(provider: GenerationProvider, error: BaseException, elapsed: float) -> dict[str, Any]:
        return {
            "provider": provider.key,
            "outcome": "failure",
            "failure_type": classify_failure(error).value,
            "error": str(error)[:300],
            "duration": round(elapsed, 3),
        }
