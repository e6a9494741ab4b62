"""
TTL cache for the runtime AppConfig row.
One instance is built in the composition root and passed by reference to whoever needs it.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from sqlalchemy.orm import Session

from stefna.models.app_config import AppConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuntimeConfig:
    generation_enabled: bool = True
    cost_overrides: dict[str, int] = field(default_factory=dict)
    disabled_providers: tuple[str, ...] = ()

    def cost_for(self, kind: str, default: int) -> int:
        value = self.cost_overrides.get(kind)
        return default if value is None else int(value)


def load_runtime_config(db: Session) -> RuntimeConfig:
    row = db.get(AppConfig, 1)
    if row is None:
        return RuntimeConfig()
    return RuntimeConfig(
        generation_enabled=bool(row.generation_enabled),
        cost_overrides=dict(row.cost_overrides or {}),
        disabled_providers=tuple(row.disabled_providers or ()),
    )


def save_runtime_config(db: Session, **changes: Any) -> RuntimeConfig:
    """Upsert the AppConfig row with the given fields; unknown fields are ignored."""
    row = db.get(AppConfig, 1)
    if row is None:
        row = AppConfig(id=1, generation_enabled=True, cost_overrides={}, disabled_providers=[])
        db.add(row)
    for key in ("generation_enabled", "cost_overrides", "disabled_providers"):
        if changes.get(key) is not None:
            setattr(row, key, changes[key])
    db.commit()
    db.refresh(row)
    return load_runtime_config(db)


class ConfigCache:
    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._value: RuntimeConfig | None = None
        self._loaded_at: float | None = None
        self._lock = threading.Lock()

    def get(self, loader: Callable[[], RuntimeConfig]) -> RuntimeConfig:
        """Return the cached config, calling loader when empty or older than the TTL."""
        with self._lock:
            now = self.clock()
            if self._value is not None and self._loaded_at is not None and now - self._loaded_at < self.ttl_seconds:
                return self._value
            self._value = loader()
            self._loaded_at = now
            logger.debug("config_cache_loaded")
            return self._value

    def invalidate(self) -> None:
        with self._lock:
            self._value = None
            self._loaded_at = None
        logger.info("config_cache_invalidated")
