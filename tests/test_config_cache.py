"""Tests for ConfigCache and the AppConfig load/save helpers."""
from stefna.core.config_cache import ConfigCache, RuntimeConfig, load_runtime_config, save_runtime_config


class TestConfigCache:
    def test_loads_once_within_ttl(self):
        now = [0.0]
        calls = []
        cache = ConfigCache(ttl_seconds=60, clock=lambda: now[0])

        def loader():
            calls.append(1)
            return RuntimeConfig()

        cache.get(loader)
        now[0] = 59.0
        cache.get(loader)

        assert len(calls) == 1

    def test_reloads_after_ttl(self):
        now = [0.0]
        calls = []
        cache = ConfigCache(ttl_seconds=60, clock=lambda: now[0])

        def loader():
            calls.append(1)
            return RuntimeConfig()

        cache.get(loader)
        now[0] = 61.0
        cache.get(loader)

        assert len(calls) == 2

    def test_invalidate_forces_reload(self):
        values = iter([RuntimeConfig(generation_enabled=True), RuntimeConfig(generation_enabled=False)])
        cache = ConfigCache(ttl_seconds=3600)

        assert cache.get(lambda: next(values)).generation_enabled is True
        cache.invalidate()
        assert cache.get(lambda: next(values)).generation_enabled is False


class TestRuntimeConfigRow:
    def test_defaults_without_row(self, db):
        config = load_runtime_config(db)
        assert config.generation_enabled is True
        assert config.cost_for("presets", 2) == 2

    def test_save_and_load(self, db):
        save_runtime_config(db, cost_overrides={"presets": 5}, disabled_providers=["stability"])
        save_runtime_config(db, generation_enabled=False)

        config = load_runtime_config(db)

        assert config.generation_enabled is False
        assert config.cost_for("presets", 2) == 5
        assert config.cost_for("custom", 2) == 2
        assert config.disabled_providers == ("stability",)
