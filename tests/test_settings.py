# tests/test_settings.py
"""Tests for configuration loading and validation."""

import json

from config.runtime_env import env_flag, env_float, env_int, env_text
from config.settings import Config, load_config


class TestRuntimeEnv:

    def test_env_helpers_fall_back_on_bad_input(self, monkeypatch):
        monkeypatch.setenv("CD_TEST_INT", "twelve")
        monkeypatch.setenv("CD_TEST_FLOAT", "")
        monkeypatch.setenv("CD_TEST_TEXT", "   ")
        assert env_int("CD_TEST_INT", 7) == 7
        assert env_float("CD_TEST_FLOAT", 1.5) == 1.5
        assert env_text("CD_TEST_TEXT", "dflt") == "dflt"

    def test_env_flag_truthy_values(self, monkeypatch):
        for raw in ("1", "true", "YES", " on "):
            monkeypatch.setenv("CD_TEST_FLAG", raw)
            assert env_flag("CD_TEST_FLAG") is True
        monkeypatch.setenv("CD_TEST_FLAG", "off")
        assert env_flag("CD_TEST_FLAG", "1") is False


class TestConfig:

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("CRYPTODASH_REDIS_URL", raising=False)
        config = load_config()
        assert config.memory.max_size == 1000
        assert config.memory.default_ttl_seconds == 300
        assert config.historical_memory.max_size == 500
        assert config.historical_memory.default_ttl_seconds == 600
        assert config.historical_memory.cleanup_interval_seconds == 120
        assert config.remote.enabled is False
        assert config.remote.key_prefix == "cryptodash:"
        assert config.compression.size_threshold_bytes == 1024
        assert config.page_cache.cleanup_threshold == 0.8
        assert config.quality.default_consistency == 85
        assert config.validation_warnings == []

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("CRYPTODASH_REDIS_URL", "redis://cache:6379/2")
        monkeypatch.setenv("CRYPTODASH_MEMORY_MAX_SIZE", "250")
        monkeypatch.setenv("CRYPTODASH_COMPRESSION_ENABLED", "false")
        monkeypatch.setenv("CRYPTODASH_QUALITY_CONSISTENCY_WINDOW", "20")

        config = load_config()

        assert config.remote.enabled is True
        assert config.remote.url == "redis://cache:6379/2"
        assert config.memory.max_size == 250
        assert config.compression.enabled is False
        assert config.quality.consistency_window == 20

    def test_json_file_then_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CRYPTODASH_PAGE_CACHE_MAX_SIZE", "50")
        path = tmp_path / "cryptodash.json"
        path.write_text(json.dumps({
            "memory": {"max_size": 42, "default_ttl_seconds": 120},
            "page_cache": {"max_size": 10},
            "quality": {"update_frequencies": {"mvrv": 15}},
        }))

        config = Config.load(path)

        assert config.memory.max_size == 42
        assert config.memory.default_ttl_seconds == 120.0
        assert config.page_cache.max_size == 50
        assert config.quality.update_frequencies == {"mvrv": 15}

    def test_bad_values_warn_and_clamp(self, monkeypatch, caplog):
        monkeypatch.delenv("CRYPTODASH_REDIS_URL", raising=False)
        config = Config()
        config.apply_dict({
            "memory": {"max_size": 0, "colour": "blue"},
            "compression": {"enabled": "yes"},
            "page_cache": {"cleanup_threshold": 3.0},
            "nonsense": {},
        })
        config.validate()

        warnings = config.validation_warnings
        assert config.memory.max_size == 1
        assert config.compression.enabled is True
        assert config.page_cache.cleanup_threshold == 0.8
        assert any("memory.colour" in w for w in warnings)
        assert any("compression.enabled" in w for w in warnings)
        assert any("nonsense" in w for w in warnings)
        assert "Config validation" in caplog.text

    def test_missing_or_broken_file_uses_defaults(self, tmp_path):
        broken = tmp_path / "broken.json"
        broken.write_text("{not json")
        assert Config.load(tmp_path / "absent.json").memory.max_size == 1000
        assert Config.load(broken).memory.max_size == 1000

    def test_logging_section(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CRYPTODASH_LOG_DIR", str(tmp_path))
        path = tmp_path / "cryptodash.json"
        path.write_text(json.dumps({"logging": {"level": "debug", "backup_count": -2}}))

        config = Config.load(path)

        assert config.logging.level == "DEBUG"
        assert config.logging.log_dir == str(tmp_path)
        assert config.logging.backup_count == 0
        assert any("logging.backup_count" in w for w in config.validation_warnings)

    def test_unknown_log_level_falls_back_to_info(self, monkeypatch):
        monkeypatch.setenv("CRYPTODASH_LOG_LEVEL", "chatty")
        config = load_config()
        assert config.logging.level == "INFO"
        assert any("logging.level" in w for w in config.validation_warnings)
