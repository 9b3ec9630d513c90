"""Tests for configuration loading."""

import json

import pytest

from leasecore.config import Config, ConfigManager
from leasecore.errors import ConfigurationError


class TestConfigManager:

    def test_defaults(self):
        config = ConfigManager().load()

        assert isinstance(config, Config)
        assert config.scan.threshold == 0.70
        assert config.scan.include_same_owner is False
        assert config.scan.batch_limit == 1000
        assert config.scan.top_matches == 5
        assert config.scoring.weights.address == 0.35
        assert config.scoring.high_confidence == 0.85

    def test_file_is_deep_merged(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"scoring": {"weights": {"media": 0.1}}, "scan": {"max_workers": 4}}))

        config = ConfigManager(str(path)).load()

        assert config.scoring.weights.media == 0.1
        assert config.scoring.weights.title == 0.30
        assert config.scan.max_workers == 4
        assert config.scan.threshold == 0.70

    def test_defaults_are_not_mutated(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"scoring": {"weights": {"media": 0.2}}}))
        ConfigManager(str(path)).load()

        assert ConfigManager.DEFAULT_CONFIG["scoring"]["weights"]["media"] == 0.05

    def test_environment_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("LEASECORE_DB_PATH", str(tmp_path / "env.db"))
        monkeypatch.setenv("LEASECORE_SCAN_THRESHOLD", "0.8")
        monkeypatch.setenv("LEASECORE_INCLUDE_SAME_OWNER", "yes")
        monkeypatch.setenv("LEASECORE_MAX_WORKERS", "3")
        monkeypatch.setenv("LEASECORE_LOG_LEVEL", "debug")

        config = ConfigManager().load()

        assert config.storage.db_path == str(tmp_path / "env.db")
        assert config.scan.threshold == 0.8
        assert config.scan.include_same_owner is True
        assert config.scan.max_workers == 3
        assert config.logging.level == "DEBUG"

    def test_non_numeric_environment_value(self, monkeypatch):
        monkeypatch.setenv("LEASECORE_MAX_WORKERS", "many")
        with pytest.raises(ConfigurationError) as exc_info:
            ConfigManager().load()
        assert exc_info.value.key == "LEASECORE_MAX_WORKERS"

    def test_out_of_range_value(self, monkeypatch):
        monkeypatch.setenv("LEASECORE_SCAN_THRESHOLD", "1.5")
        with pytest.raises(ConfigurationError) as exc_info:
            ConfigManager().load()
        assert exc_info.value.key == "scan.threshold"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            ConfigManager(str(tmp_path / "nope.json")).load()

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        with pytest.raises(ConfigurationError):
            ConfigManager(str(path)).load()

    def test_save_template_round_trips(self, tmp_path):
        path = tmp_path / "template.json"
        ConfigManager().save_template(str(path))

        config = ConfigManager(str(path)).load()
        assert config.scan.threshold == 0.70

    def test_load_is_cached(self):
        manager = ConfigManager()
        assert manager.load() is manager.config
