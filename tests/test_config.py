"""
Tests for configuration loading.
"""

import json
from pathlib import Path

import pytest

from tsmetrics.config import MetricsConfig, get_config, reset_config


class TestDefaults:

    def test_default_values(self):
        config = MetricsConfig()

        assert config.storage.raw_file == "raw.log"
        assert config.storage.state_file == "rollup-state.json"
        assert config.storage.backup_suffix == ".old"
        assert config.retention.raw_retention_hours == 25
        assert config.retention.hardware_raw_retention_hours == 6
        assert config.retention.voltage_retention_days == 1
        assert config.retention.efuse_retention_days == 7
        assert (config.quality.latency.good, config.quality.latency.fair, config.quality.latency.poor) == (50, 100, 250)
        assert config.quality.jitter.poor == 50
        assert config.quality.packet_loss.good == 1
        assert config.network_quality.default_sync_rate == 2.0
        assert config.network_quality.frames_per_sync == 10
        assert config.debug.enabled is False

    def test_collector_dirs(self):
        config = MetricsConfig()
        base = Path(config.storage.base_path)

        assert config.get_collector_dir('ping') == base / "ping"
        assert config.get_collector_dir('multisync') == base / "multisync-ping"
        assert config.get_collector_dir('network_quality') == base / "network-quality"
        assert config.get_logs_path() == base / "logs"


class TestOverrides:

    def test_custom_file_merged(self, tmp_path):
        custom = tmp_path / "custom.json"
        custom.write_text(json.dumps({
            'storage': {'base_path': '/srv/metrics'},
            'quality': {'latency': {'good': 20}},
        }))

        config = MetricsConfig(str(custom))

        assert config.storage.base_path == '/srv/metrics'
        assert config.storage.raw_file == 'raw.log'
        assert config.quality.latency.good == 20
        assert config.quality.latency.fair == 100

    def test_missing_custom_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            MetricsConfig(str(tmp_path / "missing.json"))

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("TSMETRICS_STORAGE_PATH", "/tmp/elsewhere")
        monkeypatch.setenv("TSMETRICS_DEBUG", "yes")
        monkeypatch.setenv("TSMETRICS_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("TSMETRICS_RAW_RETENTION_HOURS", "48")
        monkeypatch.setenv("TSMETRICS_VOLTAGE_RETENTION_DAYS", "14")
        monkeypatch.setenv("TSMETRICS_EFUSE_RETENTION_DAYS", "3")

        config = MetricsConfig()

        assert config.storage.base_path == "/tmp/elsewhere"
        assert config.debug.enabled is True
        assert config.logging.level == "DEBUG"
        assert config.retention.raw_retention_hours == 48
        assert config.retention.voltage_retention_days == 14
        assert config.retention.efuse_retention_days == 3

    def test_environment_beats_file(self, tmp_path, monkeypatch):
        custom = tmp_path / "custom.json"
        custom.write_text(json.dumps({'storage': {'base_path': '/from/file'}}))
        monkeypatch.setenv("TSMETRICS_STORAGE_PATH", "/from/env")

        assert MetricsConfig(str(custom)).storage.base_path == "/from/env"


class TestGlobalConfig:

    def test_singleton_and_reset(self):
        first = get_config()
        assert get_config() is first

        reset_config()
        assert get_config() is not first

    def test_save_round_trip(self, tmp_path):
        config = MetricsConfig()
        config.retention.efuse_retention_days = 99
        path = tmp_path / "saved.json"
        config.save_to_file(str(path))

        # Saves the loaded data, not attribute edits
        assert MetricsConfig(str(path)).retention.efuse_retention_days == 7
        assert json.loads(path.read_text())['storage']['raw_file'] == 'raw.log'
