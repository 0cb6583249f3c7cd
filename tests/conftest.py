"""
Pytest configuration and fixtures for TSMetrics tests.
"""

import pytest

from tsmetrics.config import MetricsConfig, reset_config
from tsmetrics.logger import MetricsLogger


# Divisible by every standard tier interval (60, 300, 1800, 7200)
BASE_TIME = 1_699_999_200

ENV_VARS = (
    "TSMETRICS_STORAGE_PATH",
    "TSMETRICS_LOG_LEVEL",
    "TSMETRICS_DEBUG",
    "TSMETRICS_RAW_RETENTION_HOURS",
    "TSMETRICS_VOLTAGE_RETENTION_DAYS",
    "TSMETRICS_EFUSE_RETENTION_DAYS",
)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: float = BASE_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds

    def set(self, now: float):
        self.now = now


@pytest.fixture(scope="session", autouse=True)
def test_logging(tmp_path_factory):
    """Send component logs to a throwaway directory."""
    MetricsLogger.setup(log_dir=str(tmp_path_factory.mktemp("logs")), log_level="DEBUG")


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    """Fresh global config and no stray environment overrides."""
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    """Default config rooted in a temporary directory."""
    cfg = MetricsConfig()
    cfg.storage.base_path = str(tmp_path / "data")
    return cfg
