"""
TSMetrics Configuration Management

Provides centralized configuration management for the metrics store.
Loads settings from JSON files and environment variables.
"""

import json
import os
from pathlib import Path
from typing import Optional
from dataclasses import dataclass


@dataclass
class StorageConfig:
    """Storage-related configuration."""
    base_path: str
    ping_dir: str
    multisync_dir: str
    network_quality_dir: str
    voltage_dir: str
    efuse_dir: str
    raw_file: str
    state_file: str
    backup_suffix: str


@dataclass
class RetentionConfig:
    """Raw log and hardware tier retention budgets."""
    raw_retention_hours: int
    hardware_raw_retention_hours: int
    voltage_retention_days: int
    efuse_retention_days: int


@dataclass
class ThresholdConfig:
    """Quality rating thresholds (inclusive upper bounds)."""
    good: float
    fair: float
    poor: float


@dataclass
class QualityConfig:
    """Quality thresholds per measurement."""
    latency: ThresholdConfig
    jitter: ThresholdConfig
    packet_loss: ThresholdConfig


@dataclass
class NetworkQualityConfig:
    """Packet loss estimation constants."""
    default_sync_rate: float
    frames_per_sync: int


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str
    format: str


@dataclass
class DebugConfig:
    """Debug configuration."""
    enabled: bool


class MetricsConfig:
    """Main TSMetrics configuration manager."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to JSON config file. If None, uses default config.
        """
        self.config_path = config_path
        self._config_data = {}
        self._load_config()
        self._create_config_objects()

    def _load_config(self):
        """Load configuration from JSON file and environment variables."""
        default_config_path = Path(__file__).parent / "tsmetrics_config.json"
        if default_config_path.exists():
            with open(default_config_path, 'r') as f:
                self._config_data = json.load(f)
        else:
            raise FileNotFoundError(f"Default config file not found: {default_config_path}")

        # Override with custom config if provided
        if self.config_path:
            config_path = Path(self.config_path)
            if config_path.exists():
                with open(config_path, 'r') as f:
                    custom_config = json.load(f)
                    self._merge_configs(self._config_data, custom_config)
            else:
                raise FileNotFoundError(f"Config file not found: {config_path}")

        self._load_env_overrides()

    def _merge_configs(self, default: dict, custom: dict):
        """Recursively merge custom config into default config."""
        for key, value in custom.items():
            if key in default and isinstance(default[key], dict) and isinstance(value, dict):
                self._merge_configs(default[key], value)
            else:
                default[key] = value

    def _load_env_overrides(self):
        """Load configuration overrides from environment variables."""
        env_mappings = {
            'TSMETRICS_STORAGE_PATH': ('storage', 'base_path'),
            'TSMETRICS_LOG_LEVEL': ('logging', 'level'),
            'TSMETRICS_DEBUG': ('debug', 'enabled'),
            'TSMETRICS_RAW_RETENTION_HOURS': ('retention', 'raw_retention_hours'),
            'TSMETRICS_VOLTAGE_RETENTION_DAYS': ('retention', 'voltage_retention_days'),
            'TSMETRICS_EFUSE_RETENTION_DAYS': ('retention', 'efuse_retention_days'),
        }

        for env_var, (section, key) in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                # Convert string values to appropriate types
                if key in ['raw_retention_hours', 'voltage_retention_days', 'efuse_retention_days']:
                    value = int(value)
                elif key in ['enabled']:
                    value = value.lower() in ('true', '1', 'yes', 'on')

                if section not in self._config_data:
                    self._config_data[section] = {}
                self._config_data[section][key] = value

    def _create_config_objects(self):
        """Create typed configuration objects from loaded data."""
        self.storage = StorageConfig(**self._config_data['storage'])
        self.retention = RetentionConfig(**self._config_data['retention'])
        quality = self._config_data['quality']
        self.quality = QualityConfig(
            latency=ThresholdConfig(**quality['latency']),
            jitter=ThresholdConfig(**quality['jitter']),
            packet_loss=ThresholdConfig(**quality['packet_loss']),
        )
        self.network_quality = NetworkQualityConfig(**self._config_data['network_quality'])
        self.logging = LoggingConfig(**self._config_data['logging'])
        self.debug = DebugConfig(**self._config_data['debug'])

    def get_storage_path(self) -> Path:
        """Get the main storage path as a Path object."""
        return Path(self.storage.base_path)

    def get_collector_dir(self, name: str) -> Path:
        """Get the data directory for a collector ('ping', 'multisync', ...)."""
        return self.get_storage_path() / getattr(self.storage, f"{name}_dir")

    def get_logs_path(self) -> Path:
        """Get the logs storage path."""
        return self.get_storage_path() / "logs"

    def save_to_file(self, path: str):
        """Save current configuration to JSON file."""
        with open(path, 'w') as f:
            json.dump(self._config_data, f, indent=2)

    def __repr__(self) -> str:
        return f"MetricsConfig(config_path={self.config_path})"


# Global configuration instance
_global_config: Optional[MetricsConfig] = None


def get_config(config_path: Optional[str] = None) -> MetricsConfig:
    """
    Get the global TSMetrics configuration instance.

    Args:
        config_path: Path to config file. Only used on first call.

    Returns:
        MetricsConfig instance
    """
    global _global_config
    if _global_config is None:
        _global_config = MetricsConfig(config_path)
    return _global_config


def reset_config():
    """Reset the global configuration (mainly for testing)."""
    global _global_config
    _global_config = None
