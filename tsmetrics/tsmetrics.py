"""
TSMetrics coordinator: one instance of every collector, built from config.
"""

import time
from dataclasses import asdict
from pathlib import Path
from typing import Callable, Dict, Optional

from .base_collector import BaseCollector, Samples
from .config import MetricsConfig, get_config
from .efuse_collector import EfuseCollector
from .logger import MetricsLogger, get_logger
from .multisync_collector import MultiSyncPingCollector
from .network_quality_collector import NetworkQualityCollector
from .ping_collector import PingCollector
from .voltage_collector import VoltageCollector


COLLECTOR_CLASSES = {
    'ping': PingCollector,
    'multisync': MultiSyncPingCollector,
    'network_quality': NetworkQualityCollector,
    'voltage': VoltageCollector,
    'efuse': EfuseCollector,
}


class TSMetrics:
    """
    Routes samples to the per-domain collectors and drives their rollups.

    The caller's scheduler invokes write() once per collection tick and
    process_rollups() once per rollup tick.
    """

    def __init__(self, config: Optional[MetricsConfig] = None, config_path: Optional[str] = None,
                 clock: Callable[[], float] = time.time):
        """
        Args:
            config: Pre-loaded config object (takes precedence over config_path)
            config_path: Path to custom config file
            clock: Returns the current Unix time; injected for deterministic tests
        """
        self.config = config if config is not None else get_config(config_path)
        self.clock = clock

        MetricsLogger.setup(
            log_dir=str(self.config.get_logs_path()),
            log_level=self.config.logging.level,
            console_output=self.config.debug.enabled,
            log_format=self.config.logging.format,
        )
        self.logger = get_logger("TSMetrics")

        self.storage_path = Path(self.config.get_storage_path())
        self.collectors: Dict[str, BaseCollector] = {
            name: cls.from_config(self.config, clock=clock)
            for name, cls in COLLECTOR_CLASSES.items()
        }
        self.logger.info(f"Storage path: {self.storage_path}")
        self.logger.info(f"Collectors: {', '.join(self.collectors)}")

    def collector(self, name: str) -> Optional[BaseCollector]:
        return self.collectors.get(name)

    def write(self, name: str, samples: Samples) -> bool:
        """Append samples to one collector's raw log; unknown names are rejected."""
        collector = self.collectors.get(name)
        if collector is None:
            self.logger.warning(f"Unknown collector: {name}")
            return False
        return collector.write(samples)

    def process_rollups(self) -> Dict[str, bool]:
        """Run one rollup pass for every collector; returns per-collector success."""
        results = {}
        for name, collector in self.collectors.items():
            try:
                collector.process_rollup()
                results[name] = True
            except Exception as e:
                self.logger.error(f"Rollup failed for {name}: {e}", exc_info=True)
                results[name] = False
        return results

    def get_stats(self) -> dict:
        """Tier info and cursor state for every collector."""
        collectors = {}
        for name, collector in self.collectors.items():
            state = collector.get_rollup_state()
            collectors[name] = {
                'data_dir': str(collector.data_dir),
                'raw_file_exists': collector.raw_file.exists(),
                'tiers': collector.get_rollup_tiers_info(),
                'state': {tier: asdict(tier_state) for tier, tier_state in state.items()},
            }
        return {
            'storage_path': str(self.storage_path),
            'collectors': collectors,
        }
