"""
TSMetrics: multi-resolution metrics rollup store

Append-only JSON-lines raw logs per metric domain, compacted into fixed-width
rollup tiers with per-tier cursors:
- 1min:  1-minute buckets, kept 6 hours
- 5min:  5-minute buckets, kept 48 hours
- 30min: 30-minute buckets, kept 14 days
- 2hour: 2-hour buckets, kept 90 days

Collectors: ping, multi-sync ping, network quality, voltage, efuse.
"""

from .tsmetrics import TSMetrics
from .config import MetricsConfig, get_config
from .storage import MetricsStorage
from .rollup import RollupProcessor, TierState
from .tiers import TierConfig, STANDARD_TIERS
from .interfaces import RollupSource
from .base_collector import BaseCollector
from .ping_collector import PingCollector
from .multisync_collector import MultiSyncPingCollector
from .network_quality_collector import NetworkQualityCollector
from .voltage_collector import VoltageCollector
from .efuse_collector import EfuseCollector

__all__ = [
    'TSMetrics',
    'MetricsConfig',
    'get_config',
    'MetricsStorage',
    'RollupProcessor',
    'TierState',
    'TierConfig',
    'STANDARD_TIERS',
    'RollupSource',
    'BaseCollector',
    'PingCollector',
    'MultiSyncPingCollector',
    'NetworkQualityCollector',
    'VoltageCollector',
    'EfuseCollector',
]
