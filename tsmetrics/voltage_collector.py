"""
Multi-rail voltage metrics.

Raw samples: {timestamp, voltages: {rail: volts}}. Older collectors wrote a
single core reading as {timestamp, voltage: volts}; such entries are turned
into the multi-rail shape as soon as they are read so aggregation only ever
sees one shape.

Tiers cascade: 1min reads the raw log, every coarser tier reads the
previous tier's rollup file. The tier set depends on the retention budget.
"""

from typing import List, Optional

from .base_collector import BaseCollector
from .config import MetricsConfig
from .stats import round_value, summarize_keyed
from .tiers import DAY, HOUR, budget_tiers


VOLTAGE_TIER_HOURS = (6, 48, 168)
RAW_VIEW_MAX_HOURS = 1
LEGACY_RAIL = 'core'


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class VoltageCollector(BaseCollector):
    """Per-rail min/max/avg/peak rollups with a retention-dependent tier set."""

    config_key = "voltage"
    cascade = True

    def __init__(self, *args, retention_days: float = 1, **kwargs):
        kwargs.setdefault('tiers', budget_tiers(retention_days))
        kwargs.setdefault('tier_hours', VOLTAGE_TIER_HOURS)
        kwargs.setdefault('raw_retention_seconds', 6 * HOUR)
        super().__init__(*args, **kwargs)
        self.retention_days = retention_days

    @classmethod
    def _config_kwargs(cls, config: MetricsConfig) -> dict:
        days = config.retention.voltage_retention_days
        return {
            'retention_days': days,
            'tiers': budget_tiers(days),
            'raw_retention_seconds': config.retention.hardware_raw_retention_hours * HOUR,
        }

    # ------------------------------------------------------------------
    # Sample shapes
    # ------------------------------------------------------------------

    def write(self, samples) -> bool:
        """Append a rail map, a legacy scalar core reading, or full samples."""
        if _is_number(samples):
            samples = {'voltages': {LEGACY_RAIL: samples}}
        return super().write(samples)

    def normalize_sample(self, sample: dict) -> Optional[dict]:
        sample = super().normalize_sample(sample)
        if sample is None:
            return None

        if 'voltages' not in sample and 'voltage' not in sample:
            # Bare rail map
            rails = {k: v for k, v in sample.items() if k != 'timestamp'}
            sample = {'timestamp': sample['timestamp'], 'voltages': rails}

        sample = self.normalize_stored(sample)
        voltages = sample.get('voltages')
        if not isinstance(voltages, dict) or not voltages:
            return None
        if not all(_is_number(v) for v in voltages.values()):
            return None
        return sample

    def normalize_stored(self, entry: dict) -> dict:
        if 'voltage' in entry and 'voltages' not in entry:
            entry = dict(entry)
            entry['voltages'] = {LEGACY_RAIL: entry.pop('voltage')}
        return entry

    def matches_entity(self, entry: dict, entity: str) -> bool:
        return entity in (entry.get('voltages') or {})

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def aggregate_bucket(self, metrics: List[dict], bucket_start: int, interval: int) -> Optional[dict]:
        if not metrics:
            return None

        readings = []
        for metric in metrics:
            voltages = self.normalize_stored(metric).get('voltages')
            if isinstance(voltages, dict):
                readings.append(voltages)

        rails = summarize_keyed(readings)
        if not rails:
            return None

        voltages = {
            rail: {
                'avg': round_value(stats['avg'], 4),
                'min': round_value(stats['min'], 4),
                'max': round_value(stats['max'], 4),
                'peak': round_value(stats['peak'], 4),
                'samples': stats['samples'],
            }
            for rail, stats in rails.items()
        }

        record = self.bucket_header(bucket_start, interval)
        record['interval'] = interval
        record['voltages'] = voltages
        return record

    def aggregate_for_rollup(self, bucket_samples, bucket_start, interval):
        return self.aggregate_bucket(bucket_samples, bucket_start, interval)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def _rails(data: List[dict]) -> List[str]:
        rails = set()
        for entry in data:
            rails.update((entry.get('voltages') or {}).keys())
        return sorted(rails)

    def get_metrics(self, hours_back: float = 24, entity: Optional[str] = None) -> dict:
        """
        Voltage history for a possibly fractional span.

        The span is capped at the retention budget. Spans of an hour or less
        are served from raw readings when there are any.
        """
        hours_back = min(float(hours_back), self.retention_days * DAY / HOUR)

        if hours_back <= RAW_VIEW_MAX_HOURS:
            since = self.clock() - hours_back * 3600
            raw = [e for e in self.read_raw(since_hours=hours_back, entity=entity) if e['timestamp'] >= since]
            if raw:
                return {
                    'success': True,
                    'count': len(raw),
                    'data': raw,
                    'rails': self._rails(raw),
                    'tier_info': {'tier': 'raw', 'interval': None, 'label': 'Raw readings'},
                }

        result = self.read_rollup(hours_back, entity)
        if result['success']:
            result['rails'] = self._rails(result['data'])
        return result
