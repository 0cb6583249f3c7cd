"""
Multi-port eFuse current metrics.

Raw samples: {timestamp, ports: {port: mA}}. Every sample also carries a
`_total` key with the sum of all ports, aggregated like any other port.
Tiers cascade from the previous tier's rollup file, with every retention
capped by the configured budget.
"""

import math
from typing import Dict, List, Optional

from .base_collector import BaseCollector
from .config import MetricsConfig
from .stats import round_value, summarize_keyed
from .tiers import DAY, HOUR, capped_tiers


TOTAL_KEY = '_total'
RAW_VIEW_MAX_HOURS = 1


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class EfuseCollector(BaseCollector):
    """Per-port current rollups, port history and heatmap views."""

    config_key = "efuse"
    cascade = True

    # Seconds between raw samples, used to align raw port history
    raw_interval = 5

    def __init__(self, *args, retention_days: float = 7, **kwargs):
        kwargs.setdefault('tiers', capped_tiers(int(retention_days * DAY)))
        kwargs.setdefault('raw_retention_seconds', 6 * HOUR)
        super().__init__(*args, **kwargs)
        self.retention_days = retention_days

    @classmethod
    def _config_kwargs(cls, config: MetricsConfig) -> dict:
        days = config.retention.efuse_retention_days
        return {
            'retention_days': days,
            'tiers': capped_tiers(int(days * DAY)),
            'raw_retention_seconds': config.retention.hardware_raw_retention_hours * HOUR,
        }

    def normalize_sample(self, sample: dict) -> Optional[dict]:
        sample = super().normalize_sample(sample)
        if sample is None:
            return None

        if 'ports' in sample:
            ports = sample['ports']
        else:
            ports = {k: v for k, v in sample.items() if k != 'timestamp'}
        if not isinstance(ports, dict):
            return None

        ports = {k: v for k, v in ports.items() if k != TOTAL_KEY}
        if not all(_is_number(v) for v in ports.values()):
            return None
        ports[TOTAL_KEY] = sum(ports.values())

        return {'timestamp': sample['timestamp'], 'ports': ports}

    def matches_entity(self, entry: dict, entity: str) -> bool:
        return entity in (entry.get('ports') or {})

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def aggregate_bucket(self, metrics: List[dict], bucket_start: int, interval: int) -> Optional[dict]:
        if not metrics:
            return None

        readings = [m['ports'] for m in metrics if isinstance(m.get('ports'), dict)]
        ports = summarize_keyed(readings)
        if not ports:
            return None

        record = self.bucket_header(bucket_start, interval)
        record['interval'] = interval
        record['ports'] = {
            port: {
                'avg': int(round_value(stats['avg'], 0)),
                'min': int(stats['min']),
                'max': int(stats['max']),
                'peak': int(stats['peak']),
                'samples': stats['samples'],
            }
            for port, stats in ports.items()
        }
        return record

    def aggregate_for_rollup(self, bucket_samples, bucket_start, interval):
        return self.aggregate_bucket(bucket_samples, bucket_start, interval)

    # ------------------------------------------------------------------
    # Dashboard views
    # ------------------------------------------------------------------

    @staticmethod
    def _aligned_range(start: float, end: float, interval: int) -> List[int]:
        first = int(math.floor(start / interval) * interval)
        last = int(math.floor(end / interval) * interval)
        return list(range(first, last + 1, interval))

    def get_port_history(self, port: str, hours_back: float = 24) -> dict:
        """
        Gap-filled series for one port aligned to the serving interval.

        Missing slots are reported as zero current.
        """
        tier_info = None
        if hours_back <= RAW_VIEW_MAX_HOURS:
            data = self.read_raw(since_hours=hours_back, entity=port)
            source = 'raw'
            interval = self.raw_interval
        else:
            result = self.read_rollup(hours_back, port)
            data = result['data']
            source = 'rollup'
            tier_info = result.get('tier_info')
            interval = tier_info['interval'] if tier_info else self.tiers[0].interval_seconds

        by_slot = {}
        for entry in data:
            slot = int(entry['timestamp'] // interval) * interval
            by_slot[slot] = entry['ports'].get(port)

        end_time = self.clock()
        history = []
        for ts in self._aligned_range(end_time - hours_back * 3600, end_time, interval):
            reading = by_slot.get(ts)
            if isinstance(reading, dict):
                history.append({
                    'timestamp': ts,
                    'avg': reading.get('avg', 0),
                    'min': reading.get('min', 0),
                    'max': reading.get('max', 0),
                })
            elif source == 'rollup':
                history.append({'timestamp': ts, 'avg': 0, 'min': 0, 'max': 0})
            else:
                history.append({'timestamp': ts, 'value': reading if reading is not None else 0})

        return {
            'success': True,
            'portName': port,
            'hours': hours_back,
            'source': source,
            'count': len(history),
            'history': history,
            'tier_info': tier_info,
        }

    def get_heatmap_data(self, hours_back: float = 24) -> dict:
        """
        Per-port series over aligned timestamps, with per-port peaks.

        The `_total` series is returned separately as totalHistory. The two
        newest slots are left out since their buckets are still filling.
        """
        result = self.read_rollup(hours_back)
        tier_info = result.get('tier_info')
        interval = tier_info['interval'] if tier_info else self.tiers[0].interval_seconds

        by_timestamp: Dict[int, dict] = {}
        for entry in result['data']:
            by_timestamp[entry['timestamp']] = entry.get('ports') or {}

        end_time = self.clock()
        timestamps = self._aligned_range(end_time - hours_back * 3600, end_time, interval)[:-2]

        port_names = sorted({p for ports in by_timestamp.values() for p in ports if p != TOTAL_KEY})
        series_names = port_names + ([TOTAL_KEY] if any(TOTAL_KEY in p for p in by_timestamp.values()) else [])

        time_series: Dict[str, List[dict]] = {}
        peaks: Dict[str, float] = {}
        for name in series_names:
            series = []
            peak = 0
            for ts in timestamps:
                reading = by_timestamp.get(ts, {}).get(name)
                if reading is not None:
                    point = {
                        'timestamp': ts,
                        'value': reading.get('avg', 0),
                        'min': reading.get('min', 0),
                        'max': reading.get('max', 0),
                    }
                    peak = max(peak, point['max'])
                else:
                    point = {'timestamp': ts, 'value': 0, 'min': 0, 'max': 0}
                series.append(point)
            time_series[name] = series
            peaks[name] = peak

        total_history = time_series.pop(TOTAL_KEY, [])
        peaks.pop(TOTAL_KEY, None)

        return {
            'success': True,
            'hours': hours_back,
            'portCount': len(port_names),
            'ports': port_names,
            'timeSeries': time_series,
            'totalHistory': total_history,
            'peaks': peaks,
            'timestamps': timestamps,
            'period': result.get('period'),
            'tier_info': tier_info,
        }
