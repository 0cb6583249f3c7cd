"""
Network quality metrics for multi-sync remotes.

Raw samples: {timestamp, hostname, address, latency, jitter, isPlaying,
remotePacketsReceived, stepTime}. Each bucket yields one record per host with
latency statistics (with p95), RFC 3550 jitter, a window-based packet loss
estimate and quality ratings.

Packet loss is estimated from the remote's monotonically increasing sync
packet counter over the playing part of the bucket:

    expected = expected_sync_rate(median stepTime) * window
    loss_pct = max(0, expected - received) / expected * 100

A counter that goes backwards inside the bucket (remote restarted) makes the
estimate meaningless, so the bucket reports None.
"""

from collections import defaultdict
from typing import Dict, List, Optional

from .base_collector import BaseCollector
from .config import MetricsConfig
from .stats import (
    JitterState,
    QUALITY_ORDER,
    aggregate_latencies,
    calculate_jitter_rfc3550,
    jitter_from_latencies,
    overall_quality_rating,
    round_value,
    summarize,
)


RAW_HISTORY_MAX_HOURS = 6
RAW_HISTORY_INTERVAL = 60


def _is_playing(entry: dict) -> bool:
    # Samples from collectors that predate the flag count as playing
    return entry.get('isPlaying', True) is not False


class NetworkQualityCollector(BaseCollector):
    """Per-host latency, jitter and packet loss rollups."""

    config_key = "network_quality"
    entity_field = "hostname"

    def __init__(self, *args, default_sync_rate: float = 2.0, frames_per_sync: int = 10, **kwargs):
        super().__init__(*args, **kwargs)
        self.default_sync_rate = default_sync_rate
        self.frames_per_sync = frames_per_sync
        self.jitter_state: JitterState = {}

    @classmethod
    def _config_kwargs(cls, config: MetricsConfig) -> dict:
        return {
            'default_sync_rate': config.network_quality.default_sync_rate,
            'frames_per_sync': config.network_quality.frames_per_sync,
        }

    def expected_sync_rate(self, step_ms: Optional[float]) -> float:
        """Sync packets per second a remote should receive at a frame step time."""
        if step_ms is None or step_ms <= 0:
            return self.default_sync_rate
        fps = 1000.0 / step_ms
        return fps / self.frames_per_sync

    def calculate_jitter(self, hostname: str, latency: float) -> Optional[float]:
        return calculate_jitter_rfc3550(hostname, latency, self.jitter_state)

    def loss_percent(self, received: float, window: float, step_ms: Optional[float]) -> float:
        """Packet loss percentage for `received` packets over `window` seconds."""
        expected = self.expected_sync_rate(step_ms) * window
        if expected <= 0:
            return 0.0
        return round_value(max(0.0, expected - received) / expected * 100, 1)

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def _packet_loss(self, samples: List[dict]) -> Dict[str, Optional[float]]:
        """receive_rate and packet_loss_pct over the playing samples of one host."""
        result = {'receive_rate': None, 'packet_loss_pct': None}

        playing = [
            s for s in samples
            if _is_playing(s) and s.get('remotePacketsReceived') is not None
        ]
        if len(playing) < 2:
            return result

        counters = [s['remotePacketsReceived'] for s in playing]
        if any(cur < prev for prev, cur in zip(counters, counters[1:])):
            self.logger.info(
                f"Packet counter reset for {playing[0].get('hostname')}; loss not estimated for this bucket"
            )
            return result

        window = playing[-1]['timestamp'] - playing[0]['timestamp']
        if window <= 0:
            return result

        received = counters[-1] - counters[0]
        step_times = sorted(s['stepTime'] for s in playing if s.get('stepTime') is not None)
        median_step = step_times[len(step_times) // 2] if step_times else None

        result['receive_rate'] = round_value(received / window, 1)
        result['packet_loss_pct'] = self.loss_percent(received, window, median_step)
        return result

    def aggregate_metrics(self, metrics: List[dict]) -> Optional[List[dict]]:
        """Aggregate samples grouped by hostname, in timestamp order."""
        if not metrics:
            return None

        ordered = sorted(metrics, key=lambda m: m.get('timestamp', 0))
        by_host: Dict[str, List[dict]] = defaultdict(list)
        for entry in ordered:
            by_host[entry.get('hostname') or 'unknown'].append(entry)

        aggregated = []
        for hostname, samples in by_host.items():
            latencies = [float(s['latency']) for s in samples if s.get('latency') is not None]
            stored_jitters = [float(s['jitter']) for s in samples if s.get('jitter') is not None]

            result = {
                'hostname': hostname,
                'address': samples[0].get('address', ''),
                'sample_count': len(samples),
            }
            result.update(aggregate_latencies(latencies, precision=1, include_p95=True))
            result['latency_quality'] = self.rollup.rate_latency(result['latency_avg'])

            jitter = jitter_from_latencies(latencies)
            if jitter is None and stored_jitters:
                stats = summarize(stored_jitters)
                jitter = {'avg': round_value(stats['avg'], 2), 'max': round_value(stats['max'], 2)}
            result['jitter_avg'] = jitter['avg'] if jitter else None
            result['jitter_max'] = jitter['max'] if jitter else None
            result['jitter_quality'] = self.rollup.rate_jitter(result['jitter_avg'])

            result.update(self._packet_loss(samples))
            result['packet_loss_quality'] = self.rollup.rate_packet_loss(result['packet_loss_pct'])

            result['overall_quality'] = overall_quality_rating(
                result['latency_quality'],
                result['jitter_quality'],
                result['packet_loss_quality'],
            )
            aggregated.append(result)

        return aggregated

    def aggregate_for_rollup(self, bucket_samples, bucket_start, interval):
        aggregated = self.aggregate_metrics(bucket_samples)
        if not aggregated:
            return None

        entries = []
        for host_data in aggregated:
            record = self.bucket_header(bucket_start, interval)
            record.update(host_data)
            entries.append(record)
        return entries

    # ------------------------------------------------------------------
    # Dashboard views
    # ------------------------------------------------------------------

    def get_status(self) -> dict:
        """Per-host quality over the last hour of raw samples, plus a summary."""
        now = self.clock()
        raw = self.read_raw(since_hours=1)
        aggregated = self.aggregate_metrics(raw) or []

        latencies = [h['latency_avg'] for h in aggregated if h['latency_avg'] is not None]
        jitters = [h['jitter_avg'] for h in aggregated if h['jitter_avg'] is not None]
        losses = [h['packet_loss_pct'] for h in aggregated if h['packet_loss_pct'] is not None]

        if aggregated:
            worst = 'good'
            for host in aggregated:
                if QUALITY_ORDER.get(host['overall_quality'], 0) > QUALITY_ORDER[worst]:
                    worst = host['overall_quality']
        else:
            worst = 'unknown'

        return {
            'success': True,
            'timestamp': int(now),
            'hosts': aggregated,
            'summary': {
                'avgLatency': round_value(summarize(latencies)['avg'], 1) if latencies else None,
                'avgJitter': round_value(summarize(jitters)['avg'], 2) if jitters else None,
                'avgPacketLoss': round_value(summarize(losses)['avg'], 2) if losses else None,
                'overallQuality': worst,
            },
        }

    @staticmethod
    def _empty_chart() -> dict:
        return {'labels': [], 'latency': [], 'jitter': [], 'packetLoss': []}

    @staticmethod
    def _mean(values: List[float], precision: int) -> Optional[float]:
        if not values:
            return None
        return round_value(summarize(values)['avg'], precision)

    def get_history(self, hours_back: float = 6, hostname: Optional[str] = None) -> dict:
        """
        Chart series of latency, jitter and packet loss.

        Spans up to six hours come from raw samples in one-minute buckets;
        longer spans come from the best rollup tier. Labels are in
        milliseconds.
        """
        if hours_back <= RAW_HISTORY_MAX_HOURS:
            return self._history_from_raw(hours_back, hostname)

        result = self.get_metrics(hours_back, hostname)
        if not result['success']:
            return result

        by_timestamp: Dict[int, List[dict]] = defaultdict(list)
        for entry in result['data']:
            by_timestamp[entry['timestamp']].append(entry)

        chart = self._empty_chart()
        for ts in sorted(by_timestamp):
            entries = by_timestamp[ts]
            chart['labels'].append(ts * 1000)
            chart['latency'].append(self._mean(
                [e['latency_avg'] for e in entries if e.get('latency_avg') is not None], 1))
            chart['jitter'].append(self._mean(
                [e['jitter_avg'] for e in entries if e.get('jitter_avg') is not None], 2))
            chart['packetLoss'].append(self._mean(
                [e['packet_loss_pct'] for e in entries if e.get('packet_loss_pct') is not None], 2))

        return {'success': True, 'chartData': chart, 'tier_info': result.get('tier_info')}

    def _history_from_raw(self, hours_back: float, hostname: Optional[str]) -> dict:
        tier_info = {'tier': 'raw', 'interval': RAW_HISTORY_INTERVAL, 'label': '1 minute (raw)'}
        raw = sorted(self.read_raw(since_hours=hours_back, entity=hostname), key=lambda e: e['timestamp'])
        if not raw:
            return {'success': True, 'chartData': self._empty_chart(), 'tier_info': tier_info}

        # Loss between consecutive playing samples of the same host, keyed by sample
        loss_at: Dict[tuple, float] = {}
        previous: Dict[str, dict] = {}
        for sample in raw:
            if not _is_playing(sample) or sample.get('remotePacketsReceived') is None:
                continue
            host = sample.get('hostname') or 'unknown'
            prev = previous.get(host)
            if prev is not None:
                elapsed = sample['timestamp'] - prev['timestamp']
                received = sample['remotePacketsReceived'] - prev['remotePacketsReceived']
                if received >= 0 and elapsed > 0:
                    step = sample.get('stepTime', prev.get('stepTime'))
                    loss_at[(host, sample['timestamp'])] = min(100.0, self.loss_percent(received, elapsed, step))
            previous[host] = sample

        buckets: Dict[int, List[dict]] = defaultdict(list)
        for sample in raw:
            buckets[int(sample['timestamp'] // RAW_HISTORY_INTERVAL) * RAW_HISTORY_INTERVAL].append(sample)

        chart = self._empty_chart()
        for bucket_ts in sorted(buckets):
            samples = buckets[bucket_ts]
            chart['labels'].append(bucket_ts * 1000)
            chart['latency'].append(self._mean(
                [float(s['latency']) for s in samples if s.get('latency') is not None], 1))
            chart['jitter'].append(self._mean(
                [float(s['jitter']) for s in samples if s.get('jitter') is not None], 2))
            losses = [
                loss_at[key] for key in
                ((s.get('hostname') or 'unknown', s['timestamp']) for s in samples)
                if key in loss_at
            ]
            chart['packetLoss'].append(self._mean(losses, 1))

        return {'success': True, 'chartData': chart, 'tier_info': tier_info}
