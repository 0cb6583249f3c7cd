"""
Multi-sync remote ping metrics.

Raw samples: {timestamp, hostname, address, latency, jitter, status}. Each
bucket fans out to one rollup record per hostname.
"""

from typing import Dict, List, Optional

from .base_collector import BaseCollector
from .stats import JitterState, calculate_jitter_rfc3550, round_value, summarize


class MultiSyncPingCollector(BaseCollector):
    """Per-host latency and jitter rollups for multi-sync remotes."""

    config_key = "multisync"
    entity_field = "hostname"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.jitter_state: JitterState = {}

    def calculate_jitter(self, hostname: str, latency: float) -> Optional[float]:
        """Running RFC 3550 jitter for a host, for use when recording samples."""
        return calculate_jitter_rfc3550(hostname, latency, self.jitter_state)

    def aggregate_metrics(self, metrics: List[dict]) -> Optional[List[dict]]:
        """Aggregate samples grouped by hostname."""
        if not metrics:
            return None

        by_host: Dict[str, dict] = {}
        for entry in metrics:
            hostname = entry.get('hostname') or 'unknown'
            host = by_host.setdefault(hostname, {
                'latencies': [],
                'jitters': [],
                'success_count': 0,
                'failure_count': 0,
                'address': entry.get('address', ''),
            })

            if entry.get('latency') is not None:
                host['latencies'].append(float(entry['latency']))
            if entry.get('jitter') is not None:
                host['jitters'].append(float(entry['jitter']))

            if entry.get('status') == 'success':
                host['success_count'] += 1
            else:
                host['failure_count'] += 1

        aggregated = []
        for hostname, data in by_host.items():
            latency = summarize(data['latencies'])
            jitter = summarize(data['jitters'])
            aggregated.append({
                'hostname': hostname,
                'address': data['address'],
                'sample_count': data['success_count'] + data['failure_count'],
                'success_count': data['success_count'],
                'failure_count': data['failure_count'],
                'min_latency': round_value(latency['min'], 3) if latency else None,
                'max_latency': round_value(latency['max'], 3) if latency else None,
                'avg_latency': round_value(latency['avg'], 3) if latency else None,
                'avg_jitter': round_value(jitter['avg'], 2) if jitter else None,
                'max_jitter': round_value(jitter['max'], 2) if jitter else None,
            })

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
