"""
Connectivity ping metrics.

Raw samples: {timestamp, host, latency, status}. One rollup record per
bucket with latency min/max/avg, success/failure counts and per-host sample
counts.
"""

from typing import Dict, List, Optional

from .base_collector import BaseCollector
from .stats import round_value, summarize


class PingCollector(BaseCollector):
    """Single aggregate per bucket over every pinged host."""

    config_key = "ping"

    def aggregate_metrics(self, metrics: List[dict]) -> Optional[dict]:
        """Summary statistics for a set of ping samples."""
        if not metrics:
            return None

        latencies = []
        hosts: Dict[str, int] = {}
        success_count = 0
        failure_count = 0

        for entry in metrics:
            latency = entry.get('latency')
            if latency is not None:
                latencies.append(float(latency))

            host = entry.get('host')
            if host is not None:
                hosts[host] = hosts.get(host, 0) + 1

            status = entry.get('status')
            if status == 'success':
                success_count += 1
            elif status == 'failure':
                failure_count += 1

        sample_count = len(metrics)
        # No explicit failure tally: everything that did not succeed failed
        if failure_count == 0:
            failure_count = sample_count - success_count

        stats = summarize(latencies)
        return {
            'min_latency': round_value(stats['min'], 3) if stats else None,
            'max_latency': round_value(stats['max'], 3) if stats else None,
            'avg_latency': round_value(stats['avg'], 3) if stats else None,
            'sample_count': sample_count,
            'success_count': success_count,
            'failure_count': failure_count,
            'hosts': hosts,
        }

    def aggregate_for_rollup(self, bucket_samples, bucket_start, interval):
        aggregated = self.aggregate_metrics(bucket_samples)
        if aggregated is None:
            return None
        record = self.bucket_header(bucket_start, interval)
        record.update(aggregated)
        return record

    def matches_entity(self, entry: dict, entity: str) -> bool:
        # Rollup records carry a per-host count map; raw samples a single host
        if 'hosts' in entry:
            return entity in (entry.get('hosts') or {})
        return entry.get('host') == entity
