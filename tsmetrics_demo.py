#!/usr/bin/env python3
"""
TSMetrics Demo
Simulates hours of sample collection for every metric domain against a fake
clock, runs a rollup pass each simulated minute and reports what landed in
each tier.

Usage:
    python tsmetrics_demo.py                 # 2 simulated hours
    python tsmetrics_demo.py 12              # 12 simulated hours
    python tsmetrics_demo.py 6 --hosts 5     # 5 remotes
    python tsmetrics_demo.py 1 --storage ./demo_store
"""

import argparse
import math
import random
import shutil
import time
from pathlib import Path

import psutil

from tsmetrics.tsmetrics import TSMetrics
from tsmetrics.logger import MetricsLogger, get_logger
from tsmetrics.config import get_config


SAMPLE_INTERVAL = 5
ROLLUP_INTERVAL = 60


class SimulatedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def get_memory_usage():
    """Get current system memory usage."""
    process = psutil.Process()
    memory_info = process.memory_info()
    return {
        'rss_mb': memory_info.rss / (1024 * 1024),
        'vms_mb': memory_info.vms / (1024 * 1024),
        'system_available_mb': psutil.virtual_memory().available / (1024 * 1024)
    }


def generate_minute(ts: int, hosts: int, counters: dict, rng: random.Random) -> dict:
    """One simulated minute of samples for every collector."""
    batches = {name: [] for name in ('ping', 'multisync', 'network_quality', 'voltage', 'efuse')}

    for offset in range(0, ROLLUP_INTERVAL, SAMPLE_INTERVAL):
        t = ts + offset
        ok = rng.random() > 0.02
        batches['ping'].append({
            'timestamp': t,
            'host': '8.8.8.8',
            'latency': round(rng.gauss(20, 4), 3) if ok else None,
            'status': 'success' if ok else 'failure',
        })

        for i in range(hosts):
            hostname = f"remote{i + 1}"
            latency = max(0.5, rng.gauss(8 + i * 3, 2))
            batches['multisync'].append({
                'timestamp': t,
                'hostname': hostname,
                'address': f"192.168.1.{10 + i}",
                'latency': round(latency, 3),
                'jitter': round(abs(rng.gauss(0, 1.5)), 2),
                'status': 'success',
            })

            # 2 pkt/s at a 50ms step, with a little loss
            counters[hostname] = counters.get(hostname, 0) + int(SAMPLE_INTERVAL * 2 * rng.uniform(0.95, 1.0))
            batches['network_quality'].append({
                'timestamp': t,
                'hostname': hostname,
                'address': f"192.168.1.{10 + i}",
                'latency': round(latency, 1),
                'isPlaying': True,
                'remotePacketsReceived': counters[hostname],
                'stepTime': 50,
            })

        batches['voltage'].append({
            'timestamp': t,
            'voltages': {
                'core': round(rng.uniform(0.86, 0.88), 4),
                'sdram_c': round(rng.uniform(1.09, 1.11), 4),
            },
        })

        load = 0.5 + 0.5 * math.sin(t / 900)
        batches['efuse'].append({
            'timestamp': t,
            'ports': {f"Port {p}": int(200 + 800 * load * rng.uniform(0.9, 1.1)) for p in range(1, 5)},
        })

    return batches


def demo_tsmetrics(hours: float, hosts: int, storage_dir: str = None, seed: int = 42):
    """Main TSMetrics demonstration function."""
    config = get_config()

    if storage_dir is None:
        storage_dir = "./tsmetrics_demo_storage"
    storage_path = Path(storage_dir)
    log_dir = storage_path / "logs"

    if storage_path.exists():
        print(f"Cleaning previous storage: {storage_path}")
        shutil.rmtree(storage_path)
    log_dir.mkdir(parents=True, exist_ok=True)

    config.storage.base_path = str(storage_path)
    MetricsLogger.setup(log_dir=str(log_dir), log_level=config.logging.level, console_output=True)
    logger = get_logger("MetricsDemo")

    minutes = int(hours * 60)
    start = (int(time.time()) // ROLLUP_INTERVAL) * ROLLUP_INTERVAL - minutes * ROLLUP_INTERVAL
    clock = SimulatedClock(start)
    metrics = TSMetrics(config=config, clock=clock)
    rng = random.Random(seed)
    counters = {}

    print("TSMETRICS DEMO")
    print("=" * 50)
    print(f"Simulated span: {hours:g} hours ({minutes} rollup ticks)")
    print(f"Remote hosts:   {hosts}")
    print(f"Storage:        {storage_path}")
    print(f"Logs:           {MetricsLogger.get_log_file()}")
    print()

    wall_start = time.time()
    written = 0
    for minute in range(minutes):
        ts = start + minute * ROLLUP_INTERVAL
        for name, samples in generate_minute(ts, hosts, counters, rng).items():
            if metrics.write(name, samples):
                written += len(samples)
        clock.advance(ROLLUP_INTERVAL)
        metrics.process_rollups()

        if (minute + 1) % 60 == 0:
            logger.info(f"Simulated {minute + 1} minutes, {written:,} samples written")
            print(f"  {minute + 1:5d}/{minutes} minutes simulated, {written:,} samples")

    # Let the coarsest buckets of the span elapse
    clock.advance(2 * 7200)
    metrics.process_rollups()
    elapsed = time.time() - wall_start

    print(f"\nCOLLECTION COMPLETE")
    print(f"   Written: {written:,} samples in {elapsed:.1f}s")

    print(f"\nROLLUP TIERS")
    print("-" * 35)
    for name, collector in metrics.collectors.items():
        counts = []
        for tier in collector.tiers:
            result = collector.read_rollup_data(tier.name, 0, clock())
            counts.append(f"{tier.name}={result.get('count', 0)}")
        print(f"  {name:16s} {'  '.join(counts)}")

    status = metrics.collector('network_quality').get_status()
    print(f"\nNETWORK QUALITY (last hour)")
    print("-" * 35)
    print(f"  Overall: {status['summary']['overallQuality']}")
    print(f"  Avg latency: {status['summary']['avgLatency']}ms, "
          f"jitter: {status['summary']['avgJitter']}ms, loss: {status['summary']['avgPacketLoss']}%")

    memory = get_memory_usage()
    print(f"\nMEMORY USAGE")
    print("-" * 20)
    print(f"  Process RAM: {memory['rss_mb']:.1f}MB")
    print(f"  System available: {memory['system_available_mb']:.1f}MB")


def main():
    """Parse arguments and run the demo."""
    parser = argparse.ArgumentParser(
        description="TSMetrics Demo - simulated collection and rollup",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python tsmetrics_demo.py                 # 2 simulated hours
  python tsmetrics_demo.py 12              # 12 simulated hours
  python tsmetrics_demo.py 6 --hosts 5     # 5 remotes
        """
    )

    parser.add_argument("hours", type=float, nargs="?", default=2, help="Simulated hours of collection")
    parser.add_argument("--hosts", type=int, default=3, help="Number of simulated remotes")
    parser.add_argument("--storage", type=str, help="Custom storage directory")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")

    args = parser.parse_args()

    if args.hours <= 0:
        print("Error: Hours must be positive")
        return
    if args.hosts <= 0:
        print("Error: Host count must be positive")
        return

    try:
        demo_tsmetrics(args.hours, args.hosts, storage_dir=args.storage, seed=args.seed)
    except KeyboardInterrupt:
        print("\nDemo interrupted by user")


if __name__ == "__main__":
    main()
