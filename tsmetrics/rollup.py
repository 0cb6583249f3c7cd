"""
Multi-resolution rollup processor.

Compacts raw samples into fixed-width buckets per tier, keeping a persisted
cursor per tier so every bucket is emitted at most once and only after it has
fully elapsed:

    raw.log --(bucket + aggregate)--> 1min.log, 5min.log, 30min.log, 2hour.log
                     |
            rollup-state.json  {tier: {last_processed, last_bucket_end, last_rollup, complete_through}}
"""

import fcntl
import json
import os
import time
from collections import defaultdict
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from .config import QualityConfig, ThresholdConfig
from .interfaces import RollupSource
from .logger import get_logger
from .stats import quality_rating
from .storage import MetricsStorage
from .tiers import STANDARD_TIERS, STANDARD_TIER_HOURS, TierConfig, format_duration, format_interval


LATENCY_THRESHOLDS = ThresholdConfig(good=50, fair=100, poor=250)       # ms
JITTER_THRESHOLDS = ThresholdConfig(good=10, fair=20, poor=50)          # ms
PACKET_LOSS_THRESHOLDS = ThresholdConfig(good=1, fair=2, poor=5)        # percent

DEFAULT_QUALITY = QualityConfig(
    latency=LATENCY_THRESHOLDS,
    jitter=JITTER_THRESHOLDS,
    packet_loss=PACKET_LOSS_THRESHOLDS,
)


@dataclass
class TierState:
    """Persisted cursor for one tier."""
    last_processed: float = 0
    last_bucket_end: int = 0
    last_rollup: float = 0
    # Every source sample up to here has been compacted; coarser tiers may not read past it
    complete_through: float = 0


RollupState = Dict[str, TierState]


class RollupProcessor:
    """Tier selection, cursor state and bucket compaction shared by all collectors."""

    def __init__(self, tiers: Optional[Sequence[TierConfig]] = None,
                 tier_hours: Sequence[float] = STANDARD_TIER_HOURS,
                 storage: Optional[MetricsStorage] = None,
                 quality: Optional[QualityConfig] = None,
                 clock: Callable[[], float] = time.time,
                 backup_suffix: str = '.old'):
        self._tiers: List[TierConfig] = list(tiers or STANDARD_TIERS)
        self.tier_hours = tuple(tier_hours)
        self.clock = clock
        self.storage = storage or MetricsStorage(clock=clock)
        self.quality = quality or DEFAULT_QUALITY
        self.backup_suffix = backup_suffix
        self.logger = get_logger("RollupProcessor")

    # ------------------------------------------------------------------
    # Tier selection
    # ------------------------------------------------------------------

    @property
    def tiers(self) -> List[TierConfig]:
        return list(self._tiers)

    def tier_names(self) -> List[str]:
        return [t.name for t in self._tiers]

    def get_tier(self, name: str) -> Optional[TierConfig]:
        for tier in self._tiers:
            if tier.name == name:
                return tier
        return None

    def get_best_tier_for_hours(self, hours_back: float) -> str:
        """Coarsest tier that still gives acceptable resolution for the span."""
        index = len(self.tier_hours)
        for i, limit in enumerate(self.tier_hours):
            if hours_back <= limit:
                index = i
                break
        index = min(index, len(self._tiers) - 1)
        return self._tiers[index].name

    def get_tiers_info(self, file_path_fn: Callable[[str], Path]) -> Dict[str, dict]:
        """Descriptive per-tier info, including whether each file exists yet."""
        result = {}
        for tier in self._tiers:
            path = Path(file_path_fn(tier.name))
            exists = path.exists()
            result[tier.name] = {
                'interval': tier.interval_seconds,
                'interval_label': format_interval(tier.interval_seconds),
                'retention': tier.retention_seconds,
                'retention_label': format_duration(tier.retention_seconds),
                'label': tier.label,
                'file_exists': exists,
                'file_size': path.stat().st_size if exists else 0,
            }
        return result

    # ------------------------------------------------------------------
    # Quality ratings
    # ------------------------------------------------------------------

    def _rate(self, value: Optional[float], thresholds: ThresholdConfig) -> Optional[str]:
        if value is None:
            return None
        return quality_rating(value, thresholds.good, thresholds.fair, thresholds.poor)

    def rate_latency(self, value: Optional[float]) -> Optional[str]:
        return self._rate(value, self.quality.latency)

    def rate_jitter(self, value: Optional[float]) -> Optional[str]:
        return self._rate(value, self.quality.jitter)

    def rate_packet_loss(self, value: Optional[float]) -> Optional[str]:
        return self._rate(value, self.quality.packet_loss)

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def _fresh_tier_state(self) -> TierState:
        return TierState(last_processed=0, last_bucket_end=0, last_rollup=self.clock())

    def _fresh_state(self) -> RollupState:
        return {tier.name: self._fresh_tier_state() for tier in self._tiers}

    def _load_state_file(self, path: Path) -> Optional[object]:
        """Raw decoded state file; None when absent or empty."""
        if not path.exists():
            return None
        with open(path, 'r', encoding='utf-8') as f:
            fcntl.flock(f, fcntl.LOCK_SH)
            try:
                content = f.read()
            finally:
                fcntl.flock(f, fcntl.LOCK_UN)
        if not content.strip():
            return None
        return json.loads(content)

    def get_state(self, state_file) -> RollupState:
        """
        Load the per-tier cursors, creating fresh state on first use.

        Tiers missing from the file (or missing fields) are backfilled; a file
        that cannot be parsed is rebuilt from scratch.
        """
        path = Path(state_file)
        try:
            raw = self._load_state_file(path)
        except (OSError, ValueError) as e:
            self.logger.warning(f"Corrupted rollup state file detected: {path} ({e}). Rebuilding fresh state.")
            raw = None
        else:
            if raw is not None and (not isinstance(raw, dict) or not raw):
                self.logger.warning(f"Corrupted rollup state file detected: {path}. Rebuilding fresh state.")
                raw = None

        if raw is None:
            state = self._fresh_state()
            self.save_state(path, state)
            return state

        state: RollupState = {}
        for tier in self._tiers:
            stored = raw.get(tier.name)
            if not isinstance(stored, dict):
                state[tier.name] = self._fresh_tier_state()
                continue

            tier_state = self._fresh_tier_state()
            for field in ('last_processed', 'last_bucket_end', 'last_rollup', 'complete_through'):
                value = stored.get(field)
                if isinstance(value, (int, float)) and not isinstance(value, bool):
                    setattr(tier_state, field, value)
            state[tier.name] = tier_state

        return state

    def save_state(self, state_file, state: RollupState) -> bool:
        """Replace the state file contents under an exclusive lock."""
        path = Path(state_file)
        payload = json.dumps({name: asdict(tier_state) for name, tier_state in state.items()}, indent=2)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'a+', encoding='utf-8') as f:
                fcntl.flock(f, fcntl.LOCK_EX)
                try:
                    f.seek(0)
                    f.truncate()
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                finally:
                    fcntl.flock(f, fcntl.LOCK_UN)
        except OSError as e:
            self.logger.error(f"Unable to write rollup state file {path}: {e}")
            return False
        return True

    # ------------------------------------------------------------------
    # Rollup data operations
    # ------------------------------------------------------------------

    def read_rollup_data(self, rollup_file, tier: str, start_time: Optional[float] = None,
                         end_time: Optional[float] = None,
                         filter_fn: Optional[Callable[[dict], bool]] = None) -> dict:
        """Entries of a tier file within [start_time, end_time]."""
        path = Path(rollup_file)
        if not path.exists():
            return {'success': False, 'error': 'Rollup file not found', 'data': []}

        if end_time is None:
            end_time = self.clock()
        if start_time is None:
            tier_config = self.get_tier(tier)
            window = tier_config.retention_seconds if tier_config else 24 * 3600
            start_time = end_time - window

        def in_range(entry: dict) -> bool:
            if not (start_time <= entry['timestamp'] <= end_time):
                return False
            return filter_fn is None or filter_fn(entry)

        data = self.storage.read(path, 0, in_range)
        return {
            'success': True,
            'count': len(data),
            'data': data,
            'tier': tier,
            'period': {'start': start_time, 'end': end_time},
        }

    def append_rollup_entries(self, rollup_file, entries: List[dict]) -> bool:
        return self.storage.write_batch(rollup_file, entries)

    def rotate_rollup_file(self, rollup_file, retention_seconds: int) -> Dict[str, int]:
        return self.storage.rotate(rollup_file, retention_seconds, self.backup_suffix)

    # ------------------------------------------------------------------
    # Tier processing
    # ------------------------------------------------------------------

    def process_tier(self, tier: TierConfig, state_file, source: RollupSource) -> int:
        """
        Compact every fully elapsed, not yet emitted bucket of one tier.

        Returns the number of rollup records appended.
        """
        now = self.clock()
        state = self.get_state(state_file)
        tier_state = state.setdefault(tier.name, self._fresh_tier_state())
        interval = tier.interval_seconds

        # Never run a tier more often than its own bucket width
        if now - tier_state.last_rollup < interval:
            return 0

        # Excludes the in-flight second so a still-filling bucket is never emitted
        processing_cutoff = now - 1
        finer_tier = source.source_tier(tier.name)
        if finer_tier is not None:
            # A finer tier skipped by its own throttle may still owe records for this span
            finer_state = state.get(finer_tier)
            processing_cutoff = min(processing_cutoff, finer_state.complete_through if finer_state else 0)

        samples = self.storage.read(source.source_file_path(tier.name), tier_state.last_processed)
        if not samples:
            tier_state.last_rollup = now
            tier_state.complete_through = processing_cutoff
            self.save_state(state_file, state)
            return 0

        buckets: Dict[int, List[dict]] = defaultdict(list)
        for sample in samples:
            buckets[tier.bucket_start(sample['timestamp'])].append(sample)

        ready = [
            start for start in sorted(buckets)
            if tier_state.last_bucket_end < start + interval <= processing_cutoff
        ]

        rollup_file = source.rollup_file_path(tier.name)
        already_written = set()
        if ready:
            # Buckets appended by a run that died before saving its cursor
            already_written = {
                entry['timestamp'] for entry in self.storage.read(rollup_file, ready[0] - 1)
            }

        new_entries: List[dict] = []
        newest_bucket_end = tier_state.last_bucket_end
        newest_sample = tier_state.last_processed

        for bucket_start in ready:
            bucket_samples = buckets[bucket_start]
            newest_bucket_end = max(newest_bucket_end, bucket_start + interval)
            newest_sample = max(newest_sample, max(s['timestamp'] for s in bucket_samples))

            if bucket_start in already_written:
                self.logger.info(f"{tier.name}: bucket {bucket_start} already present in {rollup_file}, skipping")
                continue

            aggregated = source.aggregate_for_rollup(bucket_samples, bucket_start, interval)
            if not aggregated:
                continue
            if isinstance(aggregated, list):
                new_entries.extend(aggregated)
            else:
                new_entries.append(aggregated)

        if new_entries and not self.append_rollup_entries(rollup_file, new_entries):
            self.logger.error(f"{tier.name}: failed to append {len(new_entries)} rollup entries; cursor not advanced")
            return 0

        tier_state.last_bucket_end = newest_bucket_end
        tier_state.last_processed = newest_sample
        tier_state.last_rollup = now
        tier_state.complete_through = processing_cutoff
        self.save_state(state_file, state)

        if new_entries:
            self.logger.info(f"{tier.name}: appended {len(new_entries)} rollup entries "
                             f"from {len(ready)} buckets to {rollup_file}")

        self.rotate_rollup_file(rollup_file, tier.retention_seconds)
        return len(new_entries)
