"""
Common collector behaviour shared by every metric domain.

A collector binds one raw log, an ordered tier set and a domain aggregation
policy to MetricsStorage and RollupProcessor. Subclasses implement
aggregate_for_rollup() and may override sample normalization and entity
matching, or set `cascade` so coarser tiers read the next finer tier.
"""

import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

from .config import MetricsConfig, QualityConfig
from .interfaces import RollupSource
from .logger import get_logger
from .rollup import RollupProcessor, RollupState
from .storage import MetricsStorage
from .tiers import STANDARD_TIERS, STANDARD_TIER_HOURS, TierConfig


Samples = Union[dict, Sequence[dict]]


class BaseCollector(RollupSource):
    """Write/read/query surface over one raw log and its rollup tiers."""

    # Name of the storage.<config_key>_dir entry in the config
    config_key = "base"
    # Field identifying the entity (host, rail, port) a sample belongs to
    entity_field: Optional[str] = None
    # Tiers above the finest read the next finer tier instead of the raw log
    cascade = False

    def __init__(self, data_dir, tiers: Optional[Sequence[TierConfig]] = None,
                 tier_hours: Sequence[float] = STANDARD_TIER_HOURS,
                 raw_file: str = "raw.log", state_file: str = "rollup-state.json",
                 raw_retention_seconds: int = 25 * 3600,
                 quality: Optional[QualityConfig] = None,
                 backup_suffix: str = ".old",
                 clock: Callable[[], float] = time.time):
        self.data_dir = Path(data_dir)
        self.raw_file = self.data_dir / raw_file
        self.state_file = self.data_dir / state_file
        self.raw_retention_seconds = raw_retention_seconds
        self.backup_suffix = backup_suffix
        self.clock = clock
        self.logger = get_logger(self.__class__.__name__)

        self.storage = MetricsStorage(clock=clock)
        self.rollup = RollupProcessor(
            tiers=list(tiers or STANDARD_TIERS),
            tier_hours=tier_hours,
            storage=self.storage,
            quality=quality,
            clock=clock,
            backup_suffix=backup_suffix,
        )

    @classmethod
    def from_config(cls, config: MetricsConfig, clock: Callable[[], float] = time.time, **overrides):
        """Build a collector from the shared config."""
        kwargs = dict(
            data_dir=config.get_collector_dir(cls.config_key),
            raw_file=config.storage.raw_file,
            state_file=config.storage.state_file,
            raw_retention_seconds=config.retention.raw_retention_hours * 3600,
            quality=config.quality,
            backup_suffix=config.storage.backup_suffix,
            clock=clock,
        )
        kwargs.update(cls._config_kwargs(config))
        kwargs.update(overrides)
        return cls(**kwargs)

    @classmethod
    def _config_kwargs(cls, config: MetricsConfig) -> dict:
        """Domain-specific constructor arguments taken from config."""
        return {}

    # ------------------------------------------------------------------
    # Paths and tiers
    # ------------------------------------------------------------------

    @property
    def tiers(self) -> List[TierConfig]:
        return self.rollup.tiers

    def rollup_file_path(self, tier: str) -> Path:
        return self.data_dir / f"{tier}.log"

    def source_tier(self, tier: str) -> Optional[str]:
        if not self.cascade:
            return None
        names = self.rollup.tier_names()
        index = names.index(tier)
        return names[index - 1] if index > 0 else None

    def source_file_path(self, tier: str) -> Path:
        finer = self.source_tier(tier)
        return self.raw_file if finer is None else self.rollup_file_path(finer)

    def get_rollup_state(self) -> RollupState:
        return self.rollup.get_state(self.state_file)

    def get_best_rollup_tier(self, hours_back: float) -> str:
        return self.rollup.get_best_tier_for_hours(hours_back)

    # ------------------------------------------------------------------
    # Raw samples
    # ------------------------------------------------------------------

    def normalize_sample(self, sample: dict) -> Optional[dict]:
        """Canonical form of an incoming sample; None rejects it."""
        if not isinstance(sample, dict):
            return None
        sample = dict(sample)
        ts = sample.get('timestamp')
        if ts is None:
            sample['timestamp'] = int(self.clock())
        elif not isinstance(ts, (int, float)) or isinstance(ts, bool):
            return None
        return sample

    def normalize_stored(self, entry: dict) -> dict:
        """Canonical form of an entry read back from disk."""
        return entry

    def matches_entity(self, entry: dict, entity: str) -> bool:
        if self.entity_field is None:
            return True
        return entry.get(self.entity_field) == entity

    def _entity_filter(self, entity: Optional[str]) -> Optional[Callable[[dict], bool]]:
        if entity is None:
            return None
        return lambda entry: self.matches_entity(self.normalize_stored(entry), entity)

    def sort_key(self, entry: dict):
        if self.entity_field is None:
            return entry['timestamp']
        return (entry['timestamp'], str(entry.get(self.entity_field) or ''))

    def write(self, samples: Samples) -> bool:
        """Append one sample or a batch to the raw log."""
        if isinstance(samples, dict):
            samples = [samples]

        entries = []
        for sample in samples:
            normalized = self.normalize_sample(sample)
            if normalized is None:
                self.logger.warning(f"Rejected malformed sample: {sample!r}")
                continue
            entries.append(normalized)

        if not entries and samples:
            return False
        return self.storage.write_batch(self.raw_file, entries)

    def read_raw(self, since_hours: Optional[float] = None, entity: Optional[str] = None) -> List[dict]:
        """Raw samples of the last since_hours (all when None), optionally for one entity."""
        since = 0 if since_hours is None else self.clock() - since_hours * 3600
        entries = self.storage.read(self.raw_file, since, self._entity_filter(entity))
        return [self.normalize_stored(e) for e in entries]

    def rotate_raw(self) -> Dict[str, int]:
        return self.storage.rotate(self.raw_file, self.raw_retention_seconds, self.backup_suffix)

    # ------------------------------------------------------------------
    # Rollups
    # ------------------------------------------------------------------

    @staticmethod
    def bucket_header(bucket_start: int, interval: int) -> dict:
        return {
            'timestamp': bucket_start,
            'period_start': bucket_start,
            'period_end': bucket_start + interval,
        }

    def process_rollup(self) -> None:
        """Run every tier once, then trim the raw log."""
        for tier in self.tiers:
            try:
                self.rollup.process_tier(tier, self.state_file, self)
            except Exception as e:
                self.logger.error(f"ERROR processing rollup tier {tier.name}: {e}", exc_info=True)
        self.rotate_raw()

    def read_rollup_data(self, tier: str, start_time: Optional[float] = None,
                         end_time: Optional[float] = None, entity: Optional[str] = None) -> dict:
        result = self.rollup.read_rollup_data(
            self.rollup_file_path(tier), tier, start_time, end_time, self._entity_filter(entity)
        )
        if result['success'] and result['data']:
            result['data'] = sorted(result['data'], key=self.sort_key)
        return result

    def resolve_tier(self, hours_back: float) -> str:
        """Best tier for the span, falling back to finer tiers whose file exists."""
        names = self.rollup.tier_names()
        best = self.get_best_rollup_tier(hours_back)
        if self.rollup_file_path(best).exists():
            return best
        for name in reversed(names[:names.index(best)]):
            if self.rollup_file_path(name).exists():
                return name
        return best

    def read_rollup(self, hours_back: float = 24, entity: Optional[str] = None) -> dict:
        """Rollup records covering the last hours_back from the best available tier."""
        end_time = self.clock()
        start_time = end_time - hours_back * 3600

        tier = self.resolve_tier(hours_back)
        result = self.read_rollup_data(tier, start_time, end_time, entity)

        if result['success']:
            tier_config = self.rollup.get_tier(tier)
            result['tier_info'] = {
                'tier': tier,
                'interval': tier_config.interval_seconds,
                'label': tier_config.label,
            }
        return result

    def get_metrics(self, hours_back: float = 24, entity: Optional[str] = None) -> dict:
        return self.read_rollup(hours_back, entity)

    def get_raw_metrics(self, hours_back: float = 24, entity: Optional[str] = None) -> dict:
        end_time = self.clock()
        start_time = end_time - hours_back * 3600

        data = [
            entry for entry in self.read_raw(hours_back, entity)
            if start_time <= entry['timestamp'] <= end_time
        ]
        result = {
            'success': True,
            'count': len(data),
            'data': data,
            'period': {'start': start_time, 'end': end_time, 'hours': hours_back},
        }
        if entity is not None:
            result[self.entity_field or 'entity'] = entity
        return result

    def get_rollup_tiers_info(self) -> Dict[str, dict]:
        return self.rollup.get_tiers_info(self.rollup_file_path)
