"""
Interfaces between the rollup processor and the per-domain collectors.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Union


# A bucket aggregation yields one record, one record per entity, or nothing
RollupResult = Optional[Union[dict, List[dict]]]


class RollupSource(ABC):
    """What the rollup processor needs from a collector to compact one tier."""

    @abstractmethod
    def aggregate_for_rollup(self, bucket_samples: List[dict], bucket_start: int, interval: int) -> RollupResult:
        """
        Aggregate one fully elapsed bucket.
        Returns None for an empty or meaningless bucket.
        """
        pass

    @abstractmethod
    def rollup_file_path(self, tier: str) -> Path:
        """Path of the rollup log for a tier."""
        pass

    @abstractmethod
    def source_file_path(self, tier: str) -> Path:
        """Where a tier reads its input from (the raw log or a finer tier)."""
        pass

    def source_tier(self, tier: str) -> Optional[str]:
        """Finer tier whose rollups feed this tier; None when it reads the raw log."""
        return None
