"""
Rollup tier definitions.

A tier is one (bucket interval, retention) pair. Collectors own an ordered
list of tiers, finest first.
"""

from dataclasses import dataclass, replace
from typing import List, Optional


HOUR = 3600
DAY = 86400


@dataclass(frozen=True)
class TierConfig:
    """One resolution/retention pair in the rollup hierarchy."""
    name: str
    interval_seconds: int
    retention_seconds: int
    label: str

    def bucket_start(self, timestamp: float) -> int:
        """Start of the bucket containing timestamp."""
        return int(timestamp // self.interval_seconds) * self.interval_seconds


STANDARD_TIERS: List[TierConfig] = [
    TierConfig('1min', 60, 6 * HOUR, '1-minute averages'),
    TierConfig('5min', 300, 48 * HOUR, '5-minute averages'),
    TierConfig('30min', 1800, 14 * DAY, '30-minute averages'),
    TierConfig('2hour', 7200, 90 * DAY, '2-hour averages'),
]

# Longest span (hours) each tier position is preferred for; beyond the last, the coarsest tier
STANDARD_TIER_HOURS = (6, 48, 336)


def capped_tiers(retention_seconds: int, tiers: Optional[List[TierConfig]] = None) -> List[TierConfig]:
    """Every tier of the set with its retention capped at a total budget."""
    tiers = tiers or STANDARD_TIERS
    capped = [replace(t, retention_seconds=min(t.retention_seconds, retention_seconds)) for t in tiers]
    # The coarsest tier always keeps the whole budget
    capped[-1] = replace(capped[-1], retention_seconds=retention_seconds)
    return capped


def budget_tiers(retention_days: float) -> List[TierConfig]:
    """
    Tier subset for a configured retention budget.

    1min always; 5min past one day; 30min past three days; 2hour past a week.
    Each retention is capped by the budget.
    """
    budget = int(retention_days * DAY)
    tiers = [TierConfig('1min', 60, min(6 * HOUR, budget), '1-minute averages')]
    if retention_days > 1:
        tiers.append(TierConfig('5min', 300, min(48 * HOUR, budget), '5-minute averages'))
    if retention_days > 3:
        tiers.append(TierConfig('30min', 1800, min(7 * DAY, budget), '30-minute averages'))
    if retention_days > 7:
        tiers.append(TierConfig('2hour', 7200, budget, '2-hour averages'))
    return tiers


def _fmt(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


def format_interval(seconds: int) -> str:
    """Human-readable bucket interval."""
    if seconds < 60:
        return f"{_fmt(seconds)} seconds"
    if seconds < HOUR:
        return f"{_fmt(seconds / 60)} minutes"
    return f"{_fmt(seconds / HOUR)} hours"


def format_duration(seconds: int) -> str:
    """Human-readable retention window."""
    if seconds < HOUR:
        return f"{_fmt(seconds / 60)} minutes"
    if seconds < DAY:
        return f"{_fmt(seconds / HOUR)} hours"
    return f"{_fmt(seconds / DAY)} days"
