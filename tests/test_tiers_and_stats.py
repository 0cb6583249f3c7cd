"""
Tests for tier definitions and the shared numeric helpers.
"""

import pytest

from tsmetrics.stats import (
    aggregate_latencies,
    calculate_jitter_rfc3550,
    jitter_from_latencies,
    overall_quality_rating,
    quality_rating,
    round_value,
    summarize,
    summarize_keyed,
)
from tsmetrics.tiers import (
    DAY,
    HOUR,
    STANDARD_TIERS,
    budget_tiers,
    capped_tiers,
    format_duration,
    format_interval,
)


class TestTiers:
    """Tier sets and bucket math."""

    @pytest.mark.parametrize("timestamp", [0, 59, 60, 1_700_000_123, 1_700_000_123.75])
    def test_bucket_alignment(self, timestamp):
        for tier in STANDARD_TIERS:
            start = tier.bucket_start(timestamp)
            assert start % tier.interval_seconds == 0
            assert start <= timestamp < start + tier.interval_seconds

    def test_standard_tiers(self):
        assert [(t.name, t.interval_seconds, t.retention_seconds) for t in STANDARD_TIERS] == [
            ('1min', 60, 6 * HOUR),
            ('5min', 300, 48 * HOUR),
            ('30min', 1800, 14 * DAY),
            ('2hour', 7200, 90 * DAY),
        ]

    def test_capped_tiers(self):
        tiers = capped_tiers(7 * DAY)
        assert [t.retention_seconds for t in tiers] == [6 * HOUR, 48 * HOUR, 7 * DAY, 7 * DAY]

    def test_capped_tiers_short_budget(self):
        tiers = capped_tiers(2 * HOUR)
        assert [t.retention_seconds for t in tiers] == [2 * HOUR] * 4

    @pytest.mark.parametrize("days, names", [
        (1, ['1min']),
        (2, ['1min', '5min']),
        (5, ['1min', '5min', '30min']),
        (10, ['1min', '5min', '30min', '2hour']),
    ])
    def test_budget_tiers(self, days, names):
        assert [t.name for t in budget_tiers(days)] == names

    def test_budget_tier_retentions(self):
        tiers = {t.name: t.retention_seconds for t in budget_tiers(10)}
        assert tiers == {'1min': 6 * HOUR, '5min': 48 * HOUR, '30min': 7 * DAY, '2hour': 10 * DAY}
        assert budget_tiers(1)[0].retention_seconds == 6 * HOUR

    def test_labels(self):
        assert format_interval(30) == "30 seconds"
        assert format_interval(300) == "5 minutes"
        assert format_interval(7200) == "2 hours"
        assert format_duration(1800) == "30 minutes"
        assert format_duration(6 * HOUR) == "6 hours"
        assert format_duration(14 * DAY) == "14 days"


class TestRounding:

    def test_half_away_from_zero(self):
        assert round_value(0.625, 2) == 0.63
        assert round_value(2.5, 0) == 3
        assert round_value(-2.5, 0) == -3
        assert round_value(1.25, 1) == 1.3

    def test_none_passes_through(self):
        assert round_value(None, 2) is None


class TestLatencies:
    """Latency summaries."""

    def test_p95_of_one_to_hundred(self):
        result = aggregate_latencies(list(range(1, 101)))
        assert result == {
            'latency_min': 1,
            'latency_max': 100,
            'latency_avg': 50.5,
            'latency_p95': 95,
        }

    def test_p95_small_sample(self):
        assert aggregate_latencies([42.0])['latency_p95'] == 42.0
        assert aggregate_latencies([3, 1, 2])['latency_p95'] == 3

    def test_precision(self):
        result = aggregate_latencies([1.234, 2.345], precision=2)
        assert result['latency_avg'] == 1.79

    def test_empty_is_all_null(self):
        assert aggregate_latencies([]) == {
            'latency_min': None,
            'latency_max': None,
            'latency_avg': None,
            'latency_p95': None,
        }

    def test_without_p95(self):
        assert 'latency_p95' not in aggregate_latencies([1, 2], include_p95=False)

    def test_summarize(self):
        assert summarize([]) is None
        assert summarize([1, 2, 3]) == {'min': 1, 'max': 3, 'avg': 2, 'sum': 6, 'count': 3}


class TestJitter:
    """RFC 3550 jitter."""

    def test_first_sample_seeds_state(self):
        state = {}
        assert calculate_jitter_rfc3550('host', 50, state) is None
        assert calculate_jitter_rfc3550('host', 60, state) == 0.63

    def test_smoothing_continues(self):
        state = {}
        calculate_jitter_rfc3550('host', 50, state)
        calculate_jitter_rfc3550('host', 60, state)
        # J = 0.625 + (|60 - 60| - 0.625) / 16
        assert calculate_jitter_rfc3550('host', 60, state) == 0.59

    def test_keys_are_independent(self):
        state = {}
        calculate_jitter_rfc3550('a', 50, state)
        assert calculate_jitter_rfc3550('b', 100, state) is None
        assert calculate_jitter_rfc3550('a', 66, state) == 1.0

    def test_from_latencies(self):
        assert jitter_from_latencies([10]) is None
        assert jitter_from_latencies([10, 26]) == {'avg': 1.0, 'max': 1.0}
        result = jitter_from_latencies([10, 26, 26])
        assert result['max'] == 1.0
        assert result['avg'] == round_value((1.0 + 0.9375) / 2, 2)


class TestQuality:
    """Threshold ratings."""

    @pytest.mark.parametrize("value, rating", [
        (0, 'good'),
        (50, 'good'),
        (50.1, 'fair'),
        (100, 'fair'),
        (250, 'poor'),
        (250.01, 'critical'),
    ])
    def test_inclusive_thresholds(self, value, rating):
        assert quality_rating(value, 50, 100, 250) == rating

    def test_overall_is_worst(self):
        assert overall_quality_rating('good', 'poor', 'fair') == 'poor'
        assert overall_quality_rating('good', 'critical') == 'critical'
        assert overall_quality_rating(None, 'fair', None) == 'fair'
        assert overall_quality_rating() == 'good'


class TestSummarizeKeyed:
    """Per-key summaries over raw readings and finer-tier rollups."""

    def test_raw_readings(self):
        result = summarize_keyed([{'a': 1.0, 'b': 5}, {'a': 3.0}])
        assert result['a'] == {'avg': 2.0, 'min': 1.0, 'max': 3.0, 'peak': 3.0, 'samples': 2}
        assert result['b']['samples'] == 1

    def test_rollup_readings(self):
        result = summarize_keyed([
            {'a': {'avg': 2, 'min': 1, 'max': 4, 'samples': 10}},
            {'a': {'avg': 4, 'min': 3, 'max': 9, 'samples': 5}},
        ])
        assert result['a'] == {'avg': 3, 'min': 1, 'max': 9, 'peak': 9, 'samples': 15}

    def test_non_numeric_ignored(self):
        assert summarize_keyed([{'a': 'x', 'b': True}]) == {}
