"""
Tests for the rollup processor: tier selection, cursor state and bucket
compaction.
"""

import json

import pytest

from tsmetrics.interfaces import RollupSource
from tsmetrics.rollup import RollupProcessor, TierState
from tsmetrics.storage import MetricsStorage
from tsmetrics.tiers import STANDARD_TIERS, TierConfig

from conftest import BASE_TIME


ONE_MINUTE = STANDARD_TIERS[0]


class CountingSource(RollupSource):
    """Aggregates a bucket into its sample count and records every call."""

    def __init__(self, data_dir, result=True):
        self.data_dir = data_dir
        self.result = result
        self.calls = []

    def aggregate_for_rollup(self, bucket_samples, bucket_start, interval):
        self.calls.append(bucket_start)
        if not self.result:
            return None
        return {'timestamp': bucket_start, 'count': len(bucket_samples)}

    def rollup_file_path(self, tier):
        return self.data_dir / f"{tier}.log"

    def source_file_path(self, tier):
        return self.data_dir / "raw.log"


class FailingSource(CountingSource):

    def aggregate_for_rollup(self, bucket_samples, bucket_start, interval):
        raise ValueError("bad bucket")


@pytest.fixture
def processor(clock):
    return RollupProcessor(tiers=[ONE_MINUTE], clock=clock)


@pytest.fixture
def source(tmp_path):
    return CountingSource(tmp_path)


def write_raw(tmp_path, *timestamps):
    MetricsStorage().write_batch(tmp_path / "raw.log", [{'timestamp': t} for t in timestamps])


def read_tier(tmp_path, tier='1min'):
    return MetricsStorage().read(tmp_path / f"{tier}.log")


class TestTierSelection:
    """Best tier for a requested span."""

    @pytest.mark.parametrize("hours, tier", [
        (1, '1min'),
        (6, '1min'),
        (7, '5min'),
        (48, '5min'),
        (49, '30min'),
        (336, '30min'),
        (337, '2hour'),
    ])
    def test_standard_thresholds(self, hours, tier):
        assert RollupProcessor().get_best_tier_for_hours(hours) == tier

    def test_never_returns_unconfigured_tier(self):
        processor = RollupProcessor(tiers=STANDARD_TIERS[:2], tier_hours=(6, 48, 168))
        assert processor.get_best_tier_for_hours(1000) == '5min'

    def test_tier_lookup(self):
        processor = RollupProcessor()
        assert processor.tier_names() == ['1min', '5min', '30min', '2hour']
        assert processor.get_tier('30min').interval_seconds == 1800
        assert processor.get_tier('1day') is None

    def test_tiers_info(self, tmp_path, source):
        (tmp_path / "1min.log").write_text("x\n")
        info = RollupProcessor().get_tiers_info(source.rollup_file_path)

        assert info['1min']['file_exists'] is True
        assert info['1min']['file_size'] == 2
        assert info['5min']['file_exists'] is False
        assert info['5min']['file_size'] == 0
        assert info['5min']['interval_label'] == '5 minutes'
        assert info['30min']['retention_label'] == '14 days'
        assert info['2hour']['label'] == '2-hour averages'


class TestState:
    """Cursor persistence."""

    def test_fresh_state_is_created_and_saved(self, tmp_path, processor, clock):
        state_file = tmp_path / "rollup-state.json"
        state = processor.get_state(state_file)

        assert state == {'1min': TierState(last_processed=0, last_bucket_end=0, last_rollup=BASE_TIME)}
        assert json.loads(state_file.read_text())['1min']['last_rollup'] == BASE_TIME

    @pytest.mark.parametrize("content", ["not json{", "[1, 2]", "{}", "   "])
    def test_corrupted_state_is_rebuilt(self, tmp_path, processor, content):
        state_file = tmp_path / "rollup-state.json"
        state_file.write_text(content)

        state = processor.get_state(state_file)

        assert state['1min'].last_bucket_end == 0
        assert isinstance(json.loads(state_file.read_text()), dict)

    def test_missing_tiers_and_fields_backfilled(self, tmp_path, clock):
        processor = RollupProcessor(clock=clock)
        state_file = tmp_path / "rollup-state.json"
        state_file.write_text(json.dumps({'1min': {'last_bucket_end': 120, 'last_processed': 'x'}}))

        state = processor.get_state(state_file)

        assert state['1min'] == TierState(last_processed=0, last_bucket_end=120, last_rollup=BASE_TIME)
        assert set(state) == {'1min', '5min', '30min', '2hour'}

    def test_save_round_trip(self, tmp_path, processor):
        state_file = tmp_path / "rollup-state.json"
        processor.save_state(state_file, {'1min': TierState(10, 60, 70)})

        assert processor.get_state(state_file) == {'1min': TierState(10, 60, 70)}

    def test_save_failure_returns_false(self, tmp_path, processor):
        state_file = tmp_path / "rollup-state.json"
        state_file.mkdir()

        assert processor.save_state(state_file, {'1min': TierState()}) is False


class TestProcessTier:
    """Bucket compaction."""

    def test_throttled_right_after_state_creation(self, tmp_path, processor, source):
        write_raw(tmp_path, BASE_TIME - 300)

        assert processor.process_tier(ONE_MINUTE, tmp_path / "state.json", source) == 0
        assert source.calls == []

    def test_emits_elapsed_buckets(self, tmp_path, processor, source, clock):
        state_file = tmp_path / "state.json"
        processor.get_state(state_file)
        write_raw(tmp_path, BASE_TIME + 5, BASE_TIME + 30, BASE_TIME + 65)
        clock.advance(130)

        assert processor.process_tier(ONE_MINUTE, state_file, source) == 2

        assert read_tier(tmp_path) == [
            {'timestamp': BASE_TIME, 'count': 2},
            {'timestamp': BASE_TIME + 60, 'count': 1},
        ]
        state = processor.get_state(state_file)['1min']
        assert state.last_processed == BASE_TIME + 65
        assert state.last_bucket_end == BASE_TIME + 120
        assert state.last_rollup == BASE_TIME + 130

    def test_at_most_once(self, tmp_path, processor, source, clock):
        state_file = tmp_path / "state.json"
        processor.get_state(state_file)
        write_raw(tmp_path, BASE_TIME + 5)
        clock.advance(130)
        processor.process_tier(ONE_MINUTE, state_file, source)
        end_before = processor.get_state(state_file)['1min'].last_bucket_end

        clock.advance(120)
        assert processor.process_tier(ONE_MINUTE, state_file, source) == 0

        assert len(read_tier(tmp_path)) == 1
        assert processor.get_state(state_file)['1min'].last_bucket_end == end_before

    def test_no_partial_buckets(self, tmp_path, processor, source, clock):
        """A bucket is only aggregated once its end is at or before now - 1."""
        state_file = tmp_path / "state.json"
        clock.set(BASE_TIME - 10)
        processor.get_state(state_file)
        write_raw(tmp_path, BASE_TIME + 5, BASE_TIME + 65, BASE_TIME + 70)

        clock.set(BASE_TIME + 100)
        assert processor.process_tier(ONE_MINUTE, state_file, source) == 1
        assert source.calls == [BASE_TIME]

        state = processor.get_state(state_file)['1min']
        assert state.last_bucket_end == BASE_TIME + 60
        assert state.last_processed == BASE_TIME + 5

        clock.set(BASE_TIME + 170)
        assert processor.process_tier(ONE_MINUTE, state_file, source) == 1
        assert read_tier(tmp_path)[-1] == {'timestamp': BASE_TIME + 60, 'count': 2}

    def test_bucket_ending_at_now_is_not_ready(self, tmp_path, processor, source, clock):
        state_file = tmp_path / "state.json"
        clock.set(BASE_TIME - 10)
        processor.get_state(state_file)
        write_raw(tmp_path, BASE_TIME + 5)

        clock.set(BASE_TIME + 60)
        assert processor.process_tier(ONE_MINUTE, state_file, source) == 0

        # Throttle window restarts from the last run
        clock.set(BASE_TIME + 120)
        assert processor.process_tier(ONE_MINUTE, state_file, source) == 1

    def test_exact_boundary(self, tmp_path, processor, source, clock):
        state_file = tmp_path / "state.json"
        clock.set(BASE_TIME - 10)
        processor.get_state(state_file)
        write_raw(tmp_path, BASE_TIME + 5)

        clock.set(BASE_TIME + 61)
        assert processor.process_tier(ONE_MINUTE, state_file, source) == 1

    def test_no_samples_only_updates_run_markers(self, tmp_path, processor, source, clock):
        state_file = tmp_path / "state.json"
        processor.get_state(state_file)
        clock.advance(90)

        assert processor.process_tier(ONE_MINUTE, state_file, source) == 0

        state = processor.get_state(state_file)['1min']
        assert state == TierState(last_processed=0, last_bucket_end=0, last_rollup=BASE_TIME + 90,
                                  complete_through=BASE_TIME + 89)
        assert not (tmp_path / "1min.log").exists()

    def test_null_aggregation_still_advances(self, tmp_path, processor, clock):
        source = CountingSource(tmp_path, result=False)
        state_file = tmp_path / "state.json"
        processor.get_state(state_file)
        write_raw(tmp_path, BASE_TIME + 5)
        clock.advance(130)

        assert processor.process_tier(ONE_MINUTE, state_file, source) == 0

        state = processor.get_state(state_file)['1min']
        assert state.last_bucket_end == BASE_TIME + 60
        assert state.last_processed == BASE_TIME + 5
        assert not (tmp_path / "1min.log").exists()

    def test_replay_after_crash_does_not_duplicate(self, tmp_path, processor, source, clock):
        """Records appended by a run whose state save was lost are not written again."""
        state_file = tmp_path / "state.json"
        processor.get_state(state_file)
        write_raw(tmp_path, BASE_TIME + 5, BASE_TIME + 65)
        MetricsStorage().write_batch(tmp_path / "1min.log", [{'timestamp': BASE_TIME, 'count': 1}])
        clock.advance(130)

        assert processor.process_tier(ONE_MINUTE, state_file, source) == 1

        assert source.calls == [BASE_TIME + 60]
        assert [e['timestamp'] for e in read_tier(tmp_path)] == [BASE_TIME, BASE_TIME + 60]
        assert processor.get_state(state_file)['1min'].last_bucket_end == BASE_TIME + 120

    def test_failed_append_keeps_cursor(self, tmp_path, processor, source, clock):
        state_file = tmp_path / "state.json"
        processor.get_state(state_file)
        write_raw(tmp_path, BASE_TIME + 5)
        (tmp_path / "1min.log").mkdir()
        clock.advance(130)

        assert processor.process_tier(ONE_MINUTE, state_file, source) == 0

        state = processor.get_state(state_file)['1min']
        assert state.last_bucket_end == 0
        assert state.last_processed == 0

    def test_aggregation_errors_propagate(self, tmp_path, processor, clock):
        source = FailingSource(tmp_path)
        state_file = tmp_path / "state.json"
        processor.get_state(state_file)
        write_raw(tmp_path, BASE_TIME + 5)
        clock.advance(130)

        with pytest.raises(ValueError):
            processor.process_tier(ONE_MINUTE, state_file, source)
        assert processor.get_state(state_file)['1min'].last_bucket_end == 0

    def test_list_results_fan_out(self, tmp_path, processor, clock):
        class FanOut(CountingSource):
            def aggregate_for_rollup(self, bucket_samples, bucket_start, interval):
                return [{'timestamp': bucket_start, 'host': h} for h in ('a', 'b')]

        state_file = tmp_path / "state.json"
        processor.get_state(state_file)
        write_raw(tmp_path, BASE_TIME + 5)
        clock.advance(130)

        assert processor.process_tier(ONE_MINUTE, state_file, FanOut(tmp_path)) == 2
        assert [e['host'] for e in read_tier(tmp_path)] == ['a', 'b']

    def test_tier_file_rotated_to_retention(self, tmp_path, clock, source):
        tier = TierConfig("1min", 60, 3600, "1-minute averages")
        processor = RollupProcessor(tiers=[tier], clock=clock)
        state_file = tmp_path / "state.json"
        processor.get_state(state_file)
        MetricsStorage().write_batch(tmp_path / "1min.log", [{'timestamp': BASE_TIME - 3600, 'count': 1}])
        write_raw(tmp_path, BASE_TIME + 5)
        clock.advance(130)

        processor.process_tier(tier, state_file, source)

        assert [e['timestamp'] for e in read_tier(tmp_path)] == [BASE_TIME]
        assert (tmp_path / "1min.log.old").exists()


class CascadingSource(CountingSource):
    """5min reads the 1min rollup file."""

    def source_tier(self, tier):
        return '1min' if tier == '5min' else None

    def source_file_path(self, tier):
        if tier == '5min':
            return self.rollup_file_path('1min')
        return super().source_file_path(tier)


class TestCascadingTiers:
    """A coarser tier fed by a finer tier's rollups."""

    @pytest.fixture
    def processor(self, clock):
        return RollupProcessor(tiers=STANDARD_TIERS[:2], clock=clock)

    def tick(self, processor, source, clock, state_file, now):
        clock.set(now)
        for tier in processor.tiers:
            processor.process_tier(tier, state_file, source)

    def test_waits_for_throttled_finer_tier(self, tmp_path, processor, clock):
        source = CascadingSource(tmp_path)
        state_file = tmp_path / "state.json"
        processor.get_state(state_file)
        write_raw(tmp_path, *[BASE_TIME + i * 10 for i in range(30)])

        self.tick(processor, source, clock, state_file, BASE_TIME + 250)
        assert len(read_tier(tmp_path)) == 4

        # 1min is still inside its own throttle window and owes the B+240 record
        self.tick(processor, source, clock, state_file, BASE_TIME + 301)
        assert not (tmp_path / "5min.log").exists()
        assert processor.get_state(state_file)['5min'].last_bucket_end == 0

        self.tick(processor, source, clock, state_file, BASE_TIME + 310)
        assert len(read_tier(tmp_path)) == 5

        self.tick(processor, source, clock, state_file, BASE_TIME + 601)
        assert read_tier(tmp_path, '5min') == [{'timestamp': BASE_TIME, 'count': 5}]

    def test_never_run_finer_tier_blocks_coarser(self, tmp_path, processor, clock):
        source = CascadingSource(tmp_path)
        state_file = tmp_path / "state.json"
        processor.get_state(state_file)
        MetricsStorage().write_batch(tmp_path / "1min.log", [{'timestamp': BASE_TIME, 'count': 1}])
        clock.advance(400)

        assert processor.process_tier(STANDARD_TIERS[1], state_file, source) == 0
        assert processor.get_state(state_file)['5min'].complete_through == 0

        processor.process_tier(ONE_MINUTE, state_file, source)
        clock.advance(300)
        assert processor.process_tier(STANDARD_TIERS[1], state_file, source) == 1


class TestReadRollupData:

    def test_missing_file(self, tmp_path, processor):
        result = processor.read_rollup_data(tmp_path / "1min.log", '1min')
        assert result == {'success': False, 'error': 'Rollup file not found', 'data': []}

    def test_time_range_and_filter(self, tmp_path, processor):
        MetricsStorage().write_batch(tmp_path / "1min.log", [
            {'timestamp': BASE_TIME - 7 * 3600, 'host': 'a'},
            {'timestamp': BASE_TIME - 60, 'host': 'a'},
            {'timestamp': BASE_TIME - 60, 'host': 'b'},
            {'timestamp': BASE_TIME, 'host': 'a'},
        ])

        result = processor.read_rollup_data(tmp_path / "1min.log", '1min')
        assert result['success'] is True
        assert result['count'] == 3
        assert result['tier'] == '1min'
        assert result['period'] == {'start': BASE_TIME - 6 * 3600, 'end': BASE_TIME}

        result = processor.read_rollup_data(
            tmp_path / "1min.log", '1min', BASE_TIME - 120, BASE_TIME - 30, lambda e: e['host'] == 'b'
        )
        assert result['data'] == [{'timestamp': BASE_TIME - 60, 'host': 'b'}]
