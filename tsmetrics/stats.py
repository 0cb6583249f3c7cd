"""
Numeric helpers shared by every collector: rounding, latency summaries,
RFC 3550 jitter and quality ratings.
"""

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import pyarrow as pa
import pyarrow.compute as pc


QUALITY_ORDER = {'good': 0, 'fair': 1, 'poor': 2, 'critical': 3}


def round_value(value: Optional[float], precision: int = 1) -> Optional[float]:
    """Round half away from zero; None passes through."""
    if value is None:
        return None
    rounded = pc.round(pa.scalar(float(value), type=pa.float64()),
                       ndigits=precision, round_mode='half_towards_infinity')
    return rounded.as_py()


def summarize(values: Sequence[float]) -> Optional[Dict[str, float]]:
    """Unrounded min/max/mean/sum of a numeric sequence, None when empty."""
    if not values:
        return None
    arr = pa.array(values, type=pa.float64())
    min_max = pc.min_max(arr)
    return {
        'min': min_max['min'].as_py(),
        'max': min_max['max'].as_py(),
        'avg': pc.mean(arr).as_py(),
        'sum': pc.sum(arr).as_py(),
        'count': len(arr),
    }


def summarize_keyed(readings: Sequence[Dict[str, object]]) -> Dict[str, Dict[str, float]]:
    """
    Per-key summary over a sequence of {key: reading} maps.

    A reading is either a raw number or an already aggregated
    {avg, min, max, samples} object from a finer tier. Returns unrounded
    {avg, min, max, peak, samples} per key, where avg is the mean of the
    readings (or of their averages) and peak the max of the maxes.
    """
    grouped: Dict[str, Dict[str, list]] = {}
    for reading in readings:
        for key, value in reading.items():
            data = grouped.setdefault(key, {'values': [], 'mins': [], 'maxs': [], 'samples': 0})
            if isinstance(value, dict):
                data['values'].append(value.get('avg', 0))
                data['mins'].append(value.get('min', 0))
                data['maxs'].append(value.get('max', 0))
                data['samples'] += value.get('samples', 1)
            elif isinstance(value, (int, float)) and not isinstance(value, bool):
                data['values'].append(value)
                data['mins'].append(value)
                data['maxs'].append(value)
                data['samples'] += 1

    result = {}
    for key, data in grouped.items():
        if not data['values']:
            continue
        values = pa.array(data['values'], type=pa.float64())
        peak = pc.max(pa.array(data['maxs'], type=pa.float64())).as_py()
        result[key] = {
            'avg': pc.mean(values).as_py(),
            'min': pc.min(pa.array(data['mins'], type=pa.float64())).as_py(),
            'max': peak,
            'peak': peak,
            'samples': data['samples'],
        }
    return result


def aggregate_latencies(latencies: Sequence[float], precision: int = 1,
                        include_p95: bool = True) -> Dict[str, Optional[float]]:
    """
    Latency summary with consistent field names.

    p95 is the element at ceil(0.95 * n) - 1 of the sorted values.
    """
    if not latencies:
        return {
            'latency_min': None,
            'latency_max': None,
            'latency_avg': None,
            'latency_p95': None,
        }

    arr = pa.array(latencies, type=pa.float64())
    stats = summarize(latencies)
    result = {
        'latency_min': round_value(stats['min'], precision),
        'latency_max': round_value(stats['max'], precision),
        'latency_avg': round_value(stats['avg'], precision),
    }

    if include_p95:
        ordered = arr.take(pc.array_sort_indices(arr))
        p95_index = max(0, math.ceil(len(ordered) * 0.95) - 1)
        result['latency_p95'] = round_value(ordered[p95_index].as_py(), precision)

    return result


@dataclass
class JitterEntry:
    """Smoothing state for one key."""
    prev_latency: float
    jitter: float = 0.0


# One entry per tracked key (e.g. remote hostname); owned by the caller
JitterState = Dict[str, JitterEntry]


def calculate_jitter_rfc3550(key: str, latency: float, state: JitterState) -> Optional[float]:
    """
    RFC 3550 interarrival jitter: J += (|D| - J) / 16.

    The first sample for a key only seeds the state and returns None.
    """
    entry = state.get(key)
    if entry is None:
        state[key] = JitterEntry(prev_latency=latency)
        return None

    d = abs(latency - entry.prev_latency)
    entry.jitter = entry.jitter + (d - entry.jitter) / 16.0
    entry.prev_latency = latency
    return round_value(entry.jitter, 2)


def jitter_from_latencies(latencies: Sequence[float]) -> Optional[Dict[str, float]]:
    """Average and peak RFC 3550 jitter over time-ordered latencies."""
    if len(latencies) < 2:
        return None

    jitter = 0.0
    samples: List[float] = []
    for prev, cur in zip(latencies, latencies[1:]):
        jitter = jitter + (abs(cur - prev) - jitter) / 16.0
        samples.append(jitter)

    stats = summarize(samples)
    return {
        'avg': round_value(stats['avg'], 2),
        'max': round_value(stats['max'], 2),
    }


def quality_rating(value: float, good: float, fair: float, poor: float) -> str:
    """Map a value onto good/fair/poor/critical using inclusive upper bounds."""
    if value <= good:
        return 'good'
    if value <= fair:
        return 'fair'
    if value <= poor:
        return 'poor'
    return 'critical'


def overall_quality_rating(*ratings: Optional[str]) -> str:
    """Worst of several ratings; missing ratings count as good."""
    worst = 'good'
    for rating in ratings:
        if rating is not None and QUALITY_ORDER.get(rating, 0) > QUALITY_ORDER[worst]:
            worst = rating
    return worst
