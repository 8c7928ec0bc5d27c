"""
Aggregate statistics over location history, patterns and optimizations.

Each function takes an open session and a [start_time, end_time] range
in Unix seconds, pulls the needed columns in one query and aggregates
with NumPy. Empty ranges produce zeros, never None, so results can be
serialized and charted without special cases.
"""

import time
from typing import List, Optional, Tuple

import numpy as np
from sqlalchemy import select

from relief_analytics.config import config
from relief_analytics.models import LocationHistory, LocationPattern, LocationOptimization

SECONDS_PER_DAY = 86400


def default_range(
    start_time: Optional[int] = None,
    end_time: Optional[int] = None,
    days: Optional[int] = None,
) -> Tuple[int, int]:
    """
    Fill in a missing range end with now and start with end minus days.

    days defaults to the configured statistics window (30).
    """
    end_time = int(end_time if end_time is not None else time.time())
    if start_time is None:
        if days is None:
            days = config.retention.statistics_default_days
        start_time = end_time - days * SECONDS_PER_DAY
    return int(start_time), end_time


def _mean(values: np.ndarray) -> float:
    return float(values.mean()) if len(values) else 0.0


def _max(values: np.ndarray) -> float:
    return float(values.max()) if len(values) else 0.0


def _floats(rows, index: int) -> np.ndarray:
    """Column of a result set as floats, None mapped to NaN."""
    return np.array(
        [row[index] if row[index] is not None else np.nan for row in rows],
        dtype=np.float64,
    )


def _nanmean(values: np.ndarray) -> float:
    values = values[~np.isnan(values)]
    return _mean(values)


def history_statistics(session, start_time: int, end_time: int) -> dict:
    """Totals and speed/accuracy summary of the fixes in range."""
    rows = session.execute(
        select(
            LocationHistory.speed,
            LocationHistory.accuracy,
            LocationHistory.is_stationary,
            LocationHistory.is_significant,
            LocationHistory.entity_type,
            LocationHistory.entity_id,
        ).where(
            LocationHistory.timestamp >= start_time,
            LocationHistory.timestamp <= end_time,
        )
    ).all()

    speeds = _floats(rows, 0)
    accuracies = _floats(rows, 1)

    return {
        'total_records': len(rows),
        'stationary_records': int(sum(1 for r in rows if r[2])),
        'significant_records': int(sum(1 for r in rows if r[3])),
        'avg_speed': _nanmean(speeds),
        'max_speed': _max(speeds[~np.isnan(speeds)]),
        'avg_accuracy': _nanmean(accuracies),
        'unique_entity_types': len({r[4] for r in rows}),
        'unique_entities': len({(r[4], r[5]) for r in rows}),
    }


def activity_type_statistics(session, start_time: int, end_time: int) -> List[dict]:
    """Per-activity fix counts and averages, most frequent first."""
    rows = session.execute(
        select(
            LocationHistory.activity_type,
            LocationHistory.speed,
            LocationHistory.duration_seconds,
        ).where(
            LocationHistory.timestamp >= start_time,
            LocationHistory.timestamp <= end_time,
        )
    ).all()
    if not rows:
        return []

    activities = np.array([r[0] for r in rows])
    speeds = _floats(rows, 1)
    durations = _floats(rows, 2)

    names, inverse = np.unique(activities, return_inverse=True)
    result = []
    for index, name in enumerate(names):
        mask = inverse == index
        result.append({
            'activity_type': str(name),
            'count': int(mask.sum()),
            'avg_speed': _nanmean(speeds[mask]),
            'avg_duration_seconds': _nanmean(durations[mask]),
        })

    result.sort(key=lambda x: (-x['count'], x['activity_type']))
    return result


def entity_movement_statistics(session, start_time: int, end_time: int) -> List[dict]:
    """Per-entity movement summary, farthest travelled first."""
    rows = session.execute(
        select(
            LocationHistory.entity_type,
            LocationHistory.entity_id,
            LocationHistory.speed,
            LocationHistory.distance_from_previous,
            LocationHistory.accuracy,
            LocationHistory.timestamp,
        ).where(
            LocationHistory.timestamp >= start_time,
            LocationHistory.timestamp <= end_time,
        )
    ).all()

    groups = {}
    for i, row in enumerate(rows):
        groups.setdefault((row[0], row[1]), []).append(i)

    speeds = _floats(rows, 2)
    distances = np.nan_to_num(_floats(rows, 3), nan=0.0)
    accuracies = _floats(rows, 4)
    timestamps = np.array([r[5] for r in rows], dtype=np.int64)

    result = []
    for (entity_type, entity_id), indices in groups.items():
        idx = np.array(indices)
        entity_speeds = speeds[idx]
        entity_speeds = entity_speeds[~np.isnan(entity_speeds)]
        result.append({
            'entity_type': entity_type,
            'entity_id': entity_id,
            'fix_count': len(indices),
            'avg_speed': _mean(entity_speeds),
            'max_speed': _max(entity_speeds),
            'total_distance': float(distances[idx].sum()),
            'avg_accuracy': _nanmean(accuracies[idx]),
            'first_seen': int(timestamps[idx].min()),
            'last_seen': int(timestamps[idx].max()),
        })

    result.sort(key=lambda x: (-x['total_distance'], x['entity_type'], x['entity_id']))
    return result


def hourly_movement_statistics(session, start_time: int, end_time: int) -> List[dict]:
    """Fix counts and average speed per UTC hour of day (always 24 rows)."""
    rows = session.execute(
        select(LocationHistory.timestamp, LocationHistory.speed).where(
            LocationHistory.timestamp >= start_time,
            LocationHistory.timestamp <= end_time,
        )
    ).all()

    hours = (np.array([r[0] for r in rows], dtype=np.int64) % SECONDS_PER_DAY) // 3600
    speeds = np.nan_to_num(_floats(rows, 1), nan=0.0)

    counts = np.bincount(hours, minlength=24) if len(rows) else np.zeros(24, dtype=np.int64)
    speed_sums = np.bincount(hours, weights=speeds, minlength=24) if len(rows) else np.zeros(24)

    return [
        {
            'hour': hour,
            'count': int(counts[hour]),
            'avg_speed': float(speed_sums[hour] / counts[hour]) if counts[hour] else 0.0,
        }
        for hour in range(24)
    ]


def pattern_statistics(session, start_time: int, end_time: int) -> dict:
    """Summary of patterns that started in range."""
    patterns = session.scalars(
        select(LocationPattern).where(
            LocationPattern.start_time >= start_time,
            LocationPattern.start_time <= end_time,
        )
    ).all()

    by_type = {}
    for p in patterns:
        by_type[p.pattern_type] = by_type.get(p.pattern_type, 0) + 1

    confidence = np.array([p.confidence_score for p in patterns], dtype=np.float64)
    speeds = np.array([p.average_speed for p in patterns], dtype=np.float64)
    distances = np.array([p.distance_meters for p in patterns], dtype=np.float64)

    return {
        'total_patterns': len(patterns),
        'by_type': by_type,
        'recurring_patterns': sum(1 for p in patterns if p.is_recurring),
        'optimal_patterns': sum(1 for p in patterns if p.is_optimal),
        'avg_confidence': _mean(confidence),
        'avg_speed': _mean(speeds),
        'avg_distance': _mean(distances),
        'total_distance': float(distances.sum()),
    }


def optimization_statistics(session, start_time: int, end_time: int) -> dict:
    """Summary of suggestions whose pattern started in range."""
    optimizations = session.scalars(
        select(LocationOptimization)
        .join(LocationPattern, LocationOptimization.pattern_id == LocationPattern.id)
        .where(
            LocationPattern.start_time >= start_time,
            LocationPattern.start_time <= end_time,
        )
    ).all()

    by_status = {}
    by_type = {}
    for o in optimizations:
        by_status[o.status] = by_status.get(o.status, 0) + 1
        by_type[o.optimization_type] = by_type.get(o.optimization_type, 0) + 1

    current = np.array([o.current_efficiency for o in optimizations], dtype=np.float64)
    projected = np.array([o.projected_efficiency for o in optimizations], dtype=np.float64)
    actual = np.array(
        [o.actual_efficiency_gain for o in optimizations if o.actual_efficiency_gain is not None],
        dtype=np.float64,
    )

    return {
        'total_optimizations': len(optimizations),
        'by_status': by_status,
        'by_type': by_type,
        'implemented': sum(1 for o in optimizations if o.is_implemented),
        'avg_current_efficiency': _mean(current),
        'avg_projected_efficiency': _mean(projected),
        'avg_efficiency_gain': _mean(projected - current),
        'avg_actual_gain': _mean(actual),
        'total_time_savings_seconds': int(sum(o.time_savings_seconds or 0 for o in optimizations)),
        'total_distance_savings_meters': float(sum(o.distance_savings_meters or 0.0 for o in optimizations)),
    }
