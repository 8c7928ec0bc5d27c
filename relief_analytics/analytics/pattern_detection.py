"""
Movement pattern detection over positional fix history.

A track (one entity's fixes, sorted by time) is turned into NumPy arrays
once, then six independent detectors scan it:

1. Linear: runs of steps holding a steady heading
2. Circular: loops whose cumulative turning closes a circle at a
   roughly constant radius
3. Stationary: dwell clusters of stationary fixes within a small radius
4. Route: trips between stops, grouped by start and end cell so that
   repeated trips collapse into one recurring route
5. Search grid: lawnmower sweeps, i.e. parallel legs flown in
   alternating directions joined by short connectors
6. Anomaly: fixes whose reported or implied speed is implausible

Detectors work on index ranges ("pieces") into the track, so a pattern
can cover one contiguous slice (a loop) or several (a repeated route).
Patterns from different detectors may overlap.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from relief_analytics.config import config, DetectionConfig
from relief_analytics.models import LocationPattern, PatternType
from relief_analytics.analytics.geometry import (
    haversine_meters,
    haversine_steps,
    bearing_steps,
    heading_difference,
    circular_mean,
    project_local,
    unproject_local,
    line_string,
)

logger = logging.getLogger(__name__)

# Inclusive (start, end) fix index range
Piece = Tuple[int, int]


@dataclass
class Track:
    """
    One entity's fixes as aligned NumPy arrays.

    Step arrays (steps, bearings, gaps) describe the move from fix i-1 to
    fix i; element 0 is a placeholder.
    """
    fixes: List[Any]
    timestamps: np.ndarray
    lat: np.ndarray
    lon: np.ndarray
    speed: np.ndarray
    stationary: np.ndarray
    steps: np.ndarray
    bearings: np.ndarray
    gaps: np.ndarray
    x: np.ndarray
    y: np.ndarray
    origin: Tuple[float, float]

    @classmethod
    def from_fixes(cls, fixes: Sequence[Any], stationary_speed: float = 0.5) -> 'Track':
        """
        Build a track from fix records.

        Accepts LocationHistory rows or any object exposing latitude,
        longitude, timestamp, speed and is_stationary.
        """
        ordered = sorted(fixes, key=lambda f: f.timestamp)

        timestamps = np.array([f.timestamp for f in ordered], dtype=np.float64)
        lat = np.array([f.latitude for f in ordered], dtype=np.float64)
        lon = np.array([f.longitude for f in ordered], dtype=np.float64)
        speed = np.array(
            [f.speed if f.speed is not None else np.nan for f in ordered],
            dtype=np.float64,
        )
        flagged = np.array([bool(getattr(f, 'is_stationary', False)) for f in ordered], dtype=bool)
        with np.errstate(invalid='ignore'):
            slow = speed < stationary_speed
        stationary = flagged | slow

        gaps = np.zeros(len(ordered), dtype=np.float64)
        if len(ordered) > 1:
            gaps[1:] = np.diff(timestamps)

        if len(ordered):
            x, y = project_local(lat, lon)
            origin = (float(lat.mean()), float(lon.mean()))
        else:
            x, y = np.array([]), np.array([])
            origin = (0.0, 0.0)

        return cls(
            fixes=ordered,
            timestamps=timestamps,
            lat=lat,
            lon=lon,
            speed=np.nan_to_num(speed, nan=0.0),
            stationary=stationary,
            steps=haversine_steps(lat, lon),
            bearings=bearing_steps(lat, lon),
            gaps=gaps,
            x=x,
            y=y,
            origin=origin,
        )

    def __len__(self) -> int:
        return len(self.fixes)

    @property
    def entity(self) -> Tuple[Optional[str], Optional[int]]:
        if not self.fixes:
            return (None, None)
        first = self.fixes[0]
        return (getattr(first, 'entity_type', None), getattr(first, 'entity_id', None))

    def implied_speeds(self) -> np.ndarray:
        """
        Speed implied by consecutive positions; NaN for fix 0.

        Fixes sharing a timestamp imply 0.0, the same rule the recorder
        applies when deriving a missing speed.
        """
        implied = np.full(len(self), np.nan)
        if len(self) < 2:
            return implied
        steps = self.steps[1:]
        gaps = self.gaps[1:]
        with np.errstate(divide='ignore', invalid='ignore'):
            implied[1:] = np.where(gaps > 0, steps / gaps, 0.0)
        return implied

    def piece_length(self, piece: Piece) -> float:
        start, end = piece
        return float(self.steps[start + 1:end + 1].sum())

    def piece_latlons(self, piece: Piece) -> List[Tuple[float, float]]:
        start, end = piece
        return list(zip(self.lat[start:end + 1].tolist(), self.lon[start:end + 1].tolist()))

    def piece_heading(self, piece: Piece) -> float:
        start, end = piece
        return circular_mean(self.bearings[start + 1:end + 1])


@dataclass
class DetectedPattern:
    """A pattern found by a detector, not yet persisted."""
    entity_type: Optional[str]
    entity_id: Optional[int]
    pattern_type: PatternType
    pattern_name: str
    start_time: int
    end_time: int
    duration_seconds: int
    distance_meters: float
    average_speed: float
    max_speed: float
    confidence_score: float
    fix_count: int
    geometry: Optional[dict] = None
    frequency: int = 1
    is_recurring: bool = False
    characteristics: Dict[str, Any] = field(default_factory=dict)

    @property
    def description(self) -> str:
        return f'Detected {self.pattern_type.value.lower()} pattern'

    def to_model(self) -> LocationPattern:
        """Build the ORM row for this pattern."""
        return LocationPattern(
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            pattern_type=self.pattern_type.value,
            pattern_name=self.pattern_name,
            pattern_description=self.description,
            pattern_geometry=self.geometry,
            start_time=self.start_time,
            end_time=self.end_time,
            duration_seconds=self.duration_seconds,
            distance_meters=self.distance_meters,
            average_speed=self.average_speed,
            max_speed=self.max_speed,
            confidence_score=self.confidence_score,
            frequency=self.frequency,
            is_recurring=self.is_recurring,
            is_optimal=False,
            pattern_characteristics=dict(self.characteristics, fix_count=self.fix_count),
        )


class PatternDetector:
    """
    Segments a track into movement patterns.

    Thresholds come from DetectionConfig; pass a custom instance to tune
    detection for a particular deployment or test.
    """

    def __init__(self, detection_config: Optional[DetectionConfig] = None):
        self.config = detection_config or config.detection

    def detect(self, fixes: Sequence[Any]) -> List[DetectedPattern]:
        """
        Run every detector over the fixes.

        Fixes need not be sorted. Returns patterns grouped by detector,
        each group in time order.
        """
        track = Track.from_fixes(fixes, self.config.stationary_speed_mps)
        if len(track) < 2:
            return []

        segments = self.heading_segments(track)

        patterns: List[DetectedPattern] = []
        patterns.extend(self.detect_linear(track, segments))
        patterns.extend(self.detect_circular(track))
        patterns.extend(self.detect_stationary(track))
        patterns.extend(self.detect_routes(track))
        patterns.extend(self.detect_search_grids(track, segments))
        patterns.extend(self.detect_anomalies(track))

        entity_type, entity_id = track.entity
        logger.debug(
            f'Detected {len(patterns)} patterns for {entity_type}:{entity_id} '
            f'from {len(track)} fixes'
        )
        return patterns

    # -------------------------------------------------------------------------
    # Segmentation helpers
    # -------------------------------------------------------------------------

    def is_moving_step(self, track: Track, i: int) -> bool:
        """Whether the step into fix i is real movement inside one trip."""
        return (
            i >= 1 and
            not track.stationary[i] and
            track.steps[i] >= self.config.min_step_meters and
            track.gaps[i] <= self.config.trip_gap_seconds
        )

    def heading_segments(self, track: Track) -> List[Piece]:
        """
        Split moving runs wherever the heading leaves tolerance.

        The reference heading is the first step's bearing, so slow curves
        break into short segments instead of drifting into one long one.
        Adjacent segments of one run share their boundary fix.
        """
        tolerance = self.config.heading_tolerance_degrees
        segments: List[Piece] = []
        start: Optional[int] = None
        anchor = 0.0

        for i in range(1, len(track)):
            if not self.is_moving_step(track, i):
                if start is not None:
                    segments.append((start, i - 1))
                    start = None
                continue

            bearing = track.bearings[i]
            if start is None:
                start, anchor = i - 1, bearing
            elif abs(heading_difference(anchor, bearing)) > tolerance:
                segments.append((start, i - 1))
                start, anchor = i - 1, bearing

        if start is not None:
            segments.append((start, len(track) - 1))
        return segments

    def moving_runs(self, track: Track) -> List[Piece]:
        """Maximal fix ranges joined by consecutive moving steps."""
        runs: List[Piece] = []
        start: Optional[int] = None
        for i in range(1, len(track)):
            if self.is_moving_step(track, i):
                if start is None:
                    start = i - 1
            elif start is not None:
                runs.append((start, i - 1))
                start = None
        if start is not None:
            runs.append((start, len(track) - 1))
        return runs

    def trips(self, track: Track) -> List[Piece]:
        """
        Trips between stops.

        A stationary fix or a gap longer than trip_gap ends a trip; only
        trips with at least two fixes are kept.
        """
        trips: List[Piece] = []
        start: Optional[int] = None
        for i in range(len(track)):
            breaks = track.stationary[i] or (i > 0 and track.gaps[i] > self.config.trip_gap_seconds)
            if breaks and start is not None:
                if i - 1 > start:
                    trips.append((start, i - 1))
                start = None
            if not track.stationary[i] and start is None:
                start = i
        if start is not None and len(track) - 1 > start:
            trips.append((start, len(track) - 1))
        return trips

    # -------------------------------------------------------------------------
    # Detectors
    # -------------------------------------------------------------------------

    def detect_linear(self, track: Track, segments: Optional[List[Piece]] = None) -> List[DetectedPattern]:
        """Steady-heading segments with at least min_linear_points fixes."""
        if segments is None:
            segments = self.heading_segments(track)

        patterns = []
        for piece in segments:
            start, end = piece
            if end - start + 1 < self.config.min_linear_points:
                continue

            length = track.piece_length(piece)
            displacement = haversine_meters(
                track.lat[start], track.lon[start], track.lat[end], track.lon[end]
            )
            straightness = min(displacement / length, 1.0) if length > 0 else 0.0

            patterns.append(self._build(
                track, [piece],
                PatternType.LINEAR_MOVEMENT,
                'Linear Movement Pattern',
                confidence=straightness,
                geometry=line_string(track.piece_latlons(piece)),
                characteristics={
                    'heading_degrees': round(track.piece_heading(piece), 1),
                    'straightness': round(straightness, 3),
                    'displacement_meters': round(displacement, 1),
                },
            ))
        return patterns

    def detect_circular(self, track: Track) -> List[DetectedPattern]:
        """
        Closed loops inside moving runs.

        From each start fix, accumulate signed turning until it reaches
        circle_turn_degrees; the window is a loop if it also has enough
        fixes and its radius about the centroid is roughly constant.
        """
        cfg = self.config
        patterns = []

        for run_start, run_end in self.moving_runs(track):
            start = run_start
            while run_end - start + 1 >= cfg.min_circular_points:
                turn = 0.0
                found: Optional[Tuple[int, float, float]] = None
                for end in range(start + 2, run_end + 1):
                    turn += heading_difference(track.bearings[end - 1], track.bearings[end])
                    if end - start + 1 >= cfg.min_circular_points and abs(turn) >= cfg.circle_turn_degrees:
                        cv, radius = self._radius_spread(track, start, end)
                        if cv <= cfg.circle_radius_cv:
                            found = (end, cv, radius)
                        break

                if found is None:
                    start += 1
                    continue

                end, cv, radius = found
                piece = (start, end)
                cx = float(track.x[start:end + 1].mean())
                cy = float(track.y[start:end + 1].mean())
                center = unproject_local([cx], [cy], track.origin)[0]

                patterns.append(self._build(
                    track, [piece],
                    PatternType.CIRCULAR_MOVEMENT,
                    'Circular Movement Pattern',
                    confidence=max(0.0, 1.0 - cv),
                    geometry=line_string(track.piece_latlons(piece)),
                    characteristics={
                        'radius_meters': round(radius, 1),
                        'radius_cv': round(cv, 3),
                        'center': [round(center[0], 7), round(center[1], 7)],
                        'direction': 'clockwise' if turn > 0 else 'counterclockwise',
                        'total_turn_degrees': round(turn, 1),
                    },
                ))
                start = end
        return patterns

    def _radius_spread(self, track: Track, start: int, end: int) -> Tuple[float, float]:
        """Coefficient of variation and mean of distances to the centroid."""
        xs = track.x[start:end + 1]
        ys = track.y[start:end + 1]
        radii = np.hypot(xs - xs.mean(), ys - ys.mean())
        mean = float(radii.mean())
        if mean < self.config.min_step_meters:
            return float('inf'), mean
        return float(radii.std() / mean), mean

    def detect_stationary(self, track: Track) -> List[DetectedPattern]:
        """Consecutive stationary fixes within stationary_radius of their centroid."""
        cfg = self.config
        clusters: List[List[int]] = []
        current: List[int] = []

        for i in range(len(track)):
            if not track.stationary[i]:
                if current:
                    clusters.append(current)
                current = []
                continue
            if current:
                cx = track.x[current].mean()
                cy = track.y[current].mean()
                if math.hypot(track.x[i] - cx, track.y[i] - cy) > cfg.stationary_radius_meters:
                    clusters.append(current)
                    current = []
            current.append(i)
        if current:
            clusters.append(current)

        patterns = []
        for cluster in clusters:
            if len(cluster) < cfg.min_stationary_points:
                continue

            piece = (cluster[0], cluster[-1])
            cx = float(track.x[cluster].mean())
            cy = float(track.y[cluster].mean())
            spread = float(np.hypot(track.x[cluster] - cx, track.y[cluster] - cy).max())
            center_lat, center_lon = unproject_local([cx], [cy], track.origin)[0]

            patterns.append(self._build(
                track, [piece],
                PatternType.STATIONARY_CLUSTER,
                'Stationary Cluster Pattern',
                confidence=max(0.0, 1.0 - spread / cfg.stationary_radius_meters),
                geometry={
                    'type': 'Point',
                    'coordinates': [round(center_lon, 7), round(center_lat, 7)],
                },
                characteristics={
                    'spread_meters': round(spread, 1),
                    'dwell_seconds': int(track.timestamps[piece[1]] - track.timestamps[piece[0]]),
                },
            ))
        return patterns

    def detect_routes(self, track: Track) -> List[DetectedPattern]:
        """
        Trips grouped by start and end grid cell.

        Groups are named route_1, route_2, ... in order of first trip.
        """
        cfg = self.config
        groups: Dict[Tuple[int, int, int, int], List[Piece]] = {}

        for trip in self.trips(track):
            start, end = trip
            key = (
                *self._cell(track, start),
                *self._cell(track, end),
            )
            groups.setdefault(key, []).append(trip)

        patterns = []
        for number, trips in enumerate(groups.values(), start=1):
            fix_count = sum(end - start + 1 for start, end in trips)
            if fix_count < cfg.min_route_points:
                continue

            first_start = trips[0][0]
            first_end = trips[0][1]
            frequency = len(trips)

            patterns.append(self._build(
                track, trips,
                PatternType.COMMUTE_ROUTE,
                f'Route Pattern: route_{number}',
                confidence=min(1.0, 0.5 + 0.1 * frequency),
                geometry={
                    'type': 'MultiLineString',
                    'coordinates': [
                        line_string(track.piece_latlons(trip))['coordinates'] for trip in trips
                    ],
                },
                frequency=frequency,
                is_recurring=frequency > 1,
                characteristics={
                    'route_key': f'route_{number}',
                    'trip_count': frequency,
                    'origin': [round(track.lat[first_start], 7), round(track.lon[first_start], 7)],
                    'destination': [round(track.lat[first_end], 7), round(track.lon[first_end], 7)],
                    'mean_trip_meters': round(
                        float(np.mean([track.piece_length(t) for t in trips])), 1
                    ),
                },
            ))
        return patterns

    def _cell(self, track: Track, i: int) -> Tuple[int, int]:
        size = self.config.route_cell_meters
        return (int(math.floor(track.y[i] / size)), int(math.floor(track.x[i] / size)))

    def detect_search_grids(self, track: Track, segments: Optional[List[Piece]] = None) -> List[DetectedPattern]:
        """
        Lawnmower sweeps.

        Sweep legs are heading segments with at least min_leg_points
        fixes; shorter segments are connectors. A run of contiguous legs
        where each leg reverses the previous heading (within tolerance)
        is a search grid.
        """
        cfg = self.config
        if segments is None:
            segments = self.heading_segments(track)

        runs: List[List[Tuple[Piece, float]]] = []
        current: List[Tuple[Piece, float]] = []
        last_end: Optional[int] = None

        for piece in segments:
            if last_end is None or piece[0] != last_end:
                runs.append(current)
                current = []
            last_end = piece[1]

            if piece[1] - piece[0] + 1 < cfg.min_leg_points:
                continue

            heading = track.piece_heading(piece)
            if current and self._reversal_deviation(current[-1][1], heading) > cfg.search_reversal_tolerance_degrees:
                runs.append(current)
                current = []
            current.append((piece, heading))
        runs.append(current)

        patterns = []
        for legs in runs:
            if len(legs) < cfg.min_search_legs:
                continue
            piece = (legs[0][0][0], legs[-1][0][1])
            if piece[1] - piece[0] + 1 < cfg.min_search_points:
                continue

            deviations = [
                self._reversal_deviation(a[1], b[1]) for a, b in zip(legs, legs[1:])
            ]
            confidence = float(np.mean([
                1.0 - d / cfg.search_reversal_tolerance_degrees for d in deviations
            ]))

            patterns.append(self._build(
                track, [piece],
                PatternType.SEARCH_GRID,
                'Search Grid Pattern',
                confidence=max(0.0, confidence),
                geometry=line_string(track.piece_latlons(piece)),
                characteristics={
                    'leg_count': len(legs),
                    'leg_headings': [round(h, 1) for _, h in legs],
                    'leg_spacing_meters': round(self._leg_spacing(track, legs), 1),
                },
            ))
        return patterns

    @staticmethod
    def _reversal_deviation(a: float, b: float) -> float:
        """How far two headings are from exactly opposite, in degrees."""
        return abs(abs(heading_difference(a, b)) - 180.0)

    @staticmethod
    def _leg_spacing(track: Track, legs: List[Tuple[Piece, float]]) -> float:
        """Mean distance between the midpoints of consecutive legs."""
        mids = []
        for (start, end), _ in legs:
            mids.append((track.x[start:end + 1].mean(), track.y[start:end + 1].mean()))
        gaps = [math.hypot(b[0] - a[0], b[1] - a[1]) for a, b in zip(mids, mids[1:])]
        return float(np.mean(gaps)) if gaps else 0.0

    def detect_anomalies(self, track: Track) -> List[DetectedPattern]:
        """
        Fixes with implausible speed.

        Checks both the reported speed and the speed implied by the jump
        from the previous fix. All anomalous fixes form a single pattern.
        """
        limit = self.config.anomaly_speed_mps
        implied = track.implied_speeds()

        indices = []
        reasons = []
        for i in range(len(track)):
            if track.speed[i] > limit:
                indices.append(i)
                reasons.append(f'Reported speed {track.speed[i]:.1f}m/s at {int(track.timestamps[i])}')
            elif not np.isnan(implied[i]) and implied[i] > limit:
                indices.append(i)
                reasons.append(
                    f'Position jump of {track.steps[i]:.0f}m '
                    f'({implied[i]:.1f}m/s implied) at {int(track.timestamps[i])}'
                )

        if not indices:
            return []

        pieces = [(i, i) for i in indices]
        return [self._build(
            track, pieces,
            PatternType.ANOMALY_DETECTED,
            'Anomaly Pattern',
            confidence=0.8,
            geometry={
                'type': 'MultiPoint',
                'coordinates': [
                    [round(track.lon[i], 7), round(track.lat[i], 7)] for i in indices
                ],
            },
            distance=float(track.steps[indices].sum()),
            characteristics={
                'anomaly_count': len(indices),
                'anomaly_reasons': reasons,
            },
        )]

    # -------------------------------------------------------------------------
    # Pattern assembly
    # -------------------------------------------------------------------------

    def _build(
        self,
        track: Track,
        pieces: List[Piece],
        pattern_type: PatternType,
        name: str,
        confidence: float,
        geometry: Optional[dict] = None,
        frequency: int = 1,
        is_recurring: bool = False,
        distance: Optional[float] = None,
        characteristics: Optional[Dict[str, Any]] = None,
    ) -> DetectedPattern:
        """Summarize the fixes covered by pieces into a DetectedPattern."""
        indices = np.concatenate([np.arange(s, e + 1) for s, e in pieces])
        speeds = track.speed[indices]
        entity_type, entity_id = track.entity

        if distance is None:
            distance = sum(track.piece_length(p) for p in pieces)

        return DetectedPattern(
            entity_type=entity_type,
            entity_id=entity_id,
            pattern_type=pattern_type,
            pattern_name=name,
            start_time=int(track.timestamps[pieces[0][0]]),
            end_time=int(track.timestamps[pieces[-1][1]]),
            duration_seconds=int(sum(track.timestamps[e] - track.timestamps[s] for s, e in pieces)),
            distance_meters=float(distance),
            average_speed=float(speeds.mean()) if len(speeds) else 0.0,
            max_speed=float(speeds.max()) if len(speeds) else 0.0,
            confidence_score=float(min(max(confidence, 0.0), 1.0)),
            fix_count=int(len(indices)),
            geometry=geometry,
            frequency=frequency,
            is_recurring=is_recurring,
            characteristics=characteristics or {},
        )
