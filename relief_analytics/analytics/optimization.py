"""
Optimization suggestions derived from movement patterns.

Each pattern kind gets its own rule:
- Travel (linear legs, repeated routes): slow travel gets a route
  suggestion; the suggested path is the track simplified with
  Ramer-Douglas-Peucker, and distance savings are what the detours cost.
- Stationary clusters: long dwells get a workflow suggestion.
- Search grids: sweeps whose covered area is small for the distance
  flown get a tighter boustrophedon sweep over the same bounding box.
- Everything else: a generic performance suggestion.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

import numpy as np

from relief_analytics.config import config, OptimizationConfig
from relief_analytics.models import (
    LocationOptimization,
    OptimizationType,
    OptimizationPriority,
    OptimizationStatus,
    ImplementationDifficulty,
    RiskLevel,
    PatternType,
    ROUTE_PATTERN_TYPES,
)
from relief_analytics.analytics.geometry import (
    convex_hull,
    polygon_area,
    project_local,
    unproject_local,
    simplify_path,
    path_length,
    line_string,
    geojson_latlons,
)

logger = logging.getLogger(__name__)


@dataclass
class OptimizationSuggestion:
    """A suggestion for one pattern, not yet persisted."""
    optimization_type: OptimizationType
    optimization_name: str
    description: str
    current_efficiency: float
    projected_efficiency: float
    priority: OptimizationPriority
    implementation_difficulty: ImplementationDifficulty
    risk_level: RiskLevel
    time_savings_seconds: Optional[int] = None
    distance_savings_meters: Optional[float] = None
    suggested_route: Optional[dict] = None

    @property
    def efficiency_gain(self) -> float:
        return self.projected_efficiency - self.current_efficiency

    def to_model(self) -> LocationOptimization:
        """Build the ORM row; attach it to a pattern via pattern.optimizations."""
        return LocationOptimization(
            optimization_type=self.optimization_type.value,
            optimization_name=self.optimization_name,
            description=self.description,
            suggested_route=self.suggested_route,
            current_efficiency=self.current_efficiency,
            projected_efficiency=self.projected_efficiency,
            time_savings_seconds=self.time_savings_seconds,
            distance_savings_meters=self.distance_savings_meters,
            priority=self.priority.value,
            status=OptimizationStatus.PENDING.value,
            implementation_difficulty=self.implementation_difficulty.value,
            risk_level=self.risk_level.value,
            is_implemented=False,
        )


def _geometry_of(pattern: Any) -> Optional[dict]:
    """Geometry from either a LocationPattern row or a DetectedPattern."""
    geometry = getattr(pattern, 'pattern_geometry', None)
    if geometry is None:
        geometry = getattr(pattern, 'geometry', None)
    return geometry


def _pattern_type_of(pattern: Any) -> Optional[PatternType]:
    value = pattern.pattern_type
    if isinstance(value, PatternType):
        return value
    try:
        return PatternType(value)
    except ValueError:
        return None


class OptimizationAdvisor:
    """
    Turns patterns into optimization suggestions.

    Stateless apart from its configuration; safe to share.
    """

    def __init__(self, optimization_config: Optional[OptimizationConfig] = None):
        self.config = optimization_config or config.optimization

    def suggest(self, pattern: Any) -> List[OptimizationSuggestion]:
        """Suggestions for a single pattern (possibly none)."""
        pattern_type = _pattern_type_of(pattern)

        if pattern_type in ROUTE_PATTERN_TYPES:
            suggestions = self.route_suggestions(pattern)
        elif pattern_type == PatternType.STATIONARY_CLUSTER:
            suggestions = self.stationary_suggestions(pattern)
        elif pattern_type == PatternType.SEARCH_GRID:
            suggestions = self.search_suggestions(pattern)
        else:
            suggestions = self.generic_suggestions(pattern)

        logger.debug(f'{len(suggestions)} suggestions for {pattern.pattern_name}')
        return suggestions

    # -------------------------------------------------------------------------
    # Efficiency measures
    # -------------------------------------------------------------------------

    def route_efficiency(self, pattern: Any) -> float:
        """Average speed as a fraction of the optimal travel speed, capped at 1."""
        if self.config.optimal_speed_mps <= 0:
            return 1.0
        return min((pattern.average_speed or 0.0) / self.config.optimal_speed_mps, 1.0)

    def search_efficiency(self, pattern: Any) -> float:
        """
        Area covered per meter flown, relative to an ideal sweep.

        Ideal coverage is distance x sweep width; the covered area is the
        convex hull of the sweep.
        """
        distance = pattern.distance_meters or 0.0
        latlons = geojson_latlons(_geometry_of(pattern))
        if distance <= 0 or len(latlons) < 3:
            return 0.0

        x, y = project_local([p[0] for p in latlons], [p[1] for p in latlons])
        area = polygon_area(convex_hull(list(zip(x.tolist(), y.tolist()))))
        return min(area / (distance * self.config.sweep_width_meters), 1.0)

    # -------------------------------------------------------------------------
    # Rules
    # -------------------------------------------------------------------------

    def route_suggestions(self, pattern: Any) -> List[OptimizationSuggestion]:
        cfg = self.config
        current = self.route_efficiency(pattern)
        if current >= cfg.route_efficiency_threshold:
            return []

        suggested_route, savings_ratio = self._simplified_route(pattern)
        distance = pattern.distance_meters or 0.0

        return [OptimizationSuggestion(
            optimization_type=OptimizationType.ROUTE_OPTIMIZATION,
            optimization_name=f'Route Optimization for {pattern.pattern_name}',
            description='Optimize the route to improve efficiency and reduce travel time',
            current_efficiency=current,
            projected_efficiency=cfg.projected_route_efficiency,
            time_savings_seconds=int((pattern.duration_seconds or 0) * cfg.route_time_savings_ratio),
            distance_savings_meters=round(distance * savings_ratio, 1),
            suggested_route=suggested_route,
            priority=OptimizationPriority.HIGH,
            implementation_difficulty=ImplementationDifficulty.MEDIUM,
            risk_level=RiskLevel.LOW,
        )]

    def _simplified_route(self, pattern: Any) -> Tuple[Optional[dict], float]:
        """
        Simplified path and the fraction of distance it saves.

        Routes made of several trips are represented by their first trip.
        Falls back to the configured ratio when there is no usable path.
        """
        geometry = _geometry_of(pattern)
        if geometry and geometry.get('type') == 'MultiLineString':
            parts = geometry.get('coordinates') or [[]]
            geometry = {'type': 'LineString', 'coordinates': parts[0]}

        latlons = geojson_latlons(geometry)
        if len(latlons) < 2:
            return None, self.config.route_distance_savings_ratio

        lats = [p[0] for p in latlons]
        lons = [p[1] for p in latlons]
        actual = path_length(lats, lons)
        if actual <= 0:
            return None, self.config.route_distance_savings_ratio

        origin = (float(np.mean(lats)), float(np.mean(lons)))
        x, y = project_local(lats, lons, origin)
        simplified_xy = simplify_path(list(zip(x.tolist(), y.tolist())), self.config.simplify_tolerance_meters)
        simplified = unproject_local([p[0] for p in simplified_xy], [p[1] for p in simplified_xy], origin)

        shortened = path_length([p[0] for p in simplified], [p[1] for p in simplified])
        ratio = max(actual - shortened, 0.0) / actual
        return line_string(simplified), ratio

    def stationary_suggestions(self, pattern: Any) -> List[OptimizationSuggestion]:
        duration = pattern.duration_seconds or 0
        if duration <= self.config.stationary_threshold_seconds:
            return []

        return [OptimizationSuggestion(
            optimization_type=OptimizationType.WORKFLOW_OPTIMIZATION,
            optimization_name='Reduce Stationary Time',
            description='Optimize workflow to reduce unnecessary stationary time',
            current_efficiency=0.6,
            projected_efficiency=0.8,
            time_savings_seconds=duration // 2,
            priority=OptimizationPriority.MEDIUM,
            implementation_difficulty=ImplementationDifficulty.EASY,
            risk_level=RiskLevel.LOW,
        )]

    def search_suggestions(self, pattern: Any) -> List[OptimizationSuggestion]:
        cfg = self.config
        current = self.search_efficiency(pattern)
        if current >= cfg.search_efficiency_threshold:
            return []

        sweep = self._boustrophedon(pattern)
        distance_savings = None
        if sweep is not None:
            sweep_length = path_length(
                [c[1] for c in sweep['coordinates']],
                [c[0] for c in sweep['coordinates']],
            )
            distance_savings = round(max((pattern.distance_meters or 0.0) - sweep_length, 0.0), 1)

        return [OptimizationSuggestion(
            optimization_type=OptimizationType.SEARCH_PATTERN_OPTIMIZATION,
            optimization_name='Optimize Search Pattern',
            description='Improve search pattern to increase coverage efficiency',
            current_efficiency=current,
            projected_efficiency=cfg.projected_search_efficiency,
            distance_savings_meters=distance_savings,
            suggested_route=sweep,
            priority=OptimizationPriority.HIGH,
            implementation_difficulty=ImplementationDifficulty.MEDIUM,
            risk_level=RiskLevel.MEDIUM,
        )]

    def _boustrophedon(self, pattern: Any) -> Optional[dict]:
        """
        Back-and-forth sweep over the pattern's bounding box.

        Legs run along the longer side, spaced one sweep width apart,
        starting half a width in from the edge.
        """
        latlons = geojson_latlons(_geometry_of(pattern))
        if len(latlons) < 2:
            return None

        lats = [p[0] for p in latlons]
        lons = [p[1] for p in latlons]
        origin = (float(np.mean(lats)), float(np.mean(lons)))
        x, y = project_local(lats, lons, origin)
        x_min, x_max = float(x.min()), float(x.max())
        y_min, y_max = float(y.min()), float(y.max())

        width = self.config.sweep_width_meters
        along_y = (y_max - y_min) >= (x_max - x_min)
        across_min, across_max = (x_min, x_max) if along_y else (y_min, y_max)
        along_min, along_max = (y_min, y_max) if along_y else (x_min, x_max)

        leg_count = max(1, int(math.ceil((across_max - across_min) / width)))
        points_x, points_y = [], []
        for leg in range(leg_count):
            across = min(across_min + width / 2 + leg * width, across_max)
            ends = (along_min, along_max) if leg % 2 == 0 else (along_max, along_min)
            for along in ends:
                if along_y:
                    points_x.append(across)
                    points_y.append(along)
                else:
                    points_x.append(along)
                    points_y.append(across)

        return line_string(unproject_local(points_x, points_y, origin))

    def generic_suggestions(self, pattern: Any) -> List[OptimizationSuggestion]:
        return [OptimizationSuggestion(
            optimization_type=OptimizationType.PERFORMANCE_IMPROVEMENT,
            optimization_name='General Performance Improvement',
            description='General optimization suggestions for this movement pattern',
            current_efficiency=0.7,
            projected_efficiency=0.85,
            priority=OptimizationPriority.MEDIUM,
            implementation_difficulty=ImplementationDifficulty.MEDIUM,
            risk_level=RiskLevel.LOW,
        )]
