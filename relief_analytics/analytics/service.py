"""
Location analytics service - the entry point for callers.

Ties the pieces together:
1. Record: fixes go through the LocationRecorder
2. Detect: recent history of one entity is segmented into patterns
3. Advise: each pattern gets optimization suggestions
4. Persist: patterns replace the entity's previous results in the
   window; suggestions are stored with their pattern
5. Query: history, patterns and suggestions with simple filters

Analysis runs synchronously in the caller's thread.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from sqlalchemy import and_, or_, select

from relief_analytics.config import config, AppConfig
from relief_analytics.cache import LatestFixCache
from relief_analytics.errors import NotFoundError
from relief_analytics.models import (
    LocationHistory,
    LocationPattern,
    LocationOptimization,
    OptimizationStatus,
)
from relief_analytics.models.base import SessionLocal
from relief_analytics.ingestion import FixReport, LocationRecorder
from relief_analytics.analytics.geometry import BoundingBox, haversine_meters
from relief_analytics.analytics.pattern_detection import PatternDetector
from relief_analytics.analytics.optimization import OptimizationAdvisor
from relief_analytics.analytics import statistics

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


def _value(item: Any) -> Any:
    """Enum members and plain strings both filter by their string value."""
    return getattr(item, 'value', item)


class LocationAnalyticsService:
    """
    Records fixes, detects movement patterns and manages suggestions.

    All collaborators are injectable; by default they are built from
    the global configuration and share one latest-fix cache.
    """

    def __init__(
        self,
        session_factory=SessionLocal,
        recorder: Optional[LocationRecorder] = None,
        detector: Optional[PatternDetector] = None,
        advisor: Optional[OptimizationAdvisor] = None,
        cache: Optional[LatestFixCache] = None,
        app_config: Optional[AppConfig] = None,
    ):
        self.config = app_config or config
        self.session_factory = session_factory
        self.cache = cache if cache is not None else LatestFixCache(self.config.cache.max_entries)
        self.recorder = recorder or LocationRecorder(
            session_factory=session_factory,
            cache=self.cache,
            recording_config=self.config.recording,
            retention_config=self.config.retention,
        )
        self.detector = detector or PatternDetector(self.config.detection)
        self.advisor = advisor or OptimizationAdvisor(self.config.optimization)

        self.recorder.add_analysis_callback(self.analyze_entity)

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    def record_location(self, report: Union[FixReport, Mapping[str, Any]]) -> LocationHistory:
        """
        Record one fix, analyzing the entity afterwards if configured.

        Raises InvalidFixError for rejected reports.
        """
        if not isinstance(report, FixReport):
            report = FixReport.from_dict(report)
        return self.recorder.record(report)

    def record_locations(self, reports: Iterable[Union[FixReport, Mapping[str, Any]]]) -> int:
        """Record a batch; invalid reports are skipped. Returns count recorded."""
        return self.recorder.record_batch(reports)

    def cleanup(self, now: Optional[int] = None) -> int:
        """Apply the history retention policy."""
        return self.recorder.cleanup(now)

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------

    def _window(self, now: Optional[int]) -> Tuple[int, int]:
        now = int(now if now is not None else time.time())
        return now - self.config.detection.window_days * SECONDS_PER_DAY, now

    def analyze_entity(
        self,
        entity_type: str,
        entity_id: int,
        now: Optional[int] = None,
    ) -> List[LocationPattern]:
        """
        Detect patterns in the entity's recent history and store them.

        Earlier patterns of the entity that overlap the window are
        replaced, unless one of their suggestions was implemented.
        Returns the new patterns, each with its optimizations loaded.
        """
        since, until = self._window(now)

        with self.session_factory() as session:
            fixes = session.scalars(
                select(LocationHistory)
                .where(
                    LocationHistory.entity_type == entity_type,
                    LocationHistory.entity_id == entity_id,
                    LocationHistory.timestamp >= since,
                    LocationHistory.timestamp <= until,
                )
                .order_by(LocationHistory.timestamp.asc(), LocationHistory.id.asc())
            ).all()

            if len(fixes) < self.config.detection.min_fixes:
                logger.debug(
                    f'Insufficient history for {entity_type}:{entity_id}: {len(fixes)} fixes'
                )
                return []

            detected = self.detector.detect(fixes)

            replaced = 0
            stale = session.scalars(
                select(LocationPattern).where(
                    LocationPattern.entity_type == entity_type,
                    LocationPattern.entity_id == entity_id,
                    LocationPattern.end_time >= since,
                    LocationPattern.start_time <= until,
                )
            ).all()
            for old in stale:
                if not old.has_implemented_optimization:
                    session.delete(old)
                    replaced += 1

            patterns = []
            for found in detected:
                pattern = found.to_model()
                self._attach_optimizations(pattern)
                session.add(pattern)
                patterns.append(pattern)

            session.commit()

        self.cache.mark_analyzed(entity_type, entity_id)
        logger.info(
            f'Analyzed {entity_type}:{entity_id}: {len(patterns)} patterns '
            f'from {len(fixes)} fixes ({replaced} replaced)'
        )
        return patterns

    def analyze_all_active(self, now: Optional[int] = None) -> Dict[Tuple[str, int], List[LocationPattern]]:
        """
        Analyze every entity with fixes in the analysis window.

        Returns dict mapping (entity_type, entity_id) -> patterns.
        """
        since, until = self._window(now)

        with self.session_factory() as session:
            entities = session.execute(
                select(LocationHistory.entity_type, LocationHistory.entity_id)
                .where(LocationHistory.timestamp >= since, LocationHistory.timestamp <= until)
                .distinct()
            ).all()

        results = {}
        for entity_type, entity_id in entities:
            results[(entity_type, entity_id)] = self.analyze_entity(entity_type, entity_id, now=until)

        logger.info(f'Analyzed {len(results)} active entities')
        return results

    def _attach_optimizations(self, pattern: LocationPattern) -> List[LocationOptimization]:
        """Add advisor suggestions to the pattern and mark it optimal if there are none."""
        suggestions = self.advisor.suggest(pattern)
        created = [suggestion.to_model() for suggestion in suggestions]

        # Assigned rather than appended so an empty collection is still
        # loaded once the pattern is detached.
        pattern.optimizations = list(pattern.optimizations) + created

        names = list(pattern.optimization_suggestions or [])
        names.extend(s.optimization_name for s in suggestions)
        pattern.optimization_suggestions = names
        pattern.is_optimal = not pattern.optimizations
        return created

    def generate_optimizations(
        self,
        patterns: Iterable[Union[LocationPattern, int]],
    ) -> List[LocationOptimization]:
        """
        Create and store suggestions for already persisted patterns.

        Accepts pattern rows or ids. Raises NotFoundError for unknown ids.
        """
        created: List[LocationOptimization] = []
        with self.session_factory() as session:
            for item in patterns:
                pattern_id = item if isinstance(item, int) else item.id
                pattern = session.get(LocationPattern, pattern_id)
                if pattern is None:
                    raise NotFoundError(f'Pattern {pattern_id} not found')
                created.extend(self._attach_optimizations(pattern))
            session.commit()

        logger.info(f'Generated {len(created)} optimizations')
        return created

    # -------------------------------------------------------------------------
    # Optimization lifecycle
    # -------------------------------------------------------------------------

    def implement_optimization(
        self,
        optimization_id: int,
        notes: Optional[str] = None,
        actual_efficiency_gain: Optional[float] = None,
    ) -> LocationOptimization:
        """
        Mark a suggestion as implemented.

        Raises NotFoundError if the optimization does not exist.
        """
        with self.session_factory() as session:
            optimization = self._get_optimization(session, optimization_id)
            optimization.status = OptimizationStatus.IMPLEMENTED.value
            optimization.is_implemented = True
            optimization.implementation_date = datetime.now(timezone.utc)
            if notes is not None:
                optimization.implementation_notes = notes
            if actual_efficiency_gain is not None:
                optimization.actual_efficiency_gain = actual_efficiency_gain
            session.commit()

        logger.info(f'Optimization {optimization_id} implemented')
        return optimization

    def update_optimization_status(
        self,
        optimization_id: int,
        status: Union[OptimizationStatus, str],
    ) -> LocationOptimization:
        """
        Move a suggestion to another status.

        Raises ValueError for unknown statuses and NotFoundError for
        unknown optimizations.
        """
        status = OptimizationStatus(_value(status))
        if status == OptimizationStatus.IMPLEMENTED:
            return self.implement_optimization(optimization_id)

        with self.session_factory() as session:
            optimization = self._get_optimization(session, optimization_id)
            optimization.status = status.value
            session.commit()

        logger.info(f'Optimization {optimization_id} status -> {status.value}')
        return optimization

    @staticmethod
    def _get_optimization(session, optimization_id: int) -> LocationOptimization:
        optimization = session.get(LocationOptimization, optimization_id)
        if optimization is None:
            raise NotFoundError(f'Optimization {optimization_id} not found')
        return optimization

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_history(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        activity_type: Optional[Any] = None,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
        stationary: Optional[bool] = None,
        significant: Optional[bool] = None,
        limit: Optional[int] = 100,
    ) -> List[LocationHistory]:
        """Fixes matching the filters, newest first."""
        stmt = select(LocationHistory)
        if entity_type is not None:
            stmt = stmt.where(LocationHistory.entity_type == entity_type)
        if entity_id is not None:
            stmt = stmt.where(LocationHistory.entity_id == entity_id)
        if activity_type is not None:
            stmt = stmt.where(LocationHistory.activity_type == _value(activity_type))
        if start_time is not None:
            stmt = stmt.where(LocationHistory.timestamp >= start_time)
        if end_time is not None:
            stmt = stmt.where(LocationHistory.timestamp <= end_time)
        if stationary is not None:
            stmt = stmt.where(LocationHistory.is_stationary == stationary)
        if significant is not None:
            stmt = stmt.where(LocationHistory.is_significant == significant)

        stmt = stmt.order_by(LocationHistory.timestamp.desc(), LocationHistory.id.desc())
        if limit is not None:
            stmt = stmt.limit(limit)

        with self.session_factory() as session:
            return list(session.scalars(stmt).all())

    def history_within_bounds(
        self,
        bbox: BoundingBox,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
    ) -> List[LocationHistory]:
        """
        Fixes inside a bounding box, newest first.

        A box reaching past +/-180 degrees longitude also matches fixes
        on the other side of the antimeridian.
        """
        stmt = select(LocationHistory).where(or_(*(
            and_(
                LocationHistory.latitude >= box.lat_min,
                LocationHistory.latitude <= box.lat_max,
                LocationHistory.longitude >= box.lon_min,
                LocationHistory.longitude <= box.lon_max,
            )
            for box in bbox.split_antimeridian()
        )))
        if start_time is not None:
            stmt = stmt.where(LocationHistory.timestamp >= start_time)
        if end_time is not None:
            stmt = stmt.where(LocationHistory.timestamp <= end_time)
        stmt = stmt.order_by(LocationHistory.timestamp.desc())

        with self.session_factory() as session:
            return list(session.scalars(stmt).all())

    def history_near_point(
        self,
        latitude: float,
        longitude: float,
        radius_meters: float,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
    ) -> List[LocationHistory]:
        """
        Fixes within radius_meters of a point, nearest first.

        Bounding-box query first, then exact haversine filter.
        """
        bbox = BoundingBox.from_center_radius(latitude, longitude, radius_meters)
        candidates = self.history_within_bounds(bbox, start_time, end_time)

        nearby = []
        for fix in candidates:
            distance = haversine_meters(latitude, longitude, fix.latitude, fix.longitude)
            if distance <= radius_meters:
                nearby.append((distance, fix))
        nearby.sort(key=lambda x: x[0])
        return [fix for _, fix in nearby]

    def get_pattern(self, pattern_id: int) -> LocationPattern:
        with self.session_factory() as session:
            pattern = session.get(LocationPattern, pattern_id)
        if pattern is None:
            raise NotFoundError(f'Pattern {pattern_id} not found')
        return pattern

    def get_patterns(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        pattern_type: Optional[Any] = None,
        recurring: Optional[bool] = None,
        min_confidence: Optional[float] = None,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[LocationPattern]:
        """Stored patterns matching the filters, most recent first."""
        stmt = select(LocationPattern)
        if entity_type is not None:
            stmt = stmt.where(LocationPattern.entity_type == entity_type)
        if entity_id is not None:
            stmt = stmt.where(LocationPattern.entity_id == entity_id)
        if pattern_type is not None:
            stmt = stmt.where(LocationPattern.pattern_type == _value(pattern_type))
        if recurring is not None:
            stmt = stmt.where(LocationPattern.is_recurring == recurring)
        if min_confidence is not None:
            stmt = stmt.where(LocationPattern.confidence_score >= min_confidence)
        if start_time is not None:
            stmt = stmt.where(LocationPattern.end_time >= start_time)
        if end_time is not None:
            stmt = stmt.where(LocationPattern.start_time <= end_time)

        stmt = stmt.order_by(LocationPattern.start_time.desc(), LocationPattern.id.desc())
        if limit is not None:
            stmt = stmt.limit(limit)

        with self.session_factory() as session:
            return list(session.scalars(stmt).all())

    def get_optimizations(
        self,
        pattern_id: Optional[int] = None,
        status: Optional[Any] = None,
        optimization_type: Optional[Any] = None,
        priority: Optional[Any] = None,
        implemented: Optional[bool] = None,
        limit: Optional[int] = None,
    ) -> List[LocationOptimization]:
        """Stored suggestions matching the filters, newest first."""
        stmt = select(LocationOptimization)
        if pattern_id is not None:
            stmt = stmt.where(LocationOptimization.pattern_id == pattern_id)
        if status is not None:
            stmt = stmt.where(LocationOptimization.status == _value(status))
        if optimization_type is not None:
            stmt = stmt.where(LocationOptimization.optimization_type == _value(optimization_type))
        if priority is not None:
            stmt = stmt.where(LocationOptimization.priority == _value(priority))
        if implemented is not None:
            stmt = stmt.where(LocationOptimization.is_implemented == implemented)

        stmt = stmt.order_by(LocationOptimization.id.desc())
        if limit is not None:
            stmt = stmt.limit(limit)

        with self.session_factory() as session:
            return list(session.scalars(stmt).all())

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def get_statistics(
        self,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
    ) -> dict:
        """Every aggregate over one time range (default: the last 30 days)."""
        start_time, end_time = statistics.default_range(
            start_time, end_time, self.config.retention.statistics_default_days,
        )
        with self.session_factory() as session:
            return {
                'range': {'start_time': start_time, 'end_time': end_time},
                'history': statistics.history_statistics(session, start_time, end_time),
                'activities': statistics.activity_type_statistics(session, start_time, end_time),
                'entities': statistics.entity_movement_statistics(session, start_time, end_time),
                'hourly': statistics.hourly_movement_statistics(session, start_time, end_time),
                'patterns': statistics.pattern_statistics(session, start_time, end_time),
                'optimizations': statistics.optimization_statistics(session, start_time, end_time),
            }

    @property
    def stats(self) -> dict:
        """Get service statistics."""
        return {
            'recorder': self.recorder.stats,
        }
