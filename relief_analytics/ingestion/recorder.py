"""
Fix recorder - validates, enriches and stores positional fixes.

Recording stages:
1. Validate: reject malformed reports with InvalidFixError
2. Lookup: find the entity's previous fix (cache first, then database)
3. Enrich: distance moved, implied speed and heading, stationary and
   significant flags
4. Append: insert into location_history (never updated afterwards)
5. Notify: hand the entity to registered analysis callbacks
"""

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from sqlalchemy import select, delete

from relief_analytics.config import config, RecordingConfig, RetentionConfig
from relief_analytics.cache import LatestFixCache, FixSnapshot
from relief_analytics.errors import InvalidFixError
from relief_analytics.models import LocationHistory
from relief_analytics.models.base import SessionLocal
from relief_analytics.analytics.geometry import haversine_meters, initial_bearing
from relief_analytics.ingestion.fixes import FixReport

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400

AnalysisCallback = Callable[[str, int], Any]


class LocationRecorder:
    """
    Appends enriched fixes to location history.

    Analysis is decoupled through callbacks: whoever owns pattern
    detection registers one with add_analysis_callback().
    """

    def __init__(
        self,
        session_factory=SessionLocal,
        cache: Optional[LatestFixCache] = None,
        recording_config: Optional[RecordingConfig] = None,
        retention_config: Optional[RetentionConfig] = None,
    ):
        self.session_factory = session_factory
        self.cache = cache if cache is not None else LatestFixCache()
        self.config = recording_config or config.recording
        self.retention = retention_config or config.retention

        self._record_count = 0
        self._rejected_count = 0
        self._analysis_callbacks: List[AnalysisCallback] = []

    def add_analysis_callback(self, callback: AnalysisCallback) -> None:
        """
        Register callback to be invoked after fixes are recorded.

        Callback receives (entity_type, entity_id).
        """
        self._analysis_callbacks.append(callback)

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    def record(self, report: FixReport) -> LocationHistory:
        """
        Record a single fix.

        Raises InvalidFixError if the report fails validation.
        """
        fix = self._record(report)
        if self.config.analyze_on_record:
            self._notify(fix.entity_type, fix.entity_id)
        return fix

    def record_batch(self, reports: Iterable[Union[FixReport, Mapping[str, Any]]]) -> int:
        """
        Record many fixes in timestamp order.

        Invalid reports are logged and skipped. Analysis callbacks fire
        once per entity touched. Returns count of fixes recorded.
        """
        valid: List[FixReport] = []
        for item in reports:
            try:
                report = item if isinstance(item, FixReport) else FixReport.from_dict(item)
                valid.append(report.validate())
            except InvalidFixError as e:
                self._rejected_count += 1
                logger.warning(f'Skipping invalid fix: {e}')

        valid.sort(key=lambda r: r.timestamp)

        touched: Dict[Tuple[str, int], None] = {}
        for report in valid:
            fix = self._record(report)
            touched[fix.entity_key] = None

        logger.info(f'Recorded {len(valid)} fixes for {len(touched)} entities')

        if self.config.analyze_on_record:
            for entity_type, entity_id in touched:
                self._notify(entity_type, entity_id)

        return len(valid)

    def _record(self, report: FixReport) -> LocationHistory:
        try:
            report.validate()
        except InvalidFixError:
            self._rejected_count += 1
            raise

        with self.session_factory() as session:
            previous = self._previous_fix(session, report)
            fix = self._enrich(report, previous)
            session.add(fix)
            session.commit()

        self.cache.update(fix)
        self._record_count += 1

        logger.debug(
            f'Recorded fix for {fix.entity_type}:{fix.entity_id} at {fix.timestamp} '
            f'({fix.distance_from_previous:.0f}m from previous)'
        )
        return fix

    def _previous_fix(self, session, report: FixReport) -> Optional[FixSnapshot]:
        """
        Latest fix of the entity at or before the report's timestamp.

        The cache answers for in-order reports; late reports go to the
        database.
        """
        cached = self.cache.get(report.entity_type, report.entity_id)
        if cached is not None and cached.timestamp <= report.timestamp:
            return cached

        row = session.scalars(
            select(LocationHistory)
            .where(
                LocationHistory.entity_type == report.entity_type,
                LocationHistory.entity_id == report.entity_id,
                LocationHistory.timestamp <= report.timestamp,
            )
            .order_by(LocationHistory.timestamp.desc(), LocationHistory.id.desc())
            .limit(1)
        ).first()
        return FixSnapshot.from_fix(row) if row is not None else None

    def _enrich(self, report: FixReport, previous: Optional[FixSnapshot]) -> LocationHistory:
        """Build the history row with computed fields."""
        cfg = self.config

        distance = 0.0
        elapsed = 0
        if previous is not None:
            distance = haversine_meters(
                previous.latitude, previous.longitude,
                report.latitude, report.longitude,
            )
            elapsed = report.timestamp - previous.timestamp

        speed = report.speed
        if speed is None:
            speed = distance / elapsed if elapsed > 0 else 0.0

        heading = report.heading
        if heading is None and previous is not None and distance > 0:
            heading = initial_bearing(
                previous.latitude, previous.longitude,
                report.latitude, report.longitude,
            )

        is_stationary = (
            speed < cfg.stationary_speed_mps and
            (report.duration_seconds or 0) > cfg.stationary_min_duration_seconds
        )

        return LocationHistory(
            entity_type=report.entity_type,
            entity_id=report.entity_id,
            entity_name=report.entity_name,
            latitude=report.latitude,
            longitude=report.longitude,
            altitude=report.altitude,
            heading=heading,
            speed=speed,
            accuracy=report.accuracy if report.accuracy is not None else cfg.default_accuracy_meters,
            activity_type=report.activity_type.value,
            activity_description=report.activity_description,
            timestamp=report.timestamp,
            duration_seconds=report.duration_seconds,
            distance_from_previous=distance,
            is_stationary=is_stationary,
            is_significant=distance > cfg.significant_distance_meters,
            location_context=report.location_context,
            environmental_conditions=report.environmental_conditions,
            extra=report.metadata,
        )

    def _notify(self, entity_type: str, entity_id: int) -> None:
        for callback in self._analysis_callbacks:
            try:
                callback(entity_type, entity_id)
            except Exception as e:
                logger.error(f'Analysis callback error for {entity_type}:{entity_id}: {e}')

    # -------------------------------------------------------------------------
    # Retention
    # -------------------------------------------------------------------------

    def cleanup(self, now: Optional[int] = None, retention_days: Optional[int] = None) -> int:
        """
        Remove history older than the retention period.

        Returns count of fixes deleted.
        """
        now = int(now if now is not None else time.time())
        days = retention_days if retention_days is not None else self.retention.days
        cutoff = now - days * SECONDS_PER_DAY

        with self.session_factory() as session:
            result = session.execute(
                delete(LocationHistory).where(LocationHistory.timestamp < cutoff)
            )
            session.commit()
            deleted = result.rowcount

        if deleted:
            logger.info(f'Cleanup: removed {deleted} fixes older than {days} days')
        return deleted

    @property
    def stats(self) -> dict:
        """Get recording statistics."""
        return {
            'record_count': self._record_count,
            'rejected_count': self._rejected_count,
            'cache': self.cache.stats,
        }
