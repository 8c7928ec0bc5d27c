"""
LocationPattern model - movement patterns detected from fix history.

A pattern summarizes a slice of one entity's track (a straight leg, a
loop, a dwell, a repeated trip, a search sweep or a set of anomalous
fixes). Geometry is stored as a GeoJSON dict so it survives both SQLite
and PostgreSQL without a spatial extension.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, Float, Integer, DateTime, Boolean, Index, JSON, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from relief_analytics.models.base import Base


class PatternType(str, Enum):
    """Kinds of movement patterns."""
    # Movement
    LINEAR_MOVEMENT = 'LINEAR_MOVEMENT'
    CIRCULAR_MOVEMENT = 'CIRCULAR_MOVEMENT'
    RANDOM_MOVEMENT = 'RANDOM_MOVEMENT'
    GRID_PATTERN = 'GRID_PATTERN'
    SPIRAL_PATTERN = 'SPIRAL_PATTERN'
    ZIGZAG_PATTERN = 'ZIGZAG_PATTERN'
    BACK_AND_FORTH = 'BACK_AND_FORTH'

    # Stationary
    STATIONARY_CLUSTER = 'STATIONARY_CLUSTER'
    WAITING_PATTERN = 'WAITING_PATTERN'
    WORK_STATION = 'WORK_STATION'
    REST_AREA = 'REST_AREA'

    # Routes
    COMMUTE_ROUTE = 'COMMUTE_ROUTE'
    SUPPLY_ROUTE = 'SUPPLY_ROUTE'
    PATROL_ROUTE = 'PATROL_ROUTE'
    EMERGENCY_ROUTE = 'EMERGENCY_ROUTE'
    EVACUATION_ROUTE = 'EVACUATION_ROUTE'

    # Search
    SEARCH_GRID = 'SEARCH_GRID'
    SEARCH_SPIRAL = 'SEARCH_SPIRAL'
    SEARCH_RANDOM = 'SEARCH_RANDOM'
    SEARCH_SYSTEMATIC = 'SEARCH_SYSTEMATIC'
    COVERAGE_PATTERN = 'COVERAGE_PATTERN'

    # Response
    EMERGENCY_RESPONSE = 'EMERGENCY_RESPONSE'
    RESCUE_OPERATION = 'RESCUE_OPERATION'
    MEDICAL_RESPONSE = 'MEDICAL_RESPONSE'
    FIRE_RESPONSE = 'FIRE_RESPONSE'
    FLOOD_RESPONSE = 'FLOOD_RESPONSE'

    # Resources
    RESOURCE_GATHERING = 'RESOURCE_GATHERING'
    SUPPLY_DISTRIBUTION = 'SUPPLY_DISTRIBUTION'
    EQUIPMENT_DEPLOYMENT = 'EQUIPMENT_DEPLOYMENT'
    PERSONNEL_DEPLOYMENT = 'PERSONNEL_DEPLOYMENT'

    # Communication
    COMMUNICATION_HUB = 'COMMUNICATION_HUB'
    RELAY_STATION = 'RELAY_STATION'
    COORDINATION_POINT = 'COORDINATION_POINT'

    # Environment
    WEATHER_AVOIDANCE = 'WEATHER_AVOIDANCE'
    TERRAIN_FOLLOWING = 'TERRAIN_FOLLOWING'
    OBSTACLE_AVOIDANCE = 'OBSTACLE_AVOIDANCE'
    EFFICIENT_PATH = 'EFFICIENT_PATH'

    # Anomalies
    ANOMALY_DETECTED = 'ANOMALY_DETECTED'
    DEVIATION_FROM_NORM = 'DEVIATION_FROM_NORM'
    UNUSUAL_ACTIVITY = 'UNUSUAL_ACTIVITY'
    SUSPICIOUS_MOVEMENT = 'SUSPICIOUS_MOVEMENT'

    # Optimized movement
    OPTIMIZED_ROUTE = 'OPTIMIZED_ROUTE'
    EFFICIENT_MOVEMENT = 'EFFICIENT_MOVEMENT'
    TIME_OPTIMIZED = 'TIME_OPTIMIZED'
    DISTANCE_OPTIMIZED = 'DISTANCE_OPTIMIZED'
    RESOURCE_OPTIMIZED = 'RESOURCE_OPTIMIZED'

    CUSTOM_PATTERN = 'CUSTOM_PATTERN'
    USER_DEFINED = 'USER_DEFINED'
    MACHINE_LEARNED = 'MACHINE_LEARNED'
    AI_GENERATED = 'AI_GENERATED'


# Pattern types that describe travel along a path
ROUTE_PATTERN_TYPES = frozenset({
    PatternType.LINEAR_MOVEMENT,
    PatternType.COMMUTE_ROUTE,
    PatternType.SUPPLY_ROUTE,
    PatternType.PATROL_ROUTE,
    PatternType.EMERGENCY_ROUTE,
    PatternType.EVACUATION_ROUTE,
})


class LocationPattern(Base):
    """A detected movement pattern for one entity."""

    __tablename__ = 'location_patterns'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)

    pattern_type: Mapped[str] = mapped_column(String(40), nullable=False)
    pattern_name: Mapped[str] = mapped_column(String(255), nullable=False)
    pattern_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    pattern_geometry: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
        comment='GeoJSON geometry, coordinates as [lon, lat]'
    )

    start_time: Mapped[int] = mapped_column(Integer, nullable=False)
    end_time: Mapped[int] = mapped_column(Integer, nullable=False)
    duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    distance_meters: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    average_speed: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    max_speed: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.5)
    frequency: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_optimal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    optimization_suggestions: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    pattern_characteristics: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    extra: Mapped[Optional[dict]] = mapped_column('metadata', JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
        onupdate=lambda: datetime.now(timezone.utc),
    )

    optimizations: Mapped[List['LocationOptimization']] = relationship(
        back_populates='pattern',
        cascade='all, delete-orphan',
        lazy='selectin',
    )

    __table_args__ = (
        Index('ix_location_patterns_entity', 'entity_type', 'entity_id', 'end_time'),
        Index('ix_location_patterns_type', 'pattern_type'),
        Index('ix_location_patterns_confidence', 'confidence_score'),
    )

    def __repr__(self) -> str:
        return f'<LocationPattern {self.pattern_type} {self.entity_type}:{self.entity_id}>'

    @property
    def has_implemented_optimization(self) -> bool:
        return any(o.is_implemented for o in self.optimizations)

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict."""
        return {
            'id': self.id,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'pattern_type': self.pattern_type,
            'pattern_name': self.pattern_name,
            'pattern_description': self.pattern_description,
            'geometry': self.pattern_geometry,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'duration_seconds': self.duration_seconds,
            'distance_meters': round(self.distance_meters, 1),
            'average_speed': round(self.average_speed, 2),
            'max_speed': round(self.max_speed, 2),
            'confidence_score': round(self.confidence_score, 3),
            'frequency': self.frequency,
            'is_recurring': self.is_recurring,
            'is_optimal': self.is_optimal,
            'optimization_suggestions': self.optimization_suggestions or [],
            'characteristics': self.pattern_characteristics or {},
        }
