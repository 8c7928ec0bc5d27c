"""
LocationHistory model - positional fix storage.

Every fix reported by a responder, vehicle or piece of equipment is
recorded here. The table is append-only; pattern detection reads back
a time window per entity, so the (entity, timestamp) index is the one
that matters.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, Float, Integer, DateTime, Boolean, Index, JSON, Text
from sqlalchemy.orm import Mapped, mapped_column

from relief_analytics.models.base import Base


class ActivityType(str, Enum):
    """What the entity was doing when the fix was taken."""
    # Movement
    WALKING = 'WALKING'
    RUNNING = 'RUNNING'
    DRIVING = 'DRIVING'
    FLYING = 'FLYING'
    BOATING = 'BOATING'
    CYCLING = 'CYCLING'
    STATIONARY = 'STATIONARY'

    # Field work
    SEARCH_AND_RESCUE = 'SEARCH_AND_RESCUE'
    MEDICAL_TREATMENT = 'MEDICAL_TREATMENT'
    SUPPLY_DELIVERY = 'SUPPLY_DELIVERY'
    EVACUATION = 'EVACUATION'
    DAMAGE_ASSESSMENT = 'DAMAGE_ASSESSMENT'
    INFRASTRUCTURE_REPAIR = 'INFRASTRUCTURE_REPAIR'
    COMMUNICATION = 'COMMUNICATION'
    COORDINATION = 'COORDINATION'

    # Relief
    FOOD_DISTRIBUTION = 'FOOD_DISTRIBUTION'
    WATER_DISTRIBUTION = 'WATER_DISTRIBUTION'
    SHELTER_MANAGEMENT = 'SHELTER_MANAGEMENT'
    RESOURCE_COLLECTION = 'RESOURCE_COLLECTION'
    VOLUNTEER_COORDINATION = 'VOLUNTEER_COORDINATION'
    PUBLIC_INFORMATION = 'PUBLIC_INFORMATION'

    # Emergency
    EMERGENCY_RESPONSE = 'EMERGENCY_RESPONSE'
    FIRE_FIGHTING = 'FIRE_FIGHTING'
    FLOOD_RESPONSE = 'FLOOD_RESPONSE'
    EARTHQUAKE_RESPONSE = 'EARTHQUAKE_RESPONSE'
    HURRICANE_RESPONSE = 'HURRICANE_RESPONSE'
    TORNADO_RESPONSE = 'TORNADO_RESPONSE'

    # Administrative
    MEETING = 'MEETING'
    PLANNING = 'PLANNING'
    REPORTING = 'REPORTING'
    TRAINING = 'TRAINING'
    MAINTENANCE = 'MAINTENANCE'

    UNKNOWN = 'UNKNOWN'
    OTHER = 'OTHER'


class LocationHistory(Base):
    """
    One positional fix for one tracked entity.

    Enrichment fields (distance_from_previous, is_stationary,
    is_significant) are computed by the recorder at insert time so
    detection never has to look outside its window.
    """

    __tablename__ = 'location_history'

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    # Entity identification (PERSON, VEHICLE, EQUIPMENT, ...)
    entity_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment='Kind of tracked entity'
    )

    entity_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment='Identifier within entity_type'
    )

    entity_name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )

    # Position (WGS84)
    latitude: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment='Latitude in decimal degrees'
    )

    longitude: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment='Longitude in decimal degrees'
    )

    altitude: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment='Altitude in meters'
    )

    heading: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment='Heading in degrees (0-360)'
    )

    speed: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.0,
        comment='Speed in m/s'
    )

    accuracy: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=10.0,
        comment='Horizontal accuracy in meters'
    )

    activity_type: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        default=ActivityType.UNKNOWN.value,
    )

    activity_description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    # Unix timestamp of the observation
    timestamp: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
        comment='Unix timestamp of observation'
    )

    duration_seconds: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment='How long the entity stayed at this fix'
    )

    # Enrichment
    distance_from_previous: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment='Meters from the previous fix of the same entity'
    )

    is_stationary: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    is_significant: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    location_context: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    environmental_conditions: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    extra: Mapped[Optional[dict]] = mapped_column('metadata', JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )

    __table_args__ = (
        # Detection window query: one entity, time range
        Index('ix_location_history_entity_time', 'entity_type', 'entity_id', 'timestamp'),
        Index('ix_location_history_activity', 'activity_type'),
        Index('ix_location_history_spatial', 'latitude', 'longitude'),
    )

    def __repr__(self) -> str:
        return f'<LocationHistory {self.entity_type}:{self.entity_id} @ {self.timestamp}>'

    @property
    def entity_key(self) -> tuple:
        return (self.entity_type, self.entity_id)

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict."""
        return {
            'id': self.id,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'entity_name': self.entity_name,
            'position': {
                'latitude': self.latitude,
                'longitude': self.longitude,
                'altitude': self.altitude,
                'accuracy': self.accuracy,
            },
            'heading': self.heading,
            'speed': self.speed,
            'activity_type': self.activity_type,
            'timestamp': self.timestamp,
            'duration_seconds': self.duration_seconds,
            'distance_from_previous': self.distance_from_previous,
            'is_stationary': self.is_stationary,
            'is_significant': self.is_significant,
        }
