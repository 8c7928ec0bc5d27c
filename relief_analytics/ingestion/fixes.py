"""
Positional fix reports as submitted by devices and operators.

A FixReport is the raw, unenriched form of a fix. It normalizes the
loose JSON shapes clients send (snake_case or camelCase keys, Unix or
ISO-8601 timestamps, activity names in any case) into typed fields.
"""

import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from relief_analytics.errors import InvalidFixError
from relief_analytics.models import ActivityType


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    """First non-None value among the given keys."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def parse_timestamp(value: Any) -> int:
    """
    Convert a Unix timestamp or ISO-8601 string to Unix seconds.

    Naive ISO datetimes are taken as UTC.
    """
    if isinstance(value, bool):
        raise InvalidFixError(f'Invalid timestamp: {value!r}')
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            raise InvalidFixError(f'Invalid timestamp: {value!r}')
        return int(value)
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            number = float(text)
        except ValueError:
            pass
        else:
            if not math.isfinite(number):
                raise InvalidFixError(f'Invalid timestamp: {value!r}')
            return int(number)
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            raise InvalidFixError(f'Invalid timestamp: {value!r}')
    else:
        raise InvalidFixError(f'Invalid timestamp: {value!r}')

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def parse_activity(value: Any) -> ActivityType:
    """Activity by enum name, case-insensitive. None means UNKNOWN."""
    if value is None:
        return ActivityType.UNKNOWN
    if isinstance(value, ActivityType):
        return value
    name = str(value).strip().upper().replace('-', '_').replace(' ', '_')
    try:
        return ActivityType(name)
    except ValueError:
        raise InvalidFixError(f'Unknown activity type: {value!r}')


def _optional_float(value: Any, name: str) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidFixError(f'{name} must be a number, got {value!r}')


def _optional_int(value: Any, name: str) -> Optional[int]:
    number = _optional_float(value, name)
    if number is None:
        return None
    if not math.isfinite(number):
        raise InvalidFixError(f'{name} must be finite, got {value!r}')
    return int(number)


@dataclass
class FixReport:
    """
    One positional fix before enrichment.

    speed and heading may be omitted; the recorder derives them from
    the previous fix when it can.
    """
    entity_type: str
    entity_id: int
    latitude: float
    longitude: float
    timestamp: int
    entity_name: Optional[str] = None
    altitude: Optional[float] = None
    heading: Optional[float] = None
    speed: Optional[float] = None
    accuracy: Optional[float] = None
    activity_type: ActivityType = ActivityType.UNKNOWN
    activity_description: Optional[str] = None
    duration_seconds: Optional[int] = None
    location_context: Optional[dict] = None
    environmental_conditions: Optional[dict] = None
    metadata: Optional[dict] = None

    @property
    def entity_key(self) -> tuple:
        return (self.entity_type, self.entity_id)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'FixReport':
        """
        Parse a JSON-style mapping.

        Raises InvalidFixError for values that cannot be converted;
        range checks are left to validate().
        """
        entity_id = _pick(data, 'entity_id', 'entityId')
        if entity_id is not None:
            try:
                entity_id = int(entity_id)
            except (TypeError, ValueError, OverflowError):
                raise InvalidFixError(f'entity_id must be an integer, got {entity_id!r}')

        timestamp = _pick(data, 'timestamp')
        timestamp = parse_timestamp(timestamp) if timestamp is not None else int(time.time())

        return cls(
            entity_type=_pick(data, 'entity_type', 'entityType'),
            entity_id=entity_id,
            latitude=_optional_float(_pick(data, 'latitude', 'lat'), 'latitude'),
            longitude=_optional_float(_pick(data, 'longitude', 'lon', 'lng'), 'longitude'),
            timestamp=timestamp,
            entity_name=_pick(data, 'entity_name', 'entityName'),
            altitude=_optional_float(_pick(data, 'altitude'), 'altitude'),
            heading=_optional_float(_pick(data, 'heading'), 'heading'),
            speed=_optional_float(_pick(data, 'speed'), 'speed'),
            accuracy=_optional_float(_pick(data, 'accuracy'), 'accuracy'),
            activity_type=parse_activity(_pick(data, 'activity_type', 'activityType')),
            activity_description=_pick(data, 'activity_description', 'activityDescription'),
            duration_seconds=_optional_int(
                _pick(data, 'duration_seconds', 'durationSeconds'), 'duration_seconds',
            ),
            location_context=_pick(data, 'location_context', 'locationContext'),
            environmental_conditions=_pick(data, 'environmental_conditions', 'environmentalConditions'),
            metadata=_pick(data, 'metadata'),
        )

    def validate(self) -> 'FixReport':
        """Raise InvalidFixError if the report cannot be recorded."""
        if not self.entity_type or not str(self.entity_type).strip():
            raise InvalidFixError('entity_type is required')
        if self.entity_id is None:
            raise InvalidFixError('entity_id is required')

        if self.latitude is None or self.longitude is None:
            raise InvalidFixError('latitude and longitude are required')
        if math.isnan(self.latitude) or not -90.0 <= self.latitude <= 90.0:
            raise InvalidFixError(f'latitude out of range: {self.latitude}')
        if math.isnan(self.longitude) or not -180.0 <= self.longitude <= 180.0:
            raise InvalidFixError(f'longitude out of range: {self.longitude}')

        if self.speed is not None and not self.speed >= 0:
            raise InvalidFixError(f'speed must be non-negative: {self.speed}')
        if self.accuracy is not None and not self.accuracy >= 0:
            raise InvalidFixError(f'accuracy must be non-negative: {self.accuracy}')
        if self.heading is not None and not 0.0 <= self.heading <= 360.0:
            raise InvalidFixError(f'heading out of range: {self.heading}')
        if self.duration_seconds is not None and self.duration_seconds < 0:
            raise InvalidFixError(f'duration_seconds must be non-negative: {self.duration_seconds}')

        return self
