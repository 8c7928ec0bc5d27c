"""
In-memory cache of each entity's latest fix.

Recording a fix needs the entity's previous position to compute the
distance moved and, when the device omits them, implied speed and
heading. The cache keeps that lookup off the database for entities
reporting at a steady rate, and counts fixes recorded since the
entity was last analyzed.

Memory budget: ~5000 entities x ~200 bytes per snapshot = ~1MB max
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Optional, Dict, List, Tuple

from sqlalchemy import select, func

from relief_analytics.config import config
from relief_analytics.models import LocationHistory
from relief_analytics.models.base import SessionLocal

logger = logging.getLogger(__name__)

EntityKey = Tuple[str, int]


@dataclass
class FixSnapshot:
    """The fields of a fix needed to enrich the next one."""
    entity_type: str
    entity_id: int
    latitude: float
    longitude: float
    timestamp: int
    speed: Optional[float] = None
    heading: Optional[float] = None

    # Cache metadata
    cached_at: float = field(default_factory=time.time)

    @property
    def key(self) -> EntityKey:
        return (self.entity_type, self.entity_id)

    @classmethod
    def from_fix(cls, fix: LocationHistory) -> 'FixSnapshot':
        return cls(
            entity_type=fix.entity_type,
            entity_id=fix.entity_id,
            latitude=fix.latitude,
            longitude=fix.longitude,
            timestamp=fix.timestamp,
            speed=fix.speed,
            heading=fix.heading,
        )


class LatestFixCache:
    """
    Thread-safe map from entity to its most recent fix.

    A snapshot only replaces the cached one when it is not older, so
    out-of-order reports never move an entity backwards in time.
    """

    def __init__(self, max_entries: int = None):
        self.max_entries = max_entries or config.cache.max_entries

        self._cache: Dict[EntityKey, FixSnapshot] = {}
        self._pending: Dict[EntityKey, int] = {}
        self._lock = threading.RLock()
        self._last_refresh: float = 0

        # Statistics
        self._hits = 0
        self._misses = 0

    def get(self, entity_type: str, entity_id: int) -> Optional[FixSnapshot]:
        """Latest snapshot for the entity, or None if not cached."""
        with self._lock:
            entry = self._cache.get((entity_type, entity_id))
            if entry is not None:
                self._hits += 1
            else:
                self._misses += 1
            return entry

    def get_all(self) -> List[FixSnapshot]:
        """All cached snapshots, most recent fix first."""
        with self._lock:
            result = list(self._cache.values())
        result.sort(key=lambda s: s.timestamp, reverse=True)
        return result

    def update(self, fix: LocationHistory) -> None:
        """Cache a freshly recorded fix and count it towards the next analysis."""
        snapshot = FixSnapshot.from_fix(fix)

        with self._lock:
            self._pending[snapshot.key] = self._pending.get(snapshot.key, 0) + 1

            current = self._cache.get(snapshot.key)
            if current is not None and current.timestamp > snapshot.timestamp:
                return
            self._cache[snapshot.key] = snapshot

            # Evict if over capacity
            if len(self._cache) > self.max_entries:
                self._evict_oldest()

    def _evict_oldest(self) -> None:
        """Remove least recently cached entries when over capacity."""
        entries = sorted(
            self._cache.items(),
            key=lambda x: x[1].cached_at
        )
        # Remove oldest 10%
        to_remove = max(1, len(entries) // 10)
        for key, _ in entries[:to_remove]:
            del self._cache[key]

    def fixes_since_analysis(self, entity_type: str, entity_id: int) -> int:
        with self._lock:
            return self._pending.get((entity_type, entity_id), 0)

    def mark_analyzed(self, entity_type: str, entity_id: int) -> None:
        with self._lock:
            self._pending.pop((entity_type, entity_id), None)

    def refresh_from_database(self, session_factory=SessionLocal) -> int:
        """
        Rebuild the cache from the latest stored fix of every entity.

        Returns count of entities loaded.
        """
        latest = (
            select(
                LocationHistory.entity_type,
                LocationHistory.entity_id,
                func.max(LocationHistory.timestamp).label('timestamp'),
            )
            .group_by(LocationHistory.entity_type, LocationHistory.entity_id)
            .subquery()
        )
        query = select(LocationHistory).join(
            latest,
            (LocationHistory.entity_type == latest.c.entity_type) &
            (LocationHistory.entity_id == latest.c.entity_id) &
            (LocationHistory.timestamp == latest.c.timestamp),
        )

        with session_factory() as session:
            fixes = session.scalars(query).all()

        new_cache = {}
        for fix in fixes:
            snapshot = FixSnapshot.from_fix(fix)
            new_cache[snapshot.key] = snapshot

        with self._lock:
            self._cache = new_cache
            self._last_refresh = time.time()

        logger.debug(f'Cache refreshed with {len(new_cache)} entities')
        return len(new_cache)

    def invalidate(self, entity_type: str, entity_id: int) -> None:
        """Remove specific entry from cache."""
        with self._lock:
            self._cache.pop((entity_type, entity_id), None)

    def clear(self) -> None:
        """Clear entire cache."""
        with self._lock:
            self._cache.clear()
            self._pending.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    @property
    def stats(self) -> dict:
        """Get cache statistics."""
        with self._lock:
            return {
                'entries': len(self._cache),
                'hits': self._hits,
                'misses': self._misses,
                'hit_rate': self._hits / (self._hits + self._misses) if (self._hits + self._misses) > 0 else 0,
                'pending_entities': len(self._pending),
                'last_refresh': self._last_refresh,
            }
