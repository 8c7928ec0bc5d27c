import threading

import pytest

from relief_analytics.cache import LatestFixCache
from relief_analytics.models import LocationHistory
from relief_analytics.ingestion import FixReport, LocationRecorder


def _row(entity_id=1, timestamp=100, lat=37.0, lon=-122.0, entity_type='VOLUNTEER'):
    return LocationHistory(
        entity_type=entity_type,
        entity_id=entity_id,
        latitude=lat,
        longitude=lon,
        timestamp=timestamp,
        speed=1.0,
    )


def test_get_returns_latest_snapshot():
    cache = LatestFixCache(max_entries=10)
    assert cache.get('VOLUNTEER', 1) is None

    cache.update(_row(timestamp=100))
    cache.update(_row(timestamp=200, lat=37.1))

    snapshot = cache.get('VOLUNTEER', 1)
    assert snapshot.timestamp == 200
    assert snapshot.latitude == 37.1
    assert cache.stats['hits'] == 1
    assert cache.stats['misses'] == 1
    assert cache.stats['hit_rate'] == 0.5


def test_older_fix_does_not_replace_newer():
    cache = LatestFixCache(max_entries=10)
    cache.update(_row(timestamp=200))
    cache.update(_row(timestamp=100, lat=10.0))

    assert cache.get('VOLUNTEER', 1).timestamp == 200
    # still counted towards the next analysis
    assert cache.fixes_since_analysis('VOLUNTEER', 1) == 2


def test_entities_are_keyed_by_type_and_id():
    cache = LatestFixCache(max_entries=10)
    cache.update(_row(entity_type='VOLUNTEER', entity_id=1))
    cache.update(_row(entity_type='VEHICLE', entity_id=1, lat=1.0))

    assert len(cache) == 2
    assert cache.get('VEHICLE', 1).latitude == 1.0
    assert cache.get('VOLUNTEER', 1).latitude == 37.0


def test_eviction_removes_oldest_entries():
    cache = LatestFixCache(max_entries=10)
    for entity_id in range(11):
        cache.update(_row(entity_id=entity_id))

    assert len(cache) == 10
    assert cache.get('VOLUNTEER', 0) is None
    assert cache.get('VOLUNTEER', 10) is not None


def test_mark_analyzed_resets_pending_count():
    cache = LatestFixCache()
    cache.update(_row(timestamp=1))
    cache.update(_row(timestamp=2))
    assert cache.fixes_since_analysis('VOLUNTEER', 1) == 2

    cache.mark_analyzed('VOLUNTEER', 1)
    assert cache.fixes_since_analysis('VOLUNTEER', 1) == 0


def test_invalidate_and_clear():
    cache = LatestFixCache()
    cache.update(_row(entity_id=1))
    cache.update(_row(entity_id=2))

    cache.invalidate('VOLUNTEER', 1)
    assert cache.get('VOLUNTEER', 1) is None
    assert len(cache) == 1

    cache.clear()
    assert len(cache) == 0
    assert cache.fixes_since_analysis('VOLUNTEER', 2) == 0


def test_get_all_sorted_newest_first():
    cache = LatestFixCache()
    cache.update(_row(entity_id=1, timestamp=10))
    cache.update(_row(entity_id=2, timestamp=30))
    cache.update(_row(entity_id=3, timestamp=20))

    assert [s.entity_id for s in cache.get_all()] == [2, 3, 1]


def test_concurrent_updates_are_counted():
    cache = LatestFixCache(max_entries=1000)

    def worker(entity_id):
        for t in range(100):
            cache.update(_row(entity_id=entity_id, timestamp=t))

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(cache) == 8
    for entity_id in range(8):
        assert cache.get('VOLUNTEER', entity_id).timestamp == 99
        assert cache.fixes_since_analysis('VOLUNTEER', entity_id) == 100


def test_refresh_from_database_loads_latest_fix_per_entity():
    recorder = LocationRecorder()
    for entity_id in (1, 2):
        for t in (100, 200, 300):
            recorder.record(FixReport(
                entity_type='VOLUNTEER',
                entity_id=entity_id,
                latitude=37.0 + t / 10000,
                longitude=-122.0,
                timestamp=t,
            ))

    cache = LatestFixCache()
    assert cache.refresh_from_database() == 2
    assert cache.get('VOLUNTEER', 1).timestamp == 300
    assert cache.get('VOLUNTEER', 2).latitude == pytest.approx(37.03)
