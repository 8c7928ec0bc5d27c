import pytest

from relief_analytics.config import RecordingConfig, RetentionConfig
from relief_analytics.errors import InvalidFixError
from relief_analytics.models import LocationHistory, ActivityType
from relief_analytics.models.base import SessionLocal
from relief_analytics.ingestion import FixReport, LocationRecorder


def _stored_count():
    with SessionLocal() as session:
        return session.query(LocationHistory).count()


def _report(tb, x, y, t, **kw):
    return FixReport.from_dict(tb.fix(x, y, t, **kw))


def test_first_fix_has_zero_distance(track_builders):
    tb = track_builders
    fix = LocationRecorder().record(_report(tb, 0, 0, tb.T0, speed=2.0))

    assert fix.id is not None
    assert fix.distance_from_previous == 0.0
    assert fix.speed == 2.0
    assert fix.accuracy == 10.0
    assert fix.activity_type == ActivityType.UNKNOWN.value
    assert not fix.is_significant
    assert _stored_count() == 1


def test_missing_speed_and_heading_are_derived(track_builders):
    tb = track_builders
    recorder = LocationRecorder()
    recorder.record(_report(tb, 0, 0, tb.T0, speed=None))
    fix = recorder.record(_report(tb, 0, 200, tb.T0 + 20, speed=None))

    assert fix.distance_from_previous == pytest.approx(200.0, rel=1e-3)
    assert fix.speed == pytest.approx(10.0, rel=1e-3)
    assert min(fix.heading, 360 - fix.heading) < 0.5
    assert fix.is_significant


def test_reported_speed_and_heading_are_kept(track_builders):
    tb = track_builders
    recorder = LocationRecorder()
    recorder.record(_report(tb, 0, 0, tb.T0))
    fix = recorder.record(_report(tb, 0, 50, tb.T0 + 10, speed=1.5, heading=45.0))

    assert fix.speed == 1.5
    assert fix.heading == 45.0
    assert not fix.is_significant


def test_stationary_needs_slow_speed_and_long_duration(track_builders):
    tb = track_builders
    recorder = LocationRecorder()

    dwell = recorder.record(_report(tb, 0, 0, tb.T0, speed=0.1, duration_seconds=600))
    brief = recorder.record(_report(tb, 0, 0, tb.T0 + 600, speed=0.1, duration_seconds=100))
    moving = recorder.record(_report(tb, 0, 0, tb.T0 + 700, speed=2.0, duration_seconds=600))

    assert dwell.is_stationary
    assert not brief.is_stationary
    assert not moving.is_stationary


def test_invalid_report_is_rejected_and_not_stored(track_builders):
    tb = track_builders
    recorder = LocationRecorder()
    report = _report(tb, 0, 0, tb.T0)
    report.latitude = 95.0

    with pytest.raises(InvalidFixError):
        recorder.record(report)
    assert _stored_count() == 0
    assert recorder.stats['rejected_count'] == 1


def test_late_fix_is_enriched_against_earlier_fix(track_builders):
    tb = track_builders
    recorder = LocationRecorder()
    recorder.record(_report(tb, 0, 0, tb.T0))
    recorder.record(_report(tb, 0, 1000, tb.T0 + 200))

    late = recorder.record(_report(tb, 0, 100, tb.T0 + 100, speed=None))
    assert late.distance_from_previous == pytest.approx(100.0, rel=1e-3)
    assert late.speed == pytest.approx(1.0, rel=1e-3)

    # the cache still points at the newest fix
    assert recorder.cache.get('VOLUNTEER', 1).timestamp == tb.T0 + 200


def test_record_batch_sorts_and_skips_invalid(track_builders):
    tb = track_builders
    reports = tb.straight_line(n=5)
    reports.reverse()
    reports.append({'entity_type': 'VOLUNTEER', 'entity_id': 1, 'latitude': 200.0, 'longitude': 0.0})
    reports.append({'entity_type': 'VOLUNTEER', 'entity_id': 'x', 'latitude': 1.0, 'longitude': 0.0})

    recorder = LocationRecorder()
    assert recorder.record_batch(reports) == 5
    assert recorder.stats['rejected_count'] == 2

    with SessionLocal() as session:
        rows = session.query(LocationHistory).order_by(LocationHistory.timestamp).all()
    assert [r.distance_from_previous for r in rows][0] == 0.0
    for row in rows[1:]:
        assert row.distance_from_previous == pytest.approx(50.0, rel=1e-3)


def test_record_batch_skips_unparseable_fields(track_builders):
    tb = track_builders
    reports = tb.straight_line(n=3)
    reports[1]['duration_seconds'] = 'ten'
    reports[2]['timestamp'] = float('inf')

    recorder = LocationRecorder()
    assert recorder.record_batch(reports) == 1
    assert recorder.stats['rejected_count'] == 2
    assert _stored_count() == 1


def test_cleanup_uses_injected_retention(track_builders):
    tb = track_builders
    recorder = LocationRecorder(retention_config=RetentionConfig(days=5))
    now = tb.T0 + 10 * 86400
    recorder.record(_report(tb, 0, 0, tb.T0))
    recorder.record(_report(tb, 0, 0, now - 86400))

    assert recorder.cleanup(now=now) == 1
    assert _stored_count() == 1


def test_batch_notifies_once_per_entity(track_builders):
    tb = track_builders
    recorder = LocationRecorder(recording_config=RecordingConfig(analyze_on_record=True))
    calls = []
    recorder.add_analysis_callback(lambda entity_type, entity_id: calls.append((entity_type, entity_id)))

    reports = tb.straight_line(n=4, entity_id=1) + tb.straight_line(n=4, entity_id=2)
    recorder.record_batch(reports)

    assert sorted(calls) == [('VOLUNTEER', 1), ('VOLUNTEER', 2)]


def test_single_record_notifies_when_enabled(track_builders):
    tb = track_builders
    calls = []

    enabled = LocationRecorder(recording_config=RecordingConfig(analyze_on_record=True))
    enabled.add_analysis_callback(lambda *key: calls.append(key))
    enabled.record(_report(tb, 0, 0, tb.T0))

    disabled = LocationRecorder(recording_config=RecordingConfig(analyze_on_record=False))
    disabled.add_analysis_callback(lambda *key: calls.append(key))
    disabled.record(_report(tb, 0, 0, tb.T0 + 10))

    assert calls == [('VOLUNTEER', 1)]


def test_failing_callback_does_not_lose_the_fix(track_builders):
    tb = track_builders
    recorder = LocationRecorder(recording_config=RecordingConfig(analyze_on_record=True))

    def broken(entity_type, entity_id):
        raise RuntimeError('analysis failed')

    recorder.add_analysis_callback(broken)
    fix = recorder.record(_report(tb, 0, 0, tb.T0))
    assert fix.id is not None
    assert _stored_count() == 1


def test_cleanup_removes_fixes_past_retention(track_builders):
    tb = track_builders
    recorder = LocationRecorder()
    now = tb.T0 + 100 * 86400
    recorder.record(_report(tb, 0, 0, tb.T0))
    recorder.record(_report(tb, 0, 0, now - 86400))

    assert recorder.cleanup(now=now, retention_days=90) == 1
    assert _stored_count() == 1
    assert recorder.cleanup(now=now, retention_days=90) == 0
