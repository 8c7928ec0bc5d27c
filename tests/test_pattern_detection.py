import random

import pytest

from relief_analytics.config import DetectionConfig
from relief_analytics.models import PatternType
from relief_analytics.analytics.pattern_detection import PatternDetector, Track


def _of_type(patterns, pattern_type):
    return [p for p in patterns if p.pattern_type == pattern_type]


def _round_trips(tb, trips=4, n=12, step=50.0, dt=10):
    """Alternating A->B and B->A trips with a short stop at each end."""
    reports = []
    t = tb.T0
    for trip in range(trips):
        ys = [step * i for i in range(n)]
        if trip % 2:
            ys.reverse()
        for y in ys:
            reports.append(tb.fix(0.0, y, t, speed=step / dt))
            t += dt
        for _ in range(3):
            reports.append(tb.fix(0.0, ys[-1], t, speed=0.0))
            t += 60
    return reports


def test_fewer_than_two_fixes_yield_nothing(track_builders):
    detector = PatternDetector()
    assert detector.detect([]) == []
    assert detector.detect(track_builders.as_fixes(track_builders.straight_line(n=1))) == []


def test_track_sorts_and_masks_stationary(track_builders):
    tb = track_builders
    reports = tb.straight_line(n=4)
    reports[2]['speed'] = 0.1
    reports[3]['is_stationary'] = True
    shuffled = list(reversed(reports))

    track = Track.from_fixes(tb.as_fixes(shuffled), stationary_speed=0.5)
    assert list(track.timestamps) == [tb.T0, tb.T0 + 10, tb.T0 + 20, tb.T0 + 30]
    assert list(track.stationary) == [False, False, True, True]
    assert track.steps[0] == 0.0
    assert track.steps[1] == pytest.approx(50.0, rel=1e-3)


def test_straight_line_is_linear(track_builders):
    tb = track_builders
    patterns = PatternDetector().detect(tb.as_fixes(tb.straight_line(n=12)))

    linear = _of_type(patterns, PatternType.LINEAR_MOVEMENT)
    assert len(linear) == 1
    pattern = linear[0]
    assert pattern.pattern_name == 'Linear Movement Pattern'
    assert pattern.fix_count == 12
    assert pattern.duration_seconds == 110
    assert pattern.distance_meters == pytest.approx(550.0, rel=1e-3)
    assert pattern.average_speed == pytest.approx(5.0)
    assert pattern.confidence_score > 0.99
    heading = pattern.characteristics['heading_degrees']
    assert min(heading, 360 - heading) < 1.0
    assert pattern.geometry['type'] == 'LineString'
    assert len(pattern.geometry['coordinates']) == 12


def test_unsorted_input_gives_same_result(track_builders):
    tb = track_builders
    reports = tb.straight_line(n=12)
    shuffled = reports[:]
    random.Random(3).shuffle(shuffled)

    detector = PatternDetector()
    ordered = detector.detect(tb.as_fixes(reports))
    mixed = detector.detect(tb.as_fixes(shuffled))
    assert [(p.pattern_type, p.start_time, p.end_time) for p in ordered] == \
        [(p.pattern_type, p.start_time, p.end_time) for p in mixed]


def test_turn_splits_linear_segments(track_builders):
    tb = track_builders
    north = tb.straight_line(n=6)
    east = tb.straight_line(n=6, t0=tb.T0 + 60, direction=(1.0, 0.0), start=(50.0, 250.0))
    patterns = PatternDetector().detect(tb.as_fixes(north + east))

    linear = _of_type(patterns, PatternType.LINEAR_MOVEMENT)
    assert len(linear) == 2
    headings = sorted(p.characteristics['heading_degrees'] for p in linear)
    assert headings[1] == pytest.approx(90.0, abs=1.0)


def test_min_linear_points_is_configurable(track_builders):
    tb = track_builders
    detector = PatternDetector(DetectionConfig(min_linear_points=20))
    patterns = detector.detect(tb.as_fixes(tb.straight_line(n=12)))
    assert _of_type(patterns, PatternType.LINEAR_MOVEMENT) == []


def test_circle_is_circular_not_linear(track_builders):
    tb = track_builders
    patterns = PatternDetector().detect(tb.as_fixes(tb.circle(radius=200.0)))

    circular = _of_type(patterns, PatternType.CIRCULAR_MOVEMENT)
    assert len(circular) == 1
    pattern = circular[0]
    assert pattern.characteristics['radius_meters'] == pytest.approx(200.0, rel=0.15)
    assert pattern.characteristics['direction'] == 'clockwise'
    assert abs(pattern.characteristics['total_turn_degrees']) >= 300
    assert pattern.confidence_score > 0.8
    assert _of_type(patterns, PatternType.LINEAR_MOVEMENT) == []
    assert _of_type(patterns, PatternType.SEARCH_GRID) == []


def test_dwell_is_stationary_cluster(track_builders):
    tb = track_builders
    reports = tb.dwell(n=6, dt=60, center=(100.0, 100.0))
    patterns = PatternDetector().detect(tb.as_fixes(reports))

    clusters = _of_type(patterns, PatternType.STATIONARY_CLUSTER)
    assert len(clusters) == 1
    cluster = clusters[0]
    assert cluster.fix_count == 6
    assert cluster.duration_seconds == 300
    assert cluster.geometry['type'] == 'Point'
    lon, lat = cluster.geometry['coordinates']
    center_lat, center_lon = tb.latlon(100.0, 100.0)
    assert lat == pytest.approx(center_lat, abs=1e-4)
    assert lon == pytest.approx(center_lon, abs=1e-4)
    assert _of_type(patterns, PatternType.LINEAR_MOVEMENT) == []


def test_lawnmower_is_search_grid(track_builders):
    tb = track_builders
    patterns = PatternDetector().detect(tb.as_fixes(tb.lawnmower(legs=3, leg_points=6, spacing=100.0)))

    grids = _of_type(patterns, PatternType.SEARCH_GRID)
    assert len(grids) == 1
    grid = grids[0]
    assert grid.characteristics['leg_count'] == 3
    assert grid.characteristics['leg_spacing_meters'] == pytest.approx(100.0, rel=0.05)
    assert grid.fix_count == 18
    assert grid.distance_meters == pytest.approx(950.0, rel=1e-2)
    assert grid.confidence_score > 0.9

    # each leg is also a linear segment
    assert len(_of_type(patterns, PatternType.LINEAR_MOVEMENT)) == 3


def test_two_legs_are_not_a_search_grid(track_builders):
    tb = track_builders
    patterns = PatternDetector().detect(tb.as_fixes(tb.lawnmower(legs=2)))
    assert _of_type(patterns, PatternType.SEARCH_GRID) == []


def test_teleport_is_anomaly(track_builders):
    tb = track_builders
    patterns = PatternDetector().detect(tb.as_fixes(tb.teleport(n=10)))

    anomalies = _of_type(patterns, PatternType.ANOMALY_DETECTED)
    assert len(anomalies) == 1
    anomaly = anomalies[0]
    assert anomaly.characteristics['anomaly_count'] == 1
    assert anomaly.start_time == tb.T0 + 100
    assert anomaly.distance_meters > 9000
    assert anomaly.geometry['type'] == 'MultiPoint'


def test_same_second_jitter_is_not_anomaly(track_builders):
    tb = track_builders
    reports = tb.straight_line(n=12)
    last = reports[-1]['timestamp']
    reports.append(tb.fix(3.0, 550.0, last))

    track = Track.from_fixes(tb.as_fixes(reports))
    assert track.implied_speeds()[-1] == 0.0

    patterns = PatternDetector().detect(tb.as_fixes(reports))
    assert _of_type(patterns, PatternType.ANOMALY_DETECTED) == []


def test_reported_speed_anomaly(track_builders):
    tb = track_builders
    reports = tb.straight_line(n=6)
    reports[3]['speed'] = 80.0
    patterns = PatternDetector().detect(tb.as_fixes(reports))

    anomalies = _of_type(patterns, PatternType.ANOMALY_DETECTED)
    assert len(anomalies) == 1
    assert anomalies[0].max_speed == 80.0
    assert 'Reported speed' in anomalies[0].characteristics['anomaly_reasons'][0]


def test_repeated_trips_are_recurring_routes(track_builders):
    tb = track_builders
    patterns = PatternDetector().detect(tb.as_fixes(_round_trips(tb, trips=4)))

    routes = _of_type(patterns, PatternType.COMMUTE_ROUTE)
    assert [r.pattern_name for r in routes] == ['Route Pattern: route_1', 'Route Pattern: route_2']
    for route in routes:
        assert route.frequency == 2
        assert route.is_recurring
        assert route.fix_count == 24
        assert route.geometry['type'] == 'MultiLineString'
        assert len(route.geometry['coordinates']) == 2
        assert route.confidence_score == pytest.approx(0.7)
    # stops at both ends
    assert len(_of_type(patterns, PatternType.STATIONARY_CLUSTER)) == 4


def test_single_trip_route_is_not_recurring(track_builders):
    tb = track_builders
    patterns = PatternDetector().detect(tb.as_fixes(tb.straight_line(n=12)))

    routes = _of_type(patterns, PatternType.COMMUTE_ROUTE)
    assert len(routes) == 1
    assert routes[0].frequency == 1
    assert not routes[0].is_recurring


def test_long_gap_splits_trips(track_builders):
    tb = track_builders
    first = tb.straight_line(n=6)
    second = tb.straight_line(n=6, t0=tb.T0 + 5000, start=(0.0, 300.0))
    detector = PatternDetector()
    track = Track.from_fixes(tb.as_fixes(first + second))

    assert detector.trips(track) == [(0, 5), (6, 11)]


def test_to_model_carries_summary(track_builders):
    tb = track_builders
    pattern = PatternDetector().detect(tb.as_fixes(tb.straight_line(n=12)))[0]
    row = pattern.to_model()

    assert row.pattern_type == pattern.pattern_type.value
    assert row.entity_type == 'VOLUNTEER'
    assert row.entity_id == 1
    assert row.pattern_description == 'Detected linear_movement pattern'
    assert row.pattern_characteristics['fix_count'] == 12
