import math

import numpy as np
import pytest

from relief_analytics.analytics.geometry import (
    haversine_meters,
    haversine_steps,
    initial_bearing,
    bearing_steps,
    heading_difference,
    circular_mean,
    project_local,
    unproject_local,
    path_length,
    convex_hull,
    polygon_area,
    simplify_path,
    BoundingBox,
    line_string,
    geojson_latlons,
)


def test_haversine_one_degree_of_latitude():
    assert haversine_meters(0.0, 0.0, 1.0, 0.0) == pytest.approx(111195, rel=1e-3)


def test_haversine_same_point_is_zero():
    assert haversine_meters(37.7, -122.4, 37.7, -122.4) == 0.0


def test_haversine_steps_matches_scalar():
    lats = np.array([0.0, 0.0, 1.0])
    lons = np.array([0.0, 1.0, 1.0])
    steps = haversine_steps(lats, lons)
    assert steps[0] == 0.0
    assert steps[1] == pytest.approx(haversine_meters(0, 0, 0, 1))
    assert steps[2] == pytest.approx(haversine_meters(0, 1, 1, 1))


def test_initial_bearing_cardinal_directions():
    assert initial_bearing(0, 0, 1, 0) == pytest.approx(0.0, abs=1e-9)
    assert initial_bearing(0, 0, 0, 1) == pytest.approx(90.0)
    assert initial_bearing(1, 0, 0, 0) == pytest.approx(180.0)
    assert initial_bearing(0, 1, 0, 0) == pytest.approx(270.0)


def test_bearing_steps_first_element_is_nan():
    bearings = bearing_steps(np.array([0.0, 0.0]), np.array([0.0, 1.0]))
    assert math.isnan(bearings[0])
    assert bearings[1] == pytest.approx(90.0)


def test_heading_difference_wraps():
    assert heading_difference(350, 10) == pytest.approx(20)
    assert heading_difference(10, 350) == pytest.approx(-20)
    assert heading_difference(0, 180) == pytest.approx(180)
    assert heading_difference(90, 90) == 0


def test_circular_mean_across_north():
    mean = circular_mean([350, 10])
    assert min(mean, 360 - mean) == pytest.approx(0, abs=1e-9)
    assert math.isnan(circular_mean([]))


def test_projection_is_invertible_near_origin():
    origin = (37.7749, -122.4194)
    lat, lon = unproject_local([300.0], [-400.0], origin)[0]
    x, y = project_local([lat], [lon], origin)
    assert x[0] == pytest.approx(300.0, abs=1e-6)
    assert y[0] == pytest.approx(-400.0, abs=1e-6)
    assert haversine_meters(origin[0], origin[1], lat, lon) == pytest.approx(500.0, rel=1e-3)


def test_path_length_sums_steps():
    assert path_length([0.0, 0.0, 0.0], [0.0, 0.5, 1.0]) == pytest.approx(haversine_meters(0, 0, 0, 1), rel=1e-9)
    assert path_length([0.0], [0.0]) == 0.0


def test_convex_hull_drops_interior_points():
    points = [(0, 0), (10, 0), (10, 10), (0, 10), (5, 5), (2, 8)]
    hull = convex_hull(points)
    assert sorted(hull) == [(0.0, 0.0), (0.0, 10.0), (10.0, 0.0), (10.0, 10.0)]
    assert polygon_area(hull) == pytest.approx(100.0)


def test_polygon_area_degenerate():
    assert polygon_area([(0, 0), (1, 1)]) == 0.0
    assert polygon_area(convex_hull([(0, 0), (1, 1), (2, 2)])) == 0.0


def test_simplify_straight_line_keeps_endpoints():
    points = [(0, i * 10) for i in range(20)]
    assert simplify_path(points, 1.0) == [(0.0, 0.0), (0.0, 190.0)]


def test_simplify_keeps_corners():
    points = [(0, 0), (0, 50), (0, 100), (50, 100), (100, 100)]
    assert simplify_path(points, 5.0) == [(0.0, 0.0), (0.0, 100.0), (100.0, 100.0)]


def test_bounding_box_from_center_radius():
    bbox = BoundingBox.from_center_radius(37.0, -122.0, 1000)
    assert bbox.contains(37.0, -122.0)
    assert bbox.contains(37.008, -122.0)
    assert not bbox.contains(37.02, -122.0)
    assert bbox.lon_max - bbox.lon_min > bbox.lat_max - bbox.lat_min


def test_bounding_box_splits_at_antimeridian():
    bbox = BoundingBox.from_center_radius(0.0, 179.9999, 200.0)
    east, west = bbox.split_antimeridian()
    assert east.lon_max == 180.0
    assert west.lon_min == -180.0
    assert west.lon_max < -179.99
    assert bbox.contains(0.0, -179.9995)

    inland = BoundingBox.from_center_radius(37.0, -122.0, 1000)
    assert inland.split_antimeridian() == [inland]


def test_geojson_round_trip_order():
    geometry = line_string([(37.0, -122.0), (37.1, -122.1)])
    assert geometry['coordinates'][0] == [-122.0, 37.0]
    assert geojson_latlons(geometry) == [(37.0, -122.0), (37.1, -122.1)]


def test_geojson_latlons_flattens_multilines():
    geometry = {
        'type': 'MultiLineString',
        'coordinates': [[[1, 2], [3, 4]], [[5, 6]]],
    }
    assert geojson_latlons(geometry) == [(2, 1), (4, 3), (6, 5)]
    assert geojson_latlons({'type': 'Point', 'coordinates': [1, 2]}) == [(2, 1)]
    assert geojson_latlons(None) == []
