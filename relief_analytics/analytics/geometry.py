"""
Geodesy helpers for positional fixes.

Distances use the haversine formula on a spherical Earth, which is
accurate to well under 1% at the scales a relief operation covers.
Shape analysis (hulls, simplification, radii) works on a local
equirectangular projection in meters around the track's mean position.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

EARTH_RADIUS_METERS = 6371000.0

# (x, y) in meters on the local projection
XY = Tuple[float, float]


def haversine_meters(
    lat1: float, lon1: float,
    lat2: float, lon2: float
) -> float:
    """
    Calculate great-circle distance between two points in meters.
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_lat / 2) ** 2 +
        math.cos(lat1_rad) * math.cos(lat2_rad) *
        math.sin(delta_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_METERS * c


def haversine_steps(lats: np.ndarray, lons: np.ndarray) -> np.ndarray:
    """
    Vectorized distance between consecutive points.

    Returns an array the same length as the input; element 0 is 0.
    """
    steps = np.zeros(len(lats), dtype=np.float64)
    if len(lats) < 2:
        return steps

    lat_rad = np.radians(lats)
    dlat = np.diff(lat_rad)
    dlon = np.radians(np.diff(lons))

    a = (
        np.sin(dlat / 2) ** 2 +
        np.cos(lat_rad[:-1]) * np.cos(lat_rad[1:]) * np.sin(dlon / 2) ** 2
    )
    steps[1:] = 2 * EARTH_RADIUS_METERS * np.arctan2(np.sqrt(a), np.sqrt(1 - a))
    return steps


def initial_bearing(
    lat1: float, lon1: float,
    lat2: float, lon2: float
) -> float:
    """Initial great-circle bearing from point 1 to point 2, degrees in [0, 360)."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lon = math.radians(lon2 - lon1)

    x = math.sin(delta_lon) * math.cos(lat2_rad)
    y = (
        math.cos(lat1_rad) * math.sin(lat2_rad) -
        math.sin(lat1_rad) * math.cos(lat2_rad) * math.cos(delta_lon)
    )
    return math.degrees(math.atan2(x, y)) % 360


def bearing_steps(lats: np.ndarray, lons: np.ndarray) -> np.ndarray:
    """
    Vectorized bearing of each step (from point i-1 to point i).

    Element 0 is NaN since the first point has no incoming step.
    """
    bearings = np.full(len(lats), np.nan, dtype=np.float64)
    if len(lats) < 2:
        return bearings

    lat_rad = np.radians(lats)
    dlon = np.radians(np.diff(lons))
    x = np.sin(dlon) * np.cos(lat_rad[1:])
    y = (
        np.cos(lat_rad[:-1]) * np.sin(lat_rad[1:]) -
        np.sin(lat_rad[:-1]) * np.cos(lat_rad[1:]) * np.cos(dlon)
    )
    bearings[1:] = np.degrees(np.arctan2(x, y)) % 360
    return bearings


def heading_difference(a: float, b: float) -> float:
    """
    Signed shortest rotation from heading a to heading b.

    Result is in (-180, 180]; positive means clockwise.
    """
    diff = (b - a) % 360
    if diff > 180:
        diff -= 360
    return diff


def circular_mean(degrees: Sequence[float]) -> float:
    """Mean of angles in degrees, handling the 0/360 wrap."""
    radians = np.radians(np.asarray(degrees, dtype=np.float64))
    if len(radians) == 0:
        return float('nan')
    mean = math.degrees(math.atan2(np.sin(radians).mean(), np.cos(radians).mean()))
    return mean % 360


def project_local(
    lats: np.ndarray,
    lons: np.ndarray,
    origin: Optional[Tuple[float, float]] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Equirectangular projection to meters around an origin.

    The origin defaults to the mean position. Good enough for the
    tens-of-kilometers extents a single track covers.
    """
    lats = np.asarray(lats, dtype=np.float64)
    lons = np.asarray(lons, dtype=np.float64)
    if origin is None:
        origin = (float(lats.mean()), float(lons.mean()))
    lat0, lon0 = origin

    x = EARTH_RADIUS_METERS * np.radians(lons - lon0) * math.cos(math.radians(lat0))
    y = EARTH_RADIUS_METERS * np.radians(lats - lat0)
    return x, y


def unproject_local(
    x: Sequence[float],
    y: Sequence[float],
    origin: Tuple[float, float],
) -> List[Tuple[float, float]]:
    """Inverse of project_local. Returns (lat, lon) pairs."""
    lat0, lon0 = origin
    cos_lat0 = math.cos(math.radians(lat0))
    points = []
    for px, py in zip(x, y):
        lat = lat0 + math.degrees(py / EARTH_RADIUS_METERS)
        lon = lon0 + math.degrees(px / (EARTH_RADIUS_METERS * cos_lat0))
        points.append((lat, lon))
    return points


def path_length(lats: Sequence[float], lons: Sequence[float]) -> float:
    """Total length in meters of the polyline through the points."""
    return float(haversine_steps(np.asarray(lats, dtype=np.float64),
                                 np.asarray(lons, dtype=np.float64)).sum())


def _cross(o: XY, a: XY, b: XY) -> float:
    return (a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0])


def convex_hull(points: Sequence[XY]) -> List[XY]:
    """
    Convex hull by Andrew's monotone chain.

    Returns hull vertices counter-clockwise without repeating the first.
    Fewer than three distinct points are returned as-is.
    """
    pts = sorted(set((float(x), float(y)) for x, y in points))
    if len(pts) < 3:
        return pts

    lower: List[XY] = []
    for p in pts:
        while len(lower) >= 2 and _cross(lower[-2], lower[-1], p) <= 0:
            lower.pop()
        lower.append(p)

    upper: List[XY] = []
    for p in reversed(pts):
        while len(upper) >= 2 and _cross(upper[-2], upper[-1], p) <= 0:
            upper.pop()
        upper.append(p)

    return lower[:-1] + upper[:-1]


def polygon_area(vertices: Sequence[XY]) -> float:
    """Area of a simple polygon by the shoelace formula."""
    if len(vertices) < 3:
        return 0.0
    xs = np.array([v[0] for v in vertices])
    ys = np.array([v[1] for v in vertices])
    return float(abs(np.dot(xs, np.roll(ys, -1)) - np.dot(ys, np.roll(xs, -1))) / 2)


def _point_segment_distance(p: XY, a: XY, b: XY) -> float:
    dx, dy = b[0] - a[0], b[1] - a[1]
    if dx == 0 and dy == 0:
        return math.hypot(p[0] - a[0], p[1] - a[1])
    t = ((p[0] - a[0]) * dx + (p[1] - a[1]) * dy) / (dx * dx + dy * dy)
    t = max(0.0, min(1.0, t))
    return math.hypot(p[0] - (a[0] + t * dx), p[1] - (a[1] + t * dy))


def simplify_path(points: Sequence[XY], tolerance: float) -> List[XY]:
    """
    Ramer-Douglas-Peucker simplification.

    Keeps the endpoints and every vertex that deviates more than
    tolerance meters from the simplified line. Iterative to avoid
    recursion limits on long tracks.
    """
    pts = [(float(x), float(y)) for x, y in points]
    if len(pts) < 3:
        return pts

    keep = [False] * len(pts)
    keep[0] = keep[-1] = True
    stack = [(0, len(pts) - 1)]

    while stack:
        start, end = stack.pop()
        max_dist = 0.0
        index = None
        for i in range(start + 1, end):
            dist = _point_segment_distance(pts[i], pts[start], pts[end])
            if dist > max_dist:
                max_dist = dist
                index = i
        if index is not None and max_dist > tolerance:
            keep[index] = True
            stack.append((start, index))
            stack.append((index, end))

    return [p for p, k in zip(pts, keep) if k]


@dataclass
class BoundingBox:
    """
    Geographic bounding box.

    Latitude and longitude bounds in decimal degrees.
    """
    lat_min: float
    lat_max: float
    lon_min: float
    lon_max: float

    @classmethod
    def from_center_radius(
        cls,
        center_lat: float,
        center_lon: float,
        radius_meters: float
    ) -> 'BoundingBox':
        """
        Create bounding box from center point and radius.

        Uses approximate conversion: 1 degree ~ 111 km at equator,
        adjusted for longitude convergence at the center latitude.
        """
        lat_delta = radius_meters / 111000.0
        cos_lat = max(abs(math.cos(math.radians(center_lat))), 1e-6)
        lon_delta = radius_meters / (111000.0 * cos_lat)

        return cls(
            lat_min=center_lat - lat_delta,
            lat_max=center_lat + lat_delta,
            lon_min=center_lon - lon_delta,
            lon_max=center_lon + lon_delta,
        )

    def split_antimeridian(self) -> List['BoundingBox']:
        """
        The box as one or two boxes with longitudes inside [-180, 180].

        A box built around a point near +/-180 degrees spills past the
        antimeridian; the spill is moved to the other side of the map.
        """
        if self.lon_max - self.lon_min >= 360.0:
            return [BoundingBox(self.lat_min, self.lat_max, -180.0, 180.0)]
        if self.lon_min < -180.0:
            return [
                BoundingBox(self.lat_min, self.lat_max, self.lon_min + 360.0, 180.0),
                BoundingBox(self.lat_min, self.lat_max, -180.0, self.lon_max),
            ]
        if self.lon_max > 180.0:
            return [
                BoundingBox(self.lat_min, self.lat_max, self.lon_min, 180.0),
                BoundingBox(self.lat_min, self.lat_max, -180.0, self.lon_max - 360.0),
            ]
        return [self]

    def contains(self, lat: float, lon: float) -> bool:
        return any(
            box.lat_min <= lat <= box.lat_max and box.lon_min <= lon <= box.lon_max
            for box in self.split_antimeridian()
        )


def line_string(latlons: Sequence[Tuple[float, float]]) -> dict:
    """GeoJSON LineString from (lat, lon) pairs."""
    return {
        'type': 'LineString',
        'coordinates': [[round(lon, 7), round(lat, 7)] for lat, lon in latlons],
    }


def geojson_latlons(geometry: Optional[dict]) -> List[Tuple[float, float]]:
    """
    Flatten a GeoJSON geometry into (lat, lon) pairs.

    MultiLineString parts are concatenated in order.
    """
    if not geometry:
        return []
    kind = geometry.get('type')
    coords = geometry.get('coordinates') or []
    if kind == 'Point':
        return [(coords[1], coords[0])]
    if kind in ('LineString', 'MultiPoint'):
        return [(c[1], c[0]) for c in coords]
    if kind == 'MultiLineString':
        return [(c[1], c[0]) for part in coords for c in part]
    return []
