import os

# Must be set before relief_analytics is imported: config and engine are
# built at import time.
os.environ['DATABASE_URL'] = 'sqlite:///:memory:'
os.environ['ANALYZE_ON_RECORD'] = '0'

import math
import random
from types import SimpleNamespace

import pytest

from relief_analytics.models import init_db, drop_db
from relief_analytics.analytics.geometry import unproject_local

ORIGIN = (37.7749, -122.4194)
T0 = 1_700_000_000


@pytest.fixture(autouse=True)
def _fresh_database():
    """Every test starts from empty tables."""
    drop_db()
    init_db()
    yield
    drop_db()


def latlon(x, y, origin=ORIGIN):
    """(lat, lon) of a point x meters east and y meters north of origin."""
    return unproject_local([x], [y], origin)[0]


def fix(x, y, t, speed=5.0, entity_type='VOLUNTEER', entity_id=1, **extra):
    lat, lon = latlon(x, y)
    data = {
        'entity_type': entity_type,
        'entity_id': entity_id,
        'latitude': lat,
        'longitude': lon,
        'timestamp': t,
        'speed': speed,
    }
    data.update(extra)
    return data


def straight_line(n=12, step=50.0, dt=10, t0=T0, direction=(0.0, 1.0), start=(0.0, 0.0), **kw):
    """n fixes moving step meters per dt seconds along direction (unit east, north)."""
    speed = kw.pop('speed', step / dt)
    return [
        fix(start[0] + direction[0] * step * i, start[1] + direction[1] * step * i,
            t0 + dt * i, speed=speed, **kw)
        for i in range(n)
    ]


def circle(radius=200.0, points_per_lap=24, laps=1, dt=10, t0=T0, **kw):
    """Clockwise loop starting due north of the center."""
    speed = 2 * math.pi * radius / points_per_lap / dt
    fixes = []
    for k in range(points_per_lap * laps + 1):
        angle = 2 * math.pi * k / points_per_lap
        fixes.append(fix(radius * math.sin(angle), radius * math.cos(angle), t0 + dt * k, speed=speed, **kw))
    return fixes


def lawnmower(legs=3, leg_points=6, spacing=100.0, step=50.0, dt=10, t0=T0, **kw):
    """Legs alternating north and south, each shifted spacing meters east."""
    fixes = []
    t = t0
    for leg in range(legs):
        ys = [step * i for i in range(leg_points)]
        if leg % 2:
            ys.reverse()
        for y in ys:
            fixes.append(fix(leg * spacing, y, t, speed=step / dt, **kw))
            t += dt
    return fixes


def dwell(n=6, dt=60, t0=T0, center=(0.0, 0.0), jitter=5.0, seed=7, **kw):
    """Stationary fixes scattered within jitter meters of center."""
    rng = random.Random(seed)
    return [
        fix(center[0] + rng.uniform(-jitter, jitter), center[1] + rng.uniform(-jitter, jitter),
            t0 + dt * i, speed=0.0, **kw)
        for i in range(n)
    ]


def teleport(n=10, jump_meters=10_000.0, dt=10, t0=T0, **kw):
    """A straight line, then one fix jump_meters east a single interval later, then two more."""
    fixes = straight_line(n=n, dt=dt, t0=t0, **kw)
    last_y = 50.0 * (n - 1)
    t = t0 + dt * n
    for i in range(3):
        fixes.append(fix(jump_meters, last_y + 50.0 * i, t + dt * i, speed=5.0, **kw))
    return fixes


def as_fixes(reports):
    """Detector input objects from fix dicts."""
    return [
        SimpleNamespace(
            entity_type=r['entity_type'],
            entity_id=r['entity_id'],
            latitude=r['latitude'],
            longitude=r['longitude'],
            timestamp=r['timestamp'],
            speed=r.get('speed'),
            is_stationary=r.get('is_stationary', False),
        )
        for r in reports
    ]


@pytest.fixture
def track_builders():
    return SimpleNamespace(
        T0=T0,
        fix=fix,
        latlon=latlon,
        straight_line=straight_line,
        circle=circle,
        lawnmower=lawnmower,
        dwell=dwell,
        teleport=teleport,
        as_fixes=as_fixes,
    )
