import json

import pytest

from relief_analytics.app import import_fixes, main
from relief_analytics.models import PatternType
from relief_analytics.analytics.service import LocationAnalyticsService


def test_import_fixes_records_and_analyzes(tmp_path, track_builders):
    tb = track_builders
    reports = tb.lawnmower(legs=3) + [{'entity_type': 'VOLUNTEER', 'latitude': 0, 'longitude': 0}]
    path = tmp_path / 'fixes.json'
    path.write_text(json.dumps(reports))

    assert import_fixes(str(path)) == 18

    patterns = LocationAnalyticsService().get_patterns(entity_id=1)
    assert PatternType.SEARCH_GRID.value in {p.pattern_type for p in patterns}


def test_import_rejects_non_array(tmp_path):
    path = tmp_path / 'fixes.json'
    path.write_text(json.dumps({'entity_type': 'VOLUNTEER'}))

    with pytest.raises(ValueError):
        import_fixes(str(path))


def test_main_returns_zero(tmp_path, track_builders):
    path = tmp_path / 'fixes.json'
    path.write_text(json.dumps(track_builders.straight_line(n=12)))

    assert main([str(path)]) == 0
