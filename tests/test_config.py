import dataclasses

import pytest

from relief_analytics.config import (
    config,
    load_config,
    _env_flag,
    DatabaseConfig,
    DetectionConfig,
    OptimizationConfig,
)


def test_test_suite_uses_in_memory_sqlite():
    assert config.database.is_sqlite
    assert config.database.is_memory
    assert not config.recording.analyze_on_record


def test_detection_defaults():
    detection = DetectionConfig()
    assert detection.window_days == 7
    assert detection.min_fixes == 10
    assert detection.heading_tolerance_degrees == 30.0
    assert detection.circle_turn_degrees == 300.0
    assert detection.route_cell_meters == 250.0
    assert detection.anomaly_speed_mps == 50.0


def test_optimization_defaults():
    optimization = OptimizationConfig()
    assert optimization.optimal_speed_mps == 10.0
    assert optimization.route_efficiency_threshold == 0.8
    assert optimization.stationary_threshold_seconds == 3600
    assert optimization.sweep_width_meters == 100.0


def test_config_is_frozen():
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.detection.min_fixes = 3


def test_overrides_by_constructor():
    detection = DetectionConfig(min_fixes=3)
    assert detection.min_fixes == 3
    assert DetectionConfig().min_fixes == 10


@pytest.mark.parametrize('value,expected', [
    ('1', True), ('true', True), ('YES', True), (' 1 ', True),
    ('0', False), ('false', False), ('', False),
])
def test_env_flag(monkeypatch, value, expected):
    monkeypatch.setenv('RELIEF_TEST_FLAG', value)
    assert _env_flag('RELIEF_TEST_FLAG', '0') is expected


def test_env_flag_default(monkeypatch):
    monkeypatch.delenv('RELIEF_TEST_FLAG', raising=False)
    assert _env_flag('RELIEF_TEST_FLAG', '1') is True


def test_debug_from_environment(monkeypatch):
    monkeypatch.setenv('DEBUG', '1')
    assert load_config().debug is True
    monkeypatch.setenv('DEBUG', '0')
    assert load_config().debug is False


def test_database_url_kinds():
    assert DatabaseConfig(url='sqlite:///data.db').is_sqlite
    assert not DatabaseConfig(url='sqlite:///data.db').is_memory
    assert not DatabaseConfig(url='postgresql://user@host/db').is_sqlite
