"""
Configuration management for Relief Analytics.

Loads settings from environment variables with sensible defaults.
All thresholds used by recording, pattern detection and optimization
live here so they can be tuned per deployment without code changes.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes')


@dataclass(frozen=True)
class DatabaseConfig:
    """Database configuration."""
    url: str = os.getenv('DATABASE_URL', 'sqlite:///relief_analytics.db')

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith('sqlite')

    @property
    def is_memory(self) -> bool:
        return self.is_sqlite and ':memory:' in self.url


@dataclass(frozen=True)
class RecordingConfig:
    """Per-fix enrichment rules applied when a fix is recorded."""
    stationary_speed_mps: float = float(os.getenv('STATIONARY_SPEED_MPS', '0.5'))
    stationary_min_duration_seconds: int = int(os.getenv('STATIONARY_MIN_DURATION_SECONDS', '300'))
    significant_distance_meters: float = float(os.getenv('SIGNIFICANT_DISTANCE_METERS', '100'))
    default_accuracy_meters: float = 10.0

    # Run pattern analysis after every recorded fix
    analyze_on_record: bool = _env_flag('ANALYZE_ON_RECORD', '1')


@dataclass(frozen=True)
class DetectionConfig:
    """Movement pattern detection thresholds."""
    window_days: int = int(os.getenv('ANALYSIS_WINDOW_DAYS', '7'))
    min_fixes: int = int(os.getenv('ANALYSIS_MIN_FIXES', '10'))

    stationary_speed_mps: float = float(os.getenv('STATIONARY_SPEED_MPS', '0.5'))
    min_step_meters: float = 1.0
    trip_gap_seconds: int = int(os.getenv('TRIP_GAP_SECONDS', '1800'))

    # Linear movement
    heading_tolerance_degrees: float = 30.0
    min_linear_points: int = 5

    # Circular movement
    min_circular_points: int = 8
    circle_turn_degrees: float = 300.0
    circle_radius_cv: float = 0.35

    # Stationary clusters
    min_stationary_points: int = 3
    stationary_radius_meters: float = 50.0

    # Repeated routes
    min_route_points: int = 10
    route_cell_meters: float = 250.0

    # Search grids (lawnmower sweeps)
    min_search_points: int = 6
    min_search_legs: int = 3
    min_leg_points: int = 3
    search_reversal_tolerance_degrees: float = 30.0

    # Anomalies
    anomaly_speed_mps: float = float(os.getenv('ANOMALY_SPEED_MPS', '50'))


@dataclass(frozen=True)
class OptimizationConfig:
    """Rules for deriving optimization suggestions from patterns."""
    optimal_speed_mps: float = float(os.getenv('OPTIMAL_SPEED_MPS', '10'))
    route_efficiency_threshold: float = 0.8
    projected_route_efficiency: float = 0.9
    route_time_savings_ratio: float = 0.2
    route_distance_savings_ratio: float = 0.15
    simplify_tolerance_meters: float = 25.0

    stationary_threshold_seconds: int = 3600

    search_efficiency_threshold: float = 0.7
    projected_search_efficiency: float = 0.85
    sweep_width_meters: float = float(os.getenv('SWEEP_WIDTH_METERS', '100'))


@dataclass(frozen=True)
class CacheConfig:
    """Latest-fix cache settings."""
    max_entries: int = int(os.getenv('FIX_CACHE_MAX_ENTRIES', '5000'))


@dataclass(frozen=True)
class RetentionConfig:
    """Data retention policy."""
    days: int = int(os.getenv('RETENTION_DAYS', '90'))
    statistics_default_days: int = 30


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""
    database: DatabaseConfig
    recording: RecordingConfig
    detection: DetectionConfig
    optimization: OptimizationConfig
    cache: CacheConfig
    retention: RetentionConfig

    debug: bool


def load_config() -> AppConfig:
    """Load and validate all configuration."""
    return AppConfig(
        database=DatabaseConfig(),
        recording=RecordingConfig(),
        detection=DetectionConfig(),
        optimization=OptimizationConfig(),
        cache=CacheConfig(),
        retention=RetentionConfig(),
        debug=os.getenv('DEBUG', '0') == '1',
    )


# Singleton instance
config = load_config()
