"""
Database models for Relief Analytics.

Three tables:
1. location_history - append-only positional fixes
2. location_patterns - movement patterns detected per entity
3. location_optimizations - suggestions derived from patterns
"""

from relief_analytics.models.base import Base, engine, SessionLocal, init_db, drop_db, get_session
from relief_analytics.models.location_history import LocationHistory, ActivityType
from relief_analytics.models.location_pattern import LocationPattern, PatternType, ROUTE_PATTERN_TYPES
from relief_analytics.models.location_optimization import (
    LocationOptimization,
    OptimizationType,
    OptimizationPriority,
    OptimizationStatus,
    ImplementationDifficulty,
    RiskLevel,
)

__all__ = [
    'Base',
    'engine',
    'SessionLocal',
    'init_db',
    'drop_db',
    'get_session',
    'LocationHistory',
    'ActivityType',
    'LocationPattern',
    'PatternType',
    'ROUTE_PATTERN_TYPES',
    'LocationOptimization',
    'OptimizationType',
    'OptimizationPriority',
    'OptimizationStatus',
    'ImplementationDifficulty',
    'RiskLevel',
]
