"""
LocationOptimization model - suggestions derived from detected patterns.

Each row is one actionable suggestion (shorter route, less idle time,
tighter search sweep) with the efficiency it expects to reach and the
savings it projects. Operators move suggestions through a small status
lifecycle and record the gain actually observed once implemented.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, Float, Integer, DateTime, Boolean, Index, JSON, Text, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from relief_analytics.models.base import Base


class OptimizationType(str, Enum):
    """Kinds of optimization suggestions."""
    # Routes
    ROUTE_OPTIMIZATION = 'ROUTE_OPTIMIZATION'
    SHORTEST_PATH = 'SHORTEST_PATH'
    FASTEST_PATH = 'FASTEST_PATH'
    FUEL_EFFICIENT_ROUTE = 'FUEL_EFFICIENT_ROUTE'
    TIME_OPTIMIZED_ROUTE = 'TIME_OPTIMIZED_ROUTE'
    DISTANCE_OPTIMIZED_ROUTE = 'DISTANCE_OPTIMIZED_ROUTE'

    # Resources
    RESOURCE_ALLOCATION = 'RESOURCE_ALLOCATION'
    PERSONNEL_DEPLOYMENT = 'PERSONNEL_DEPLOYMENT'
    EQUIPMENT_PLACEMENT = 'EQUIPMENT_PLACEMENT'
    SUPPLY_CHAIN_OPTIMIZATION = 'SUPPLY_CHAIN_OPTIMIZATION'
    INVENTORY_OPTIMIZATION = 'INVENTORY_OPTIMIZATION'

    # Coverage
    AREA_COVERAGE = 'AREA_COVERAGE'
    SEARCH_PATTERN_OPTIMIZATION = 'SEARCH_PATTERN_OPTIMIZATION'
    PATROL_ROUTE_OPTIMIZATION = 'PATROL_ROUTE_OPTIMIZATION'
    MONITORING_OPTIMIZATION = 'MONITORING_OPTIMIZATION'

    # Response
    EMERGENCY_RESPONSE_TIME = 'EMERGENCY_RESPONSE_TIME'
    RESCUE_OPERATION_EFFICIENCY = 'RESCUE_OPERATION_EFFICIENCY'
    MEDICAL_RESPONSE_OPTIMIZATION = 'MEDICAL_RESPONSE_OPTIMIZATION'
    EVACUATION_OPTIMIZATION = 'EVACUATION_OPTIMIZATION'

    # Communication
    COMMUNICATION_NETWORK = 'COMMUNICATION_NETWORK'
    RELAY_STATION_PLACEMENT = 'RELAY_STATION_PLACEMENT'
    COORDINATION_POINT_OPTIMIZATION = 'COORDINATION_POINT_OPTIMIZATION'

    # Environment
    WEATHER_AVOIDANCE = 'WEATHER_AVOIDANCE'
    TERRAIN_OPTIMIZATION = 'TERRAIN_OPTIMIZATION'
    OBSTACLE_AVOIDANCE = 'OBSTACLE_AVOIDANCE'
    ACCESSIBILITY_OPTIMIZATION = 'ACCESSIBILITY_OPTIMIZATION'

    # Efficiency
    WORKFLOW_OPTIMIZATION = 'WORKFLOW_OPTIMIZATION'
    PROCESS_OPTIMIZATION = 'PROCESS_OPTIMIZATION'
    TASK_SEQUENCING = 'TASK_SEQUENCING'
    SCHEDULE_OPTIMIZATION = 'SCHEDULE_OPTIMIZATION'

    # Safety
    SAFETY_OPTIMIZATION = 'SAFETY_OPTIMIZATION'
    RISK_REDUCTION = 'RISK_REDUCTION'
    HAZARD_AVOIDANCE = 'HAZARD_AVOIDANCE'
    EMERGENCY_PREPAREDNESS = 'EMERGENCY_PREPAREDNESS'

    # Cost
    COST_REDUCTION = 'COST_REDUCTION'
    BUDGET_OPTIMIZATION = 'BUDGET_OPTIMIZATION'
    RESOURCE_EFFICIENCY = 'RESOURCE_EFFICIENCY'
    WASTE_REDUCTION = 'WASTE_REDUCTION'

    # Performance
    PERFORMANCE_IMPROVEMENT = 'PERFORMANCE_IMPROVEMENT'
    THROUGHPUT_OPTIMIZATION = 'THROUGHPUT_OPTIMIZATION'
    LATENCY_REDUCTION = 'LATENCY_REDUCTION'
    CAPACITY_OPTIMIZATION = 'CAPACITY_OPTIMIZATION'

    CUSTOM_OPTIMIZATION = 'CUSTOM_OPTIMIZATION'
    USER_DEFINED = 'USER_DEFINED'
    MACHINE_LEARNED = 'MACHINE_LEARNED'
    AI_GENERATED = 'AI_GENERATED'


class OptimizationPriority(str, Enum):
    LOW = 'LOW'
    MEDIUM = 'MEDIUM'
    HIGH = 'HIGH'
    CRITICAL = 'CRITICAL'


class OptimizationStatus(str, Enum):
    """Lifecycle of a suggestion."""
    PENDING = 'PENDING'
    APPROVED = 'APPROVED'
    IN_PROGRESS = 'IN_PROGRESS'
    COMPLETED = 'COMPLETED'
    IMPLEMENTED = 'IMPLEMENTED'
    REJECTED = 'REJECTED'


class ImplementationDifficulty(str, Enum):
    EASY = 'EASY'
    MEDIUM = 'MEDIUM'
    HARD = 'HARD'


class RiskLevel(str, Enum):
    LOW = 'LOW'
    MEDIUM = 'MEDIUM'
    HIGH = 'HIGH'


class LocationOptimization(Base):
    """An optimization suggestion attached to one pattern."""

    __tablename__ = 'location_optimizations'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    pattern_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey('location_patterns.id', ondelete='CASCADE'),
        nullable=False,
    )

    optimization_type: Mapped[str] = mapped_column(String(40), nullable=False)
    optimization_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    suggested_route: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
        comment='GeoJSON LineString of the suggested path'
    )

    # Efficiency scores in [0, 1]
    current_efficiency: Mapped[float] = mapped_column(Float, nullable=False)
    projected_efficiency: Mapped[float] = mapped_column(Float, nullable=False)

    time_savings_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    distance_savings_meters: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    priority: Mapped[str] = mapped_column(
        String(10), nullable=False, default=OptimizationPriority.MEDIUM.value
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OptimizationStatus.PENDING.value
    )
    implementation_difficulty: Mapped[str] = mapped_column(
        String(10), nullable=False, default=ImplementationDifficulty.MEDIUM.value
    )
    risk_level: Mapped[str] = mapped_column(
        String(10), nullable=False, default=RiskLevel.MEDIUM.value
    )

    is_implemented: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    implementation_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    implementation_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    actual_efficiency_gain: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    extra: Mapped[Optional[dict]] = mapped_column('metadata', JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
        onupdate=lambda: datetime.now(timezone.utc),
    )

    pattern: Mapped['LocationPattern'] = relationship(back_populates='optimizations')

    __table_args__ = (
        Index('ix_location_optimizations_pattern', 'pattern_id'),
        Index('ix_location_optimizations_type', 'optimization_type'),
        Index('ix_location_optimizations_status', 'status'),
        Index('ix_location_optimizations_priority', 'priority'),
    )

    def __repr__(self) -> str:
        return f'<LocationOptimization {self.optimization_type} pattern={self.pattern_id} {self.status}>'

    @property
    def efficiency_gain(self) -> float:
        """Projected improvement over the current efficiency."""
        return self.projected_efficiency - self.current_efficiency

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict."""
        return {
            'id': self.id,
            'pattern_id': self.pattern_id,
            'optimization_type': self.optimization_type,
            'optimization_name': self.optimization_name,
            'description': self.description,
            'suggested_route': self.suggested_route,
            'current_efficiency': round(self.current_efficiency, 3),
            'projected_efficiency': round(self.projected_efficiency, 3),
            'efficiency_gain': round(self.efficiency_gain, 3),
            'time_savings_seconds': self.time_savings_seconds,
            'distance_savings_meters': self.distance_savings_meters,
            'priority': self.priority,
            'status': self.status,
            'implementation_difficulty': self.implementation_difficulty,
            'risk_level': self.risk_level,
            'is_implemented': self.is_implemented,
            'implementation_date': self.implementation_date.isoformat() if self.implementation_date else None,
            'actual_efficiency_gain': self.actual_efficiency_gain,
        }
