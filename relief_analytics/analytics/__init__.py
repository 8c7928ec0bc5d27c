"""
Analytics module for Relief Analytics.

Movement pattern detection and optimization over positional fixes,
using NumPy:
- Geodesy on a local metric projection
- Heading segmentation and loop/route/sweep detection
- Route simplification and coverage-based suggestions
- Aggregate statistics

The service that ties these to storage lives in
relief_analytics.analytics.service.
"""

from relief_analytics.analytics.pattern_detection import (
    PatternDetector,
    DetectedPattern,
    Track,
)
from relief_analytics.analytics.optimization import (
    OptimizationAdvisor,
    OptimizationSuggestion,
)

__all__ = [
    'PatternDetector',
    'DetectedPattern',
    'Track',
    'OptimizationAdvisor',
    'OptimizationSuggestion',
]
