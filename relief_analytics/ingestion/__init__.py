"""
Fix ingestion for Relief Analytics.

Parses fix reports, enriches them against the entity's previous fix
and appends them to location history.
"""

from relief_analytics.ingestion.fixes import FixReport
from relief_analytics.ingestion.recorder import LocationRecorder

__all__ = ['FixReport', 'LocationRecorder']
