"""
Relief Analytics Package.

Location analytics for disaster-relief field teams, built with
SQLAlchemy and NumPy: positional fixes in, movement patterns and
route/search optimization suggestions out.

Modules:
    models/      SQLAlchemy ORM models (LocationHistory, LocationPattern, LocationOptimization)
    ingestion/   Fix parsing, validation and enrichment
    analytics/   Pattern detection, optimization advice, statistics and the service facade
    cache.py     Thread-safe latest-fix cache used during enrichment
    config.py    Centralized configuration from environment variables
    errors.py    Package exceptions
    app.py       Service factory and JSON import entry point
"""

__version__ = '1.0.0'
