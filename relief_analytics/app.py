"""
Relief Analytics application wiring.

Initializes:
- Database schema
- Latest-fix cache (warmed from stored history)
- Recorder, detector and advisor behind one LocationAnalyticsService

Usage:
    python -m relief_analytics.app fixes.json

The file holds a JSON array of fix objects; they are recorded, every
entity they touch is analyzed and a pattern summary is logged.
"""

import argparse
import dataclasses
import json
import logging
import sys
from typing import List, Optional

from relief_analytics.config import config, AppConfig
from relief_analytics.models import init_db
from relief_analytics.cache import LatestFixCache
from relief_analytics.analytics.service import LocationAnalyticsService

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S',
)
logger = logging.getLogger(__name__)


def create_service(
    app_config: Optional[AppConfig] = None,
    warm_cache: bool = True,
) -> LocationAnalyticsService:
    """
    Service factory.

    Args:
        app_config: Configuration to use (global config if None).
        warm_cache: Load each entity's latest fix into the cache so the
                    first new fix is enriched without a database lookup.

    Returns:
        Ready-to-use LocationAnalyticsService.
    """
    app_config = app_config or config

    logger.info('Initializing database...')
    init_db()

    cache = LatestFixCache(app_config.cache.max_entries)
    if warm_cache:
        loaded = cache.refresh_from_database()
        logger.info(f'Cache warmed with {loaded} entities')

    return LocationAnalyticsService(cache=cache, app_config=app_config)


def import_fixes(path: str) -> int:
    """
    Record every fix in a JSON file and analyze the entities involved.

    Analysis runs once at the end, anchored at the newest fix so that
    historical files fall inside the analysis window.
    """
    with open(path, encoding='utf-8') as f:
        reports = json.load(f)
    if not isinstance(reports, list):
        raise ValueError(f'{path}: expected a JSON array of fixes')

    batch_config = dataclasses.replace(
        config,
        recording=dataclasses.replace(config.recording, analyze_on_record=False),
    )
    service = create_service(batch_config)

    recorded = service.record_locations(reports)
    if not recorded:
        logger.warning(f'No valid fixes in {path}')
        return 0

    latest = service.get_history(limit=1)[0].timestamp
    results = service.analyze_all_active(now=latest)

    for (entity_type, entity_id), patterns in results.items():
        summary = _summarize(patterns)
        logger.info(f'{entity_type}:{entity_id}: {summary or "no patterns"}')

    return recorded


def _summarize(patterns: List) -> str:
    counts = {}
    for pattern in patterns:
        counts[pattern.pattern_type] = counts.get(pattern.pattern_type, 0) + 1
    return ', '.join(f'{count} {kind}' for kind, count in sorted(counts.items()))


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog='relief_analytics',
        description='Record positional fixes and detect movement patterns.',
    )
    parser.add_argument('fixes', help='JSON file containing an array of fixes')
    args = parser.parse_args(argv)

    recorded = import_fixes(args.fixes)
    logger.info(f'Recorded {recorded} fixes from {args.fixes}')
    return 0


if __name__ == '__main__':
    sys.exit(main())
