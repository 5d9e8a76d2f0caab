"""
Road data sources for the batch fetcher.

Usage:
    from curvesafety.sources import OverpassRoadSource

    source = OverpassRoadSource({'retry_attempts': 5})
    roads = source.fetch_roads(point, radius=20)
"""

from .base import RoadDataSource, SourceMetadata, SourceHealthStatus
from .overpass_source import OverpassRoadSource

__all__ = [
    "RoadDataSource",
    "SourceMetadata",
    "SourceHealthStatus",
    "OverpassRoadSource",
]
