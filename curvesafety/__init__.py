"""
Road curvature estimation and head-on collision cluster analysis.

Usage:
    from curvesafety.services.curvature_service import calc_curvature
    from curvesafety.services.road_fetcher import RoadFetcher
    from curvesafety.sources.overpass_source import OverpassRoadSource
"""

__version__ = "0.1.0"
