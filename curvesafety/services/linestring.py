"""
Point projection onto roads and splitting of roads at points.

Both operations measure in the projected frame of the supplied Geodesy and
return geometries in the road's own frame.
"""

import logging
import math
from typing import List, Optional, Sequence, Tuple

from shapely.geometry import LineString
from shapely.ops import substring

from ..core.config import settings
from ..exceptions import GeometryError
from ..models.geometry import GeoPoint, Road
from .geodesy import Geodesy

logger = logging.getLogger(__name__)


def projected_line(road: Road, geodesy: Geodesy) -> LineString:
    """Road as a shapely line in the projected frame, rejecting unusable roads."""
    if len(set(road.coords)) < 2:
        raise GeometryError(f"Road needs at least 2 distinct vertices, got {len(road.coords)}")

    line = geodesy.to_projected(road).to_shapely()
    if not math.isfinite(line.length) or line.length <= 0:
        raise GeometryError("Road has no measurable length in the projected frame")
    return line


def _projected_point(point: GeoPoint, geodesy: Geodesy):
    projected = geodesy.to_projected(point)
    if not (math.isfinite(projected.x) and math.isfinite(projected.y)):
        raise GeometryError(f"Point ({point.x}, {point.y}) cannot be projected to {geodesy.projected_crs}")
    return projected.to_shapely()


def road_length(road: Road, geodesy: Optional[Geodesy] = None) -> float:
    """Length of the road in projected units."""
    geodesy = geodesy or Geodesy()
    return float(projected_line(road, geodesy).length)


def project(
    point: GeoPoint,
    road: Road,
    geodesy: Optional[Geodesy] = None,
) -> Tuple[GeoPoint, float]:
    """
    Find the point on `road` closest to `point`.

    The returned point always lies on the road, never on the query point, and
    may fall inside a segment as well as on a vertex.

    Args:
        point: Query point (any CRS known to pyproj)
        road: Road polyline
        geodesy: Frame adapter, defaults to the configured CRS pair

    Returns:
        Tuple of (closest point on the road in the road's CRS,
        arc-length offset of that point from the road start in projected units)

    Raises:
        GeometryError: If the road has fewer than 2 vertices or the point
            cannot be projected
    """
    geodesy = geodesy or Geodesy()
    line = projected_line(road, geodesy)
    target = _projected_point(point, geodesy)

    offset = line.project(target)
    closest = GeoPoint.from_shapely(line.interpolate(offset), geodesy.projected_crs)

    return geodesy.transform(closest, road.crs), float(offset)


def split(
    road: Road,
    cut_points: Sequence[GeoPoint],
    geodesy: Optional[Geodesy] = None,
    tolerance: Optional[float] = None,
) -> List[Road]:
    """
    Cut a road at the given points.

    Pieces come back in arc-length order. A cut that coincides with an
    endpoint (or with another cut) would produce a zero-length piece; such
    pieces are omitted, so callers can receive fewer than
    ``len(cut_points) + 1`` roads.

    Args:
        road: Road polyline
        cut_points: Points on the road
        geodesy: Frame adapter, defaults to the configured CRS pair
        tolerance: Max distance of a cut point from the road in projected
            units (defaults to settings.SNAP_TOLERANCE)

    Raises:
        GeometryError: If the road is too short or a cut point is off the road
    """
    geodesy = geodesy or Geodesy()
    tolerance = settings.SNAP_TOLERANCE if tolerance is None else tolerance
    line = projected_line(road, geodesy)

    offsets = []
    for cut in cut_points:
        target = _projected_point(cut, geodesy)
        gap = line.distance(target)
        if gap > tolerance:
            raise GeometryError(f"Cut point is {gap:.4f} units away from the road (tolerance {tolerance})")
        offsets.append(line.project(target))

    bounds = [0.0] + sorted(offsets) + [line.length]
    min_piece = line.length * 1e-9

    pieces = []
    for start, end in zip(bounds[:-1], bounds[1:]):
        if end - start <= min_piece:
            logger.debug(f"Skipping zero-length piece at offset {start:.3f}")
            continue
        piece = Road.from_shapely(
            substring(line, start, end),
            geodesy.projected_crs,
            osm_id=road.osm_id,
            highway=road.highway,
        )
        pieces.append(geodesy.transform(piece, road.crs))

    return pieces
