"""
Road curvature at accident locations.

The accident point is projected onto its nearest road, three points are
sampled along the road at arc-length offsets -d, 0 and +d around the
projection, and the Menger curvature of the triangle they form (the
reciprocal of its circumradius) is used as the local curvature.

Per-accident failures never abort a table computation: they become NaN.
"""

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from shapely.geometry import MultiPoint

from ..core.config import settings
from ..exceptions import DegenerateTriangleError, GeometryError
from ..models.accident import ACCIDENT_KEY_COLUMNS
from ..models.geometry import GeoPoint, Road
from .batch_storage import ROAD_HIGHWAY_COLUMN, ROAD_WKT_COLUMN, roads_from_columns
from .geodesy import Geodesy
from .linestring import project, projected_line, split

logger = logging.getLogger(__name__)

# Triangle height, relative to its longest side, at or below which points count as collinear
COLLINEAR_TOLERANCE = 1e-9


@dataclass(frozen=True)
class SampleTriple:
    """Road points at arc-length offsets -d, 0 and +d around an accident."""

    before: GeoPoint
    at: GeoPoint
    after: GeoPoint

    def __iter__(self):
        return iter((self.before, self.at, self.after))


def sample(
    road: Road,
    point: GeoPoint,
    path_distance: Optional[float] = None,
    geodesy: Optional[Geodesy] = None,
    end_policy: Optional[str] = None,
) -> SampleTriple:
    """
    Sample three points along `road` around the projection of `point`.

    Offsets are converted to fractions of the road length and interpolated
    linearly along the road in the projected frame. When an offset falls
    outside the road, `end_policy` decides:

    - 'clamp': the sample is placed on the nearest road endpoint
    - 'null': GeometryError is raised, which curvature callers turn into NaN

    Args:
        road: Road polyline
        point: Accident location
        path_distance: Arc-length offset in projected units (defaults to settings.PATH_DISTANCE)
        geodesy: Frame adapter, defaults to the configured CRS pair
        end_policy: 'clamp' or 'null' (defaults to settings.SAMPLE_END_POLICY)

    Returns:
        SampleTriple in the road's CRS
    """
    geodesy = geodesy or Geodesy()
    path_distance = settings.PATH_DISTANCE if path_distance is None else path_distance
    end_policy = end_policy or settings.SAMPLE_END_POLICY
    if end_policy not in ("clamp", "null"):
        raise ValueError(f"Unknown end policy: '{end_policy}'")

    _, to_closest_point = project(point, road, geodesy)
    line = projected_line(road, geodesy)
    length = line.length

    samples = []
    for offset in (-path_distance, 0.0, path_distance):
        ratio = (to_closest_point + offset) / length
        if not 0.0 <= ratio <= 1.0:
            if end_policy == "null":
                raise GeometryError(
                    f"Sample offset {to_closest_point + offset:.2f} outside road of length {length:.2f}"
                )
            ratio = min(max(ratio, 0.0), 1.0)
        projected = GeoPoint.from_shapely(
            line.interpolate(ratio, normalized=True), geodesy.projected_crs
        )
        samples.append(geodesy.transform(projected, road.crs))

    return SampleTriple(*samples)


def menger_curvature(
    p1: Tuple[float, float],
    p2: Tuple[float, float],
    p3: Tuple[float, float],
) -> float:
    """
    Curvature of the circle through three planar points.

    Returns 0 for collinear points, including points whose triangle height
    is within COLLINEAR_TOLERANCE of the longest side.

    Raises:
        DegenerateTriangleError: If two of the points coincide
    """
    area = MultiPoint([p1, p2, p3]).convex_hull.area
    distances = (
        math.dist(p1, p2),
        math.dist(p2, p3),
        math.dist(p3, p1),
    )
    denominator = distances[0] * distances[1] * distances[2]
    if denominator == 0.0 or not math.isfinite(denominator):
        raise DegenerateTriangleError(distances)
    if 2.0 * area <= COLLINEAR_TOLERANCE * max(distances) ** 2:
        return 0.0
    return 4.0 * area / denominator


def curvature(triple: SampleTriple, geodesy: Optional[Geodesy] = None) -> float:
    """
    Menger curvature of a sample triple, measured in the projected frame.

    Returns NaN instead of raising when the triangle is degenerate.
    """
    geodesy = geodesy or Geodesy()
    points = []
    for p in triple:
        projected = geodesy.to_projected(p)
        points.append((projected.x, projected.y))

    try:
        return menger_curvature(*points)
    except DegenerateTriangleError as e:
        logger.debug(f"Curvature undefined: {e}")
        return float("nan")


def calc_curvature(
    road: Road,
    point: GeoPoint,
    path_distance: Optional[float] = None,
    geodesy: Optional[Geodesy] = None,
    end_policy: Optional[str] = None,
) -> float:
    """
    Curvature of `road` at the projection of `point`.

    Any geometry failure (too-short road, unprojectable point, duplicate
    sample points) yields NaN.
    """
    geodesy = geodesy or Geodesy()
    try:
        # Sample in the projected frame so the triple is never round-tripped
        triple = sample(
            geodesy.to_projected(road),
            geodesy.to_projected(point),
            path_distance,
            geodesy,
            end_policy,
        )
    except GeometryError as e:
        logger.debug(f"Sampling failed: {e}")
        return float("nan")
    return curvature(triple, geodesy)


def crop_to_segment(
    road: Road,
    point: GeoPoint,
    path_distance: Optional[float] = None,
    geodesy: Optional[Geodesy] = None,
    end_policy: Optional[str] = None,
) -> Road:
    """
    Cut the road down to the part between the two outer sample points.

    Falls back to the unmodified road whenever splitting at the outer samples
    does not produce exactly three pieces (e.g. a sample clamped onto an
    endpoint) or the road cannot be sampled at all.
    """
    geodesy = geodesy or Geodesy()
    try:
        triple = sample(road, point, path_distance, geodesy, end_policy)
        pieces = split(road, [triple.before, triple.after], geodesy)
    except GeometryError as e:
        logger.debug(f"Cropping failed, keeping whole road: {e}")
        return road

    if len(pieces) == 3:
        return pieces[1]
    return road


def nearest_road(
    point: GeoPoint,
    roads: Iterable[Road],
    geodesy: Optional[Geodesy] = None,
) -> Optional[Road]:
    """
    Road closest to `point` in the projected frame.

    Roads without two distinct vertices are ignored. Ties keep the first road.
    Returns None when no usable road exists.
    """
    geodesy = geodesy or Geodesy()
    target = geodesy.to_projected(point).to_shapely()

    best, best_distance = None, math.inf
    for road in roads:
        try:
            distance = projected_line(road, geodesy).distance(target)
        except GeometryError:
            continue
        if distance < best_distance:
            best, best_distance = road, distance
    return best


def _row_curvature(row, path_distance, geodesy, end_policy) -> dict:
    point = GeoPoint(float(row["longitude"]), float(row["latitude"]), geodesy.geographic_crs)
    roads = roads_from_columns(
        row[ROAD_WKT_COLUMN],
        row[ROAD_HIGHWAY_COLUMN] if ROAD_HIGHWAY_COLUMN in row else None,
        geodesy.geographic_crs,
    )

    record = {column: row[column] for column in ACCIDENT_KEY_COLUMNS}
    record.update(
        longitude=point.longitude,
        latitude=point.latitude,
        nearest_road=None,
        road_length=np.nan,
        curvature=np.nan,
    )

    road = nearest_road(point, roads, geodesy)
    if road is None:
        return record

    record["nearest_road"] = road.to_wkt()
    record["road_length"] = projected_line(road, geodesy).length
    record["curvature"] = calc_curvature(road, point, path_distance, geodesy, end_policy)
    return record


def compute_road_curvatures(
    around_roads: pd.DataFrame,
    path_distance: Optional[float] = None,
    geodesy: Optional[Geodesy] = None,
    end_policy: Optional[str] = None,
) -> pd.DataFrame:
    """
    Compute the curvature of the nearest road for every accident.

    Args:
        around_roads: Combined fetch output with the accident key columns,
            longitude, latitude and road_wkt (list of WKT per row)
        path_distance: Sample offset (defaults to settings.PATH_DISTANCE)
        geodesy: Frame adapter, defaults to the configured CRS pair
        end_policy: Road-end sampling policy (defaults to settings.SAMPLE_END_POLICY)

    Returns:
        DataFrame with one row per accident and columns:
        - accident key columns, longitude, latitude
        - nearest_road: WKT of the nearest road (None if no road)
        - road_length: Length of the nearest road in projected units
        - curvature: Menger curvature (NaN when undefined)
    """
    geodesy = geodesy or Geodesy()
    columns = ACCIDENT_KEY_COLUMNS + ["longitude", "latitude", "nearest_road", "road_length", "curvature"]

    if around_roads.empty:
        logger.warning("No accidents with road data; nothing to compute")
        return pd.DataFrame(columns=columns)

    records = [
        _row_curvature(row, path_distance, geodesy, end_policy)
        for _, row in around_roads.iterrows()
    ]
    result = pd.DataFrame.from_records(records, columns=columns)

    n_null = int(result["curvature"].isna().sum())
    logger.info(
        f"✓ Computed curvature for {len(result)} accidents "
        f"({n_null} undefined, {len(result) - n_null} valid)"
    )
    return result


def label_headon(curvatures: pd.DataFrame, headon_keys: pd.DataFrame) -> pd.DataFrame:
    """
    Label each curvature row as head-on (1) or other collision (0).

    Rows with non-finite curvature are dropped first.

    Args:
        curvatures: Output of compute_road_curvatures
        headon_keys: Any table carrying the accident key columns of head-on collisions

    Returns:
        DataFrame with the key columns, curvature and integer headon column
    """
    finite = curvatures[np.isfinite(curvatures["curvature"].astype(float))]

    keys = headon_keys[ACCIDENT_KEY_COLUMNS].drop_duplicates().assign(headon=1)
    labeled = finite.merge(keys, on=ACCIDENT_KEY_COLUMNS, how="left")
    labeled["headon"] = labeled["headon"].fillna(0).astype(int)

    logger.info(
        f"Labeled {len(labeled)} curvatures: {int(labeled['headon'].sum())} head-on, "
        f"{int((labeled['headon'] == 0).sum())} other"
    )
    return labeled[ACCIDENT_KEY_COLUMNS + ["curvature", "headon"]]


def summarize_curvatures(values: Sequence[float]) -> dict:
    """Count of valid and undefined curvature values."""
    arr = np.asarray(values, dtype=float)
    return {
        "total": int(arr.size),
        "valid": int(np.isfinite(arr).sum()),
        "undefined": int((~np.isfinite(arr)).sum()),
    }
