"""
Geodesy adapter: moves geometries between the geographic frame roads and
accidents are stored in and the planar frame all distances are measured in.
"""

from functools import lru_cache
from typing import Optional, Sequence, Tuple, TypeVar, Union

import numpy as np
from pyproj import Transformer

from ..core.config import settings
from ..models.geometry import GeoPoint, Road

Geometry = TypeVar("Geometry", GeoPoint, Road)


@lru_cache(maxsize=32)
def _transformer(source_crs: str, target_crs: str) -> Transformer:
    # always_xy keeps (longitude, latitude) order regardless of the CRS axis definition
    return Transformer.from_crs(source_crs, target_crs, always_xy=True)


class Geodesy:
    """
    Converts geometries between a geographic and a projected CRS.

    Example:
        geodesy = Geodesy(projected_crs="EPSG:3395")
        road_m = geodesy.to_projected(road)
        length = road_m.to_shapely().length
    """

    def __init__(
        self,
        geographic_crs: Optional[str] = None,
        projected_crs: Optional[str] = None,
    ):
        self.geographic_crs = geographic_crs or settings.GEOGRAPHIC_CRS
        self.projected_crs = projected_crs or settings.PROJECTED_CRS

    def transform(self, geom: Geometry, target_crs: str) -> Geometry:
        """Return `geom` expressed in `target_crs`."""
        if geom.crs == target_crs:
            return geom

        transformer = _transformer(geom.crs, target_crs)
        if isinstance(geom, GeoPoint):
            x, y = transformer.transform(geom.x, geom.y)
            return GeoPoint(float(x), float(y), target_crs)

        if geom.is_empty:
            return geom.with_coords((), target_crs)
        xs, ys = zip(*geom.coords)
        px, py = transformer.transform(xs, ys)
        return geom.with_coords(zip(px, py), target_crs)

    def to_projected(self, geom: Geometry) -> Geometry:
        return self.transform(geom, self.projected_crs)

    def to_geographic(self, geom: Geometry) -> Geometry:
        return self.transform(geom, self.geographic_crs)

    def project_xy(
        self,
        xs: Union[Sequence[float], np.ndarray],
        ys: Union[Sequence[float], np.ndarray],
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Vectorised geographic -> projected transform for coordinate arrays."""
        transformer = _transformer(self.geographic_crs, self.projected_crs)
        px, py = transformer.transform(np.asarray(xs, dtype=float), np.asarray(ys, dtype=float))
        return np.asarray(px), np.asarray(py)

    def unproject_xy(
        self,
        xs: Union[Sequence[float], np.ndarray],
        ys: Union[Sequence[float], np.ndarray],
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Vectorised projected -> geographic transform for coordinate arrays."""
        transformer = _transformer(self.projected_crs, self.geographic_crs)
        gx, gy = transformer.transform(np.asarray(xs, dtype=float), np.asarray(ys, dtype=float))
        return np.asarray(gx), np.asarray(gy)

    def __repr__(self) -> str:
        return f"<Geodesy({self.geographic_crs} <-> {self.projected_crs})>"
