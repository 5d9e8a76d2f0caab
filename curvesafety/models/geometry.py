"""
Geometry value types used by the curvature engine.

Only two shapes exist: a point and a polyline road. Both carry the CRS
their coordinates are expressed in, so a value can never be silently mixed
with one from another frame.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from shapely import wkt
from shapely.geometry import LineString, Point

WGS84 = "EPSG:4326"

Coordinate = Tuple[float, float]


@dataclass(frozen=True)
class GeoPoint:
    """A single coordinate. For geographic frames x is longitude, y latitude."""

    x: float
    y: float
    crs: str = WGS84

    @property
    def longitude(self) -> float:
        return self.x

    @property
    def latitude(self) -> float:
        return self.y

    def to_shapely(self) -> Point:
        return Point(self.x, self.y)

    @classmethod
    def from_shapely(cls, point: Point, crs: str = WGS84) -> "GeoPoint":
        return cls(float(point.x), float(point.y), crs)


@dataclass(frozen=True)
class Road:
    """
    A road polyline.

    Attributes:
        coords: Ordered vertices as (x, y) tuples
        crs: Frame of the vertices
        osm_id: Source identifier, when the road came from OpenStreetMap
        highway: OSM highway class (e.g. 'trunk', 'residential')
    """

    coords: Tuple[Coordinate, ...]
    crs: str = WGS84
    osm_id: Optional[int] = None
    highway: Optional[str] = None

    def __post_init__(self):
        # Normalise any iterable of pairs into a hashable tuple of float tuples
        object.__setattr__(
            self, "coords", tuple((float(x), float(y)) for x, y in self.coords)
        )

    @property
    def is_empty(self) -> bool:
        return len(self.coords) == 0

    def to_shapely(self) -> LineString:
        return LineString(self.coords)

    def to_wkt(self) -> str:
        return self.to_shapely().wkt

    def with_coords(self, coords: Iterable[Coordinate], crs: Optional[str] = None) -> "Road":
        """Copy of this road with new vertices, keeping the OSM attributes."""
        return Road(tuple(coords), crs or self.crs, self.osm_id, self.highway)

    @classmethod
    def from_shapely(cls, line: LineString, crs: str = WGS84, **attrs) -> "Road":
        return cls(tuple(line.coords), crs, **attrs)

    @classmethod
    def from_wkt(cls, text: str, crs: str = WGS84, **attrs) -> "Road":
        geom = wkt.loads(text)
        if geom.geom_type != "LineString":
            raise ValueError(f"Expected a LINESTRING, got {geom.geom_type}")
        return cls.from_shapely(geom, crs, **attrs)
