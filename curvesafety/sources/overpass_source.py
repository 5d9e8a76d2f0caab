"""
OpenStreetMap Overpass road data source.

Queries the Overpass API for highway ways around a point and returns them
as Road polylines.

Overpass API Documentation: https://wiki.openstreetmap.org/wiki/Overpass_API
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
import logging
import time

import requests
from shapely.geometry import Point

from ..core.config import settings
from ..exceptions import FetchError, SourceConfigError
from ..models.geometry import GeoPoint, Road, WGS84
from ..services.geodesy import Geodesy
from .base import RoadDataSource, SourceHealthStatus, SourceMetadata

logger = logging.getLogger(__name__)


class OverpassRoadSource(RoadDataSource):
    """
    Road data source backed by the Overpass API.

    Free to use, no API key required (just a User-Agent header). Public
    instances rate-limit aggressively, which is why requests are retried
    with exponential backoff.
    """

    def _init_metadata(self) -> SourceMetadata:
        return SourceMetadata(
            name="overpass",
            version="1.0.0",
            description="OpenStreetMap highways via the Overpass API",
        )

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize Overpass source.

        Args:
            config: Configuration dictionary with keys:
                - api_url (str, optional): Interpreter endpoint
                - user_agent (str, optional): User-Agent header for API requests
                - timeout (int, optional): Request timeout in seconds
                - retry_attempts (int, optional): Number of attempts per request
                - retry_delay (float, optional): Base backoff delay in seconds
                - crop (bool, optional): Clip roads to the search circle (default: False)
        """
        super().__init__(config)

        self.api_url = self.config.get('api_url', settings.OVERPASS_API_URL)
        self.user_agent = self.config.get('user_agent', settings.OVERPASS_USER_AGENT)
        self.timeout = self.config.get('timeout', settings.OVERPASS_TIMEOUT)
        self.retry_attempts = self.config.get('retry_attempts', settings.OVERPASS_RETRY_ATTEMPTS)
        self.retry_delay = self.config.get('retry_delay', settings.OVERPASS_RETRY_DELAY)
        self.crop = self.config.get('crop', False)
        self.geodesy = self.config.get('geodesy') or Geodesy()

    def _validate_config(self) -> None:
        """Validate Overpass source configuration."""
        attempts = self.config.get('retry_attempts', settings.OVERPASS_RETRY_ATTEMPTS)
        if not isinstance(attempts, int) or attempts < 1:
            raise SourceConfigError(
                self.metadata.name,
                f"retry_attempts must be a positive integer, got {attempts!r}"
            )

        api_url = self.config.get('api_url', settings.OVERPASS_API_URL)
        if not str(api_url).startswith(('http://', 'https://')):
            raise SourceConfigError(self.metadata.name, f"Invalid api_url: '{api_url}'")

    def build_query(self, point: GeoPoint, radius: float) -> str:
        """Overpass QL query for highway ways within `radius` metres of `point`."""
        point = self.geodesy.transform(point, WGS84)
        return (
            f"[out:json][timeout:{self.timeout}];\n"
            f"way[\"highway\"](around:{radius},{point.latitude},{point.longitude});\n"
            f"out geom;"
        )

    def fetch_roads(self, point: GeoPoint, radius: float) -> List[Road]:
        """
        Fetch highway ways around a point.

        Raises:
            FetchError: If the request fails after all retries or the
                response cannot be decoded
        """
        query = self.build_query(point, radius)

        try:
            data = self._post_with_retry(query)
            roads = self.parse_roads(data)
        except requests.exceptions.RequestException as e:
            raise FetchError(self.metadata.name, f"Overpass request failed: {e}", original_error=e)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise FetchError(self.metadata.name, f"Invalid Overpass response: {e!r}", original_error=e)

        if self.crop:
            roads = self._crop(roads, point, radius)

        logger.debug(f"Fetched {len(roads)} roads around ({point.x:.6f}, {point.y:.6f})")
        return roads

    def _post_with_retry(self, query: str) -> Dict[str, Any]:
        for attempt in range(self.retry_attempts):
            try:
                response = requests.post(
                    self.api_url,
                    data={'data': query},
                    headers={'User-Agent': self.user_agent},
                    timeout=self.timeout,
                )
                response.raise_for_status()
                return response.json()

            except requests.exceptions.RequestException as e:
                logger.warning(f"Overpass request failed (attempt {attempt + 1}/{self.retry_attempts}): {e}")

                if attempt < self.retry_attempts - 1:
                    # Exponential backoff: 2s, 4s, 8s
                    delay = self.retry_delay * (2 ** attempt)
                    logger.debug(f"Retrying in {delay} seconds...")
                    time.sleep(delay)
                else:
                    # All retries exhausted
                    raise

    @staticmethod
    def parse_roads(data: Dict[str, Any]) -> List[Road]:
        """
        Convert an Overpass JSON response into roads.

        Ways without at least two geometry nodes are dropped.
        """
        roads = []
        for element in data.get('elements', []):
            if element.get('type') != 'way':
                continue
            coords = [(node['lon'], node['lat']) for node in element.get('geometry', []) if node]
            if len(coords) < 2:
                continue
            tags = element.get('tags', {})
            roads.append(Road(
                tuple(coords),
                WGS84,
                osm_id=element.get('id'),
                highway=tags.get('highway'),
            ))
        return roads

    def _crop(self, roads: List[Road], point: GeoPoint, radius: float) -> List[Road]:
        """Clip roads to the search circle, measured in the projected frame."""
        centre = self.geodesy.to_projected(point)
        circle = Point(centre.x, centre.y).buffer(radius)

        cropped = []
        for road in roads:
            clipped = self.geodesy.to_projected(road).to_shapely().intersection(circle)
            parts = getattr(clipped, 'geoms', [clipped])
            for part in parts:
                if part.geom_type != 'LineString' or part.is_empty:
                    continue
                piece = Road.from_shapely(part, self.geodesy.projected_crs, osm_id=road.osm_id, highway=road.highway)
                cropped.append(self.geodesy.transform(piece, road.crs))
        return cropped

    def health_check(self) -> SourceHealthStatus:
        """
        Check that the Overpass status endpoint answers.

        Returns:
            SourceHealthStatus with result and latency
        """
        status_url = self.api_url.rsplit('/', 1)[0] + '/status'
        start = time.time()
        try:
            response = requests.get(
                status_url,
                headers={'User-Agent': self.user_agent},
                timeout=5,
            )
            latency_ms = (time.time() - start) * 1000
            if response.status_code == 200:
                return SourceHealthStatus(
                    healthy=True,
                    message="Overpass API accessible",
                    last_check=datetime.now(),
                    latency_ms=latency_ms,
                )
            return SourceHealthStatus(
                healthy=False,
                message=f"Overpass API returned status {response.status_code}",
                last_check=datetime.now(),
                latency_ms=latency_ms,
            )
        except requests.exceptions.RequestException as e:
            return SourceHealthStatus(
                healthy=False,
                message=f"Connection failed: {e}",
                last_check=datetime.now(),
            )
