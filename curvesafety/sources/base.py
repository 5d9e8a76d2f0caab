"""
Abstract base class for road data sources.

Any service that can return the road polylines around a point implements
this interface so the batch fetcher can use it.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from ..models.geometry import GeoPoint, Road


class SourceMetadata(BaseModel):
    """
    Metadata describing a road data source.

    Attributes:
        name: Unique identifier for the source
        version: Source adapter version
        description: Human-readable description
    """

    model_config = ConfigDict(frozen=True)

    name: str
    version: str = "1.0.0"
    description: str


class SourceHealthStatus(BaseModel):
    """
    Result of a source health check.

    Attributes:
        healthy: Whether the source is reachable
        message: Human-readable status message
        last_check: Timestamp of the health check
        latency_ms: Response time in milliseconds (optional)
    """

    healthy: bool
    message: str
    last_check: datetime
    latency_ms: Optional[float] = None


class RoadDataSource(ABC):
    """
    Abstract base class for all road data sources.

    Example:
        class StaticSource(RoadDataSource):
            def _init_metadata(self):
                return SourceMetadata(name="static", description="Fixed roads")

            def fetch_roads(self, point, radius):
                return self.config["roads"]

            def health_check(self):
                return SourceHealthStatus(healthy=True, message="ok", last_check=datetime.now())
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize source with configuration.

        Args:
            config: Source-specific configuration dictionary

        Raises:
            SourceConfigError: If configuration is invalid
        """
        self.config = config or {}
        self.metadata = self._init_metadata()
        self._validate_config()

    @abstractmethod
    def _init_metadata(self) -> SourceMetadata:
        """Return source metadata."""
        pass

    @abstractmethod
    def fetch_roads(self, point: GeoPoint, radius: float) -> List[Road]:
        """
        Return the roads within `radius` metres of `point`.

        Args:
            point: Geographic search centre
            radius: Search radius in metres

        Returns:
            Zero or more road polylines in geographic coordinates

        Raises:
            FetchError: If the source cannot be queried
        """
        pass

    @abstractmethod
    def health_check(self) -> SourceHealthStatus:
        """
        Verify the source is reachable.

        Should NOT raise exceptions (return unhealthy status instead).
        """
        pass

    def _validate_config(self) -> None:
        """
        Validate source configuration.

        Override this method to add source-specific validation.
        Raise SourceConfigError if configuration is invalid.
        """
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name='{self.metadata.name}')>"
