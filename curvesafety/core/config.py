from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Analysis configuration loaded from environment variables.
    """

    # Project metadata
    PROJECT_NAME: str = "Curve Safety Analysis"
    VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Working directory for batch files and intermediate tables
    INTERMEDIATE_DATA_DIR: str = Field(
        "data/intermediate",
        description="Directory holding batch files and intermediate parquet tables"
    )

    # Coordinate reference systems
    GEOGRAPHIC_CRS: str = Field(
        "EPSG:4326",
        description="Frame accident points and roads are stored in"
    )
    PROJECTED_CRS: str = Field(
        "EPSG:3395",
        description="Planar frame used for every length/area computation"
    )

    # Curvature estimation settings
    PATH_DISTANCE: float = Field(
        default=50.0, description="Arc-length offset of the outer sample points (projected units)"
    )
    SAMPLE_END_POLICY: str = Field(
        default="clamp",
        description="What to do when a sample offset leaves the road: 'clamp' or 'null'"
    )
    SNAP_TOLERANCE: float = Field(
        default=1e-3, description="Max distance (projected units) of a cut point from the road"
    )

    # DBSCAN sweep settings
    DBSCAN_RADIUS_GRID: List[float] = Field(
        default_factory=lambda: [50.0, 30.0, 10.0],
        description="Neighborhood radii evaluated by the cluster sweep"
    )
    DBSCAN_MIN_PTS_GRID: List[int] = Field(
        default_factory=lambda: [3, 4, 5, 6],
        description="Minimum-points values evaluated by the cluster sweep"
    )
    SELECTED_RADIUS: float = Field(default=10.0, description="Operating point radius")
    SELECTED_MIN_PTS: int = Field(default=4, description="Operating point minimum points")

    # Road fetch settings
    ROAD_SEARCH_RADIUS: float = Field(
        default=20.0, description="Search radius (m) for roads around an accident point"
    )
    CLUSTER_DETAIL_SEARCH_RADIUS: float = Field(
        default=100.0, description="Search radius (m) for roads around a cluster centroid"
    )
    FETCH_BATCH_SIZE: int = Field(default=100, description="Accident points per fetch batch")
    BATCH_FILE_PREFIX: str = "around_roads"
    BATCH_INDEX_WIDTH: int = Field(
        default=2, description="Zero padding of the batch index in batch file names"
    )

    # Overpass API configuration
    OVERPASS_API_URL: str = "https://overpass-api.de/api/interpreter"
    OVERPASS_TIMEOUT: int = Field(default=60, description="Request timeout (seconds)")
    OVERPASS_RETRY_ATTEMPTS: int = Field(default=3, description="Attempts per batch request")
    OVERPASS_RETRY_DELAY: float = Field(default=2.0, description="Base backoff delay (seconds)")
    OVERPASS_USER_AGENT: str = "CurveSafety/0.1 (road curvature research)"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Allow extra fields from .env
    )

    @field_validator("SAMPLE_END_POLICY")
    @classmethod
    def _check_end_policy(cls, v: str) -> str:
        if v not in ("clamp", "null"):
            raise ValueError(f"SAMPLE_END_POLICY must be 'clamp' or 'null', got '{v}'")
        return v

    @field_validator("DBSCAN_RADIUS_GRID", "DBSCAN_MIN_PTS_GRID")
    @classmethod
    def _non_empty_grid(cls, v: list) -> list:
        if not v:
            raise ValueError("DBSCAN parameter grids must not be empty")
        return v

    @field_validator("BATCH_INDEX_WIDTH", "FETCH_BATCH_SIZE")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be >= 1")
        return v


# Export a singleton for easy import
settings = Settings()
