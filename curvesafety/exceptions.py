"""
Exception classes for curvature estimation and road data acquisition.
"""


class CurvesafetyError(Exception):
    """Base exception for all analysis errors."""

    pass


class GeometryError(CurvesafetyError):
    """
    Raised for malformed or too-short roads and unprojectable points.

    Curvature computation recovers this to a null result for the single
    accident it concerns.
    """

    pass


class DegenerateTriangleError(GeometryError):
    """
    Raised when two of the three sample points coincide.

    The Menger formula divides by the pairwise distances, so a duplicate
    sample point has no defined curvature.
    """

    def __init__(self, distances):
        self.distances = tuple(distances)
        super().__init__(f"Degenerate sample triangle, pairwise distances {self.distances}")


class FetchError(CurvesafetyError):
    """
    Raised when a road data source fails to return roads for a point.

    The batch fetcher catches this at batch granularity so that the
    remaining batches keep running.
    """

    def __init__(self, source_name: str, message: str, original_error: Exception = None):
        self.source_name = source_name
        self.original_error = original_error
        super().__init__(f"Source '{source_name}' fetch failed: {message}")


class SourceConfigError(CurvesafetyError):
    """
    Raised when a road data source has invalid or missing configuration.

    This is typically raised during source initialization.
    """

    def __init__(self, source_name: str, message: str):
        self.source_name = source_name
        super().__init__(f"Source '{source_name}' configuration error: {message}")
