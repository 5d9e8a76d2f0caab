"""
DBSCAN parameter sweep over accident locations.

Clustering runs on projected coordinates so that the radius is a ground
distance. Labels follow the convention 0 = noise, 1..n = clusters; the
numbering itself carries no meaning and may differ between configurations.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.cluster import DBSCAN

from ..core.config import settings
from .geodesy import Geodesy

logger = logging.getLogger(__name__)

NOISE = 0


def dbscan_labels(coords: np.ndarray, radius: float, min_pts: int) -> np.ndarray:
    """
    Run DBSCAN on planar coordinates.

    `min_pts` counts the point itself, so a point with `min_pts - 1`
    neighbours within `radius` is a core point.

    Returns:
        Integer labels with 0 for noise and 1..n for clusters
    """
    if len(coords) == 0:
        return np.zeros(0, dtype=int)
    labels = DBSCAN(eps=radius, min_samples=min_pts).fit_predict(coords)
    # sklearn marks noise as -1 and numbers clusters from 0
    return labels.astype(int) + 1


def projected_coords(points: pd.DataFrame, geodesy: Geodesy) -> np.ndarray:
    """(n, 2) array of projected coordinates from longitude/latitude columns."""
    xs, ys = geodesy.project_xy(points["longitude"].to_numpy(), points["latitude"].to_numpy())
    return np.column_stack([xs, ys])


class ClusterSweep:
    """
    Evaluates DBSCAN over a grid of (radius, min_pts) pairs.

    Example:
        sweep = ClusterSweep(radius_grid=[50, 30, 10], min_pts_grid=[3, 4, 5, 6])
        table = sweep.sweep(headon_points)
        clustered = sweep.select(10, 4)
    """

    def __init__(
        self,
        radius_grid: Optional[Iterable[float]] = None,
        min_pts_grid: Optional[Iterable[int]] = None,
        geodesy: Optional[Geodesy] = None,
        max_workers: int = 1,
    ):
        """
        Args:
            radius_grid: Neighbourhood radii in projected units (defaults to settings.DBSCAN_RADIUS_GRID)
            min_pts_grid: Minimum points values (defaults to settings.DBSCAN_MIN_PTS_GRID)
            geodesy: Frame adapter, defaults to the configured CRS pair
            max_workers: Threads used to evaluate grid cells. Cells share no
                state, so any value gives the same result.
        """
        self.radius_grid = list(radius_grid if radius_grid is not None else settings.DBSCAN_RADIUS_GRID)
        self.min_pts_grid = list(min_pts_grid if min_pts_grid is not None else settings.DBSCAN_MIN_PTS_GRID)
        if not self.radius_grid or not self.min_pts_grid:
            raise ValueError("radius_grid and min_pts_grid must not be empty")
        self.geodesy = geodesy or Geodesy()
        self.max_workers = max_workers

        self.points: Optional[pd.DataFrame] = None
        self.labels: Dict[Tuple[float, int], np.ndarray] = {}

    def grid(self) -> List[Tuple[float, int]]:
        """Cartesian product of the grids, radius-major."""
        return [(radius, min_pts) for radius in self.radius_grid for min_pts in self.min_pts_grid]

    def sweep(self, points: pd.DataFrame) -> pd.DataFrame:
        """
        Cluster `points` with every grid configuration.

        Args:
            points: DataFrame with longitude and latitude columns

        Returns:
            DataFrame with columns radius, min_pts, n_clusters, n_noise
            (one row per configuration, in grid order)
        """
        self.points = points.reset_index(drop=True)
        coords = projected_coords(self.points, self.geodesy)
        grid = self.grid()

        def run(params):
            radius, min_pts = params
            return dbscan_labels(coords, radius, min_pts)

        if self.max_workers > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                results = list(executor.map(run, grid))
        else:
            results = [run(params) for params in grid]

        self.labels = dict(zip(grid, results))

        rows = []
        for (radius, min_pts), labels in self.labels.items():
            n_clusters = len(set(labels.tolist()) - {NOISE})
            n_noise = int((labels == NOISE).sum())
            rows.append({
                "radius": radius,
                "min_pts": min_pts,
                "n_clusters": n_clusters,
                "n_noise": n_noise,
            })
            logger.info(f"DBSCAN radius={radius} min_pts={min_pts}: {n_clusters} clusters, {n_noise} noise points")

        return pd.DataFrame(rows, columns=["radius", "min_pts", "n_clusters", "n_noise"])

    def select(self, radius: float, min_pts: int) -> pd.DataFrame:
        """
        Clustering of one configuration with noise points removed.

        Returns:
            The swept points plus an integer `cluster` column (never 0)

        Raises:
            RuntimeError: If sweep() has not been run
            KeyError: If the configuration was not part of the sweep
        """
        if self.points is None:
            raise RuntimeError("sweep() must be called before select()")
        key = (radius, min_pts)
        if key not in self.labels:
            raise KeyError(f"Configuration radius={radius}, min_pts={min_pts} was not swept")

        clustered = self.points.assign(cluster=self.labels[key])
        return clustered[clustered["cluster"] != NOISE].reset_index(drop=True)


def cluster_points(
    points: pd.DataFrame,
    radius: float,
    min_pts: int,
    geodesy: Optional[Geodesy] = None,
) -> pd.DataFrame:
    """Cluster with a single configuration and drop noise points."""
    sweep = ClusterSweep([radius], [min_pts], geodesy)
    sweep.sweep(points)
    return sweep.select(radius, min_pts)


def cluster_centroids(clustered: pd.DataFrame, geodesy: Optional[Geodesy] = None) -> pd.DataFrame:
    """
    Centroid and size of every cluster.

    The centroid is the mean of the member points in the projected frame,
    converted back to longitude/latitude.

    Returns:
        DataFrame with columns cluster, longitude, latitude, n_accidents and,
        when the input has it, prefecture (most frequent among members)
    """
    geodesy = geodesy or Geodesy()
    columns = ["cluster", "longitude", "latitude", "n_accidents"]
    has_prefecture = "prefecture" in clustered.columns
    if has_prefecture:
        columns.append("prefecture")
    if clustered.empty:
        return pd.DataFrame(columns=columns)

    coords = projected_coords(clustered, geodesy)
    frame = pd.DataFrame({
        "cluster": clustered["cluster"].to_numpy(),
        "x": coords[:, 0],
        "y": coords[:, 1],
    })
    summary = frame.groupby("cluster").agg(
        x=("x", "mean"), y=("y", "mean"), n_accidents=("x", "size")
    ).reset_index()

    lon, lat = geodesy.unproject_xy(summary["x"].to_numpy(), summary["y"].to_numpy())
    summary["longitude"] = lon
    summary["latitude"] = lat

    if has_prefecture:
        modal = clustered.groupby("cluster")["prefecture"].agg(lambda s: s.value_counts().index[0])
        summary["prefecture"] = summary["cluster"].map(modal)

    return summary[columns]
