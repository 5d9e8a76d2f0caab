"""
Resumable batch acquisition of road data around accident points.

Accident points are split into fixed-size batches. Each batch is fetched
and written to its own file before the next one starts, so an interrupted
or partially failed run loses at most the batch in flight. Batches whose
file already exists are not fetched again, which makes rerunning the whole
step safe.

Batch lifecycle: PENDING -> FETCHING -> PERSISTED | FAILED
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import pandas as pd

from ..core.config import settings
from ..exceptions import FetchError
from ..models.geometry import GeoPoint, Road
from ..sources.base import RoadDataSource
from .batch_storage import (
    ROAD_COUNT_COLUMN,
    ROAD_HIGHWAY_COLUMN,
    ROAD_WKT_COLUMN,
    BatchStorage,
    roads_to_columns,
)

logger = logging.getLogger(__name__)

MAIN_ROAD_TYPES = ("trunk", "motorway", "motorway_link")


class BatchStatus(str, Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    PERSISTED = "persisted"
    FAILED = "failed"


@dataclass
class BatchFetchRecord:
    """Outcome of one batch of a fetch run."""
    batch_index: int
    points: pd.DataFrame
    roads: List[List[Road]] = field(default_factory=list)
    status: BatchStatus = BatchStatus.PENDING
    path: Optional[str] = None
    error: Optional[FetchError] = None
    reused: bool = False  # persisted by an earlier run, not fetched now

    @property
    def ok(self) -> bool:
        return self.status == BatchStatus.PERSISTED


class RoadFetcher:
    """
    Fetches candidate roads for accident points in resumable batches.

    Example:
        fetcher = RoadFetcher(OverpassRoadSource(), BatchStorage("data/intermediate"))
        records = fetcher.run(accident_points)
        around_roads = fetcher.combine(records)
    """

    def __init__(
        self,
        source: RoadDataSource,
        storage: Optional[BatchStorage] = None,
        batch_size: Optional[int] = None,
        search_radius: Optional[float] = None,
    ):
        """
        Args:
            source: Road data source queried once per accident point
            storage: Batch file storage (defaults to settings-based BatchStorage)
            batch_size: Points per batch (defaults to settings.FETCH_BATCH_SIZE)
            search_radius: Search radius in metres (defaults to settings.ROAD_SEARCH_RADIUS)
        """
        self.source = source
        self.storage = storage or BatchStorage()
        self.batch_size = batch_size or settings.FETCH_BATCH_SIZE
        self.search_radius = settings.ROAD_SEARCH_RADIUS if search_radius is None else search_radius

    def partition(self, points: pd.DataFrame) -> List[pd.DataFrame]:
        """Split points into consecutive batches of `batch_size` rows."""
        points = points.reset_index(drop=True)
        n_batches = math.ceil(len(points) / self.batch_size)
        return [
            points.iloc[i * self.batch_size:(i + 1) * self.batch_size].reset_index(drop=True)
            for i in range(n_batches)
        ]

    def fetch_batch(self, batch: pd.DataFrame) -> List[List[Road]]:
        """
        Fetch roads for every point of a batch.

        Raises:
            FetchError: If any request of the batch fails
        """
        results = []
        for lon, lat in zip(batch["longitude"], batch["latitude"]):
            point = GeoPoint(float(lon), float(lat))
            results.append(self.source.fetch_roads(point, self.search_radius))
        return results

    def _to_frame(self, batch: pd.DataFrame, roads: List[List[Road]]) -> pd.DataFrame:
        frame = batch.copy()
        columns = [roads_to_columns(point_roads) for point_roads in roads]
        # One list per row; object Series keeps pandas from treating the lists as 2D data
        frame[ROAD_WKT_COLUMN] = pd.Series([wkts for wkts, _ in columns], index=frame.index, dtype=object)
        frame[ROAD_HIGHWAY_COLUMN] = pd.Series([hws for _, hws in columns], index=frame.index, dtype=object)
        frame[ROAD_COUNT_COLUMN] = [len(point_roads) for point_roads in roads]
        return frame

    def _process(self, batch_index: int, batch: pd.DataFrame) -> BatchFetchRecord:
        record = BatchFetchRecord(batch_index=batch_index, points=batch)

        if self.storage.exists(batch_index):
            record.status = BatchStatus.PERSISTED
            record.path = str(self.storage.batch_path(batch_index))
            record.reused = True
            logger.info(f"⊘ Batch {batch_index} already persisted, skipping")
            return record

        record.status = BatchStatus.FETCHING
        try:
            record.roads = self.fetch_batch(batch)
        except FetchError as e:
            record.status = BatchStatus.FAILED
            record.error = e
        except Exception as e:
            # Any source failure is confined to its batch
            record.status = BatchStatus.FAILED
            record.error = FetchError(self.source.metadata.name, repr(e), original_error=e)

        if record.status == BatchStatus.FAILED:
            logger.warning(f"⚠ Error in batch {batch_index}, skipping: {record.error}")
            return record

        record.path = self.storage.save_batch(self._to_frame(batch, record.roads), batch_index)
        record.status = BatchStatus.PERSISTED
        return record

    def run(self, points: pd.DataFrame) -> List[BatchFetchRecord]:
        """
        Fetch and persist every batch, strictly in order.

        A failing batch is logged and left without a file; the run continues
        with the next batch.

        Args:
            points: DataFrame with longitude and latitude columns plus any
                attributes (accident keys) to carry into the batch files

        Returns:
            One BatchFetchRecord per batch, in batch order (1-based indices)
        """
        batches = self.partition(points)
        self.storage.check_capacity(len(batches))

        records = []
        for batch_index, batch in enumerate(batches, start=1):
            logger.info(f"Processing batch: {batch_index}/{len(batches)}")
            records.append(self._process(batch_index, batch))

        n_failed = sum(1 for r in records if r.status == BatchStatus.FAILED)
        n_reused = sum(1 for r in records if r.reused)
        logger.info(
            f"✓ Fetch run finished: {len(records) - n_failed} persisted "
            f"({n_reused} from earlier runs), {n_failed} failed"
        )
        return records

    def combine(self, records: Optional[List[BatchFetchRecord]] = None) -> pd.DataFrame:
        """
        Rebuild the combined table from the batch files on disk.

        Rows without any road are dropped. The combined table is written to
        storage. Batch files are deleted afterwards unless a batch of
        `records` failed; they are then kept so a rerun only fetches the
        missing batches.

        Returns:
            Combined DataFrame
        """
        combined = self.storage.load_batches()
        if combined.empty:
            logger.warning("No persisted batches found to combine")
            return combined

        n_total = len(combined)
        combined = combined[combined[ROAD_COUNT_COLUMN] > 0].reset_index(drop=True)
        path = self.storage.save_combined(combined)
        logger.info(
            f"✓ Combined {len(combined)} records with roads "
            f"({n_total - len(combined)} without roads dropped) into {path}"
        )

        failed = [r.batch_index for r in (records or []) if r.status == BatchStatus.FAILED]
        if failed:
            logger.warning(f"⚠ Keeping batch files for resume; failed batches: {failed}")
        else:
            self.storage.delete_batches()

        return combined

    def fetch_and_combine(self, points: pd.DataFrame) -> pd.DataFrame:
        """Run all batches and combine the persisted ones."""
        return self.combine(self.run(points))

    def fetch_cluster_roads(
        self,
        point: GeoPoint,
        radius: Optional[float] = None,
    ) -> Dict[str, List[Road]]:
        """
        Roads around a cluster centroid, split into main and secondary roads.

        Main roads are trunk roads, motorways and motorway links.

        Raises:
            FetchError: If the source fails
        """
        radius = settings.CLUSTER_DETAIL_SEARCH_RADIUS if radius is None else radius
        roads = self.source.fetch_roads(point, radius)
        return {
            "main_roads": [r for r in roads if r.highway in MAIN_ROAD_TYPES],
            "secondary_roads": [r for r in roads if r.highway not in MAIN_ROAD_TYPES],
        }
