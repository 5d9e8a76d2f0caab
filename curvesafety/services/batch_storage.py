"""
Parquet storage for road fetch batches.

Each batch is written to its own file named with a zero-padded batch index,
so that ordering by file name equals ordering by batch index. The combined
table is rebuilt by rescanning the directory rather than from memory.
"""

import logging
import re
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import pandas as pd

from ..core.config import settings
from ..models.geometry import Road, WGS84

logger = logging.getLogger(__name__)

ROAD_WKT_COLUMN = "road_wkt"
ROAD_HIGHWAY_COLUMN = "road_highway"
ROAD_COUNT_COLUMN = "road_count"


def roads_to_columns(roads: Sequence[Road]) -> Tuple[List[str], List[Optional[str]]]:
    """Split a road list into the WKT and highway values stored per row."""
    return [road.to_wkt() for road in roads], [road.highway for road in roads]


def roads_from_columns(
    wkts: Optional[Sequence[str]],
    highways: Optional[Sequence[Optional[str]]] = None,
    crs: str = WGS84,
) -> List[Road]:
    """Rebuild Road objects from the stored WKT/highway values of one row."""
    if wkts is None:
        return []
    wkts = list(wkts)
    highways = list(highways) if highways is not None else [None] * len(wkts)
    return [
        Road.from_wkt(text, crs, highway=highway)
        for text, highway in zip(wkts, highways)
    ]


class BatchStorage:
    """
    Service for managing per-batch Parquet files and the combined table.

    Example:
        storage = BatchStorage("data/intermediate", prefix="around_roads")
        storage.save_batch(batch_df, 3)    # -> around_roads-03.parquet
        combined = storage.load_batches()
    """

    def __init__(
        self,
        storage_path: Optional[str] = None,
        prefix: Optional[str] = None,
        index_width: Optional[int] = None,
    ):
        """
        Initialize batch storage.

        Args:
            storage_path: Directory for batch files (defaults to settings.INTERMEDIATE_DATA_DIR)
            prefix: File name prefix (defaults to settings.BATCH_FILE_PREFIX)
            index_width: Zero padding of the batch index (defaults to settings.BATCH_INDEX_WIDTH)
        """
        self.base_path = Path(storage_path or settings.INTERMEDIATE_DATA_DIR)
        self.prefix = prefix or settings.BATCH_FILE_PREFIX
        self.index_width = index_width or settings.BATCH_INDEX_WIDTH
        self._pattern = re.compile(
            rf"^{re.escape(self.prefix)}-\d{{{self.index_width}}}\.parquet$"
        )

        # Create directory if it doesn't exist
        self.base_path.mkdir(parents=True, exist_ok=True)

    @property
    def combined_path(self) -> Path:
        return self.base_path / f"{self.prefix}.parquet"

    def max_batches(self) -> int:
        """Largest batch index whose name keeps the fixed width."""
        return 10 ** self.index_width - 1

    def check_capacity(self, n_batches: int) -> None:
        """
        Raises:
            ValueError: If `n_batches` indices do not fit the configured width
        """
        if n_batches > self.max_batches():
            raise ValueError(
                f"{n_batches} batches need more than {self.index_width} index digits; "
                f"increase BATCH_INDEX_WIDTH"
            )

    def batch_path(self, batch_index: int) -> Path:
        return self.base_path / f"{self.prefix}-{batch_index:0{self.index_width}d}.parquet"

    def exists(self, batch_index: int) -> bool:
        return self.batch_path(batch_index).exists()

    def save_batch(self, dataframe: pd.DataFrame, batch_index: int) -> str:
        """
        Save one fetched batch.

        Returns:
            Path to saved file
        """
        filepath = self.batch_path(batch_index)
        # Write to a temp name first so a crash never leaves a half-written batch behind
        tmp_path = filepath.with_name(filepath.name + ".tmp")
        dataframe.to_parquet(tmp_path, engine='pyarrow', index=False, compression='snappy')
        tmp_path.replace(filepath)

        logger.debug(f"Saved batch {batch_index} ({len(dataframe)} rows) to {filepath}")
        return str(filepath)

    def list_batches(self) -> List[Path]:
        """Batch files present on disk, in batch index order."""
        return sorted(
            (p for p in self.base_path.iterdir() if p.is_file() and self._pattern.match(p.name)),
            key=lambda p: p.name,
        )

    def load_batches(self) -> pd.DataFrame:
        """Read and concatenate every batch file on disk."""
        dataframes = [
            pd.read_parquet(filepath, engine='pyarrow')
            for filepath in self.list_batches()
        ]
        if not dataframes:
            return pd.DataFrame()
        return pd.concat(dataframes, ignore_index=True)

    def save_combined(self, dataframe: pd.DataFrame) -> str:
        """Write the combined table. Returns the path written."""
        dataframe.to_parquet(self.combined_path, engine='pyarrow', index=False, compression='snappy')
        return str(self.combined_path)

    def load_combined(self) -> pd.DataFrame:
        if not self.combined_path.exists():
            return pd.DataFrame()
        return pd.read_parquet(self.combined_path, engine='pyarrow')

    def delete_batches(self) -> int:
        """Remove all batch files. Returns the number of files deleted."""
        paths = self.list_batches()
        for filepath in paths:
            filepath.unlink()
        logger.info(f"✓ Deleted {len(paths)} batch files from {self.base_path}")
        return len(paths)
