"""
Unit tests for the resumable batch road fetcher.

Tests cover:
- Partitioning into batches
- Failure isolation per batch
- Resuming a run without duplicating persisted batches
- Combine filtering and cleanup
- Cluster road classification
"""

from unittest.mock import Mock, patch

import pandas as pd
import pytest
import requests

from curvesafety.services.batch_storage import BatchStorage
from curvesafety.services.road_fetcher import BatchStatus, RoadFetcher
from curvesafety.models.geometry import GeoPoint, Road
from curvesafety.sources.overpass_source import OverpassRoadSource
from test_mock_source import (
    MockRoadSource,
    MockFailingSource,
    MockEmptySource,
    make_points,
)


@pytest.fixture
def storage(tmp_path):
    return BatchStorage(str(tmp_path), prefix="around_roads", index_width=2)


class TestPartition:
    """Test batch partitioning."""

    def test_partition_sizes(self, storage):
        """Test points are split into consecutive batches."""
        fetcher = RoadFetcher(MockRoadSource(), storage, batch_size=3)
        batches = fetcher.partition(make_points(7))

        assert [len(b) for b in batches] == [3, 3, 1]
        assert batches[1]['report_number'].tolist() == [4, 5, 6]

    def test_partition_empty(self, storage):
        """Test no batches for no points."""
        fetcher = RoadFetcher(MockRoadSource(), storage, batch_size=3)
        assert fetcher.partition(make_points(0)) == []

    def test_too_many_batches_for_index_width(self, storage):
        """Test a run refuses batch counts the file names cannot order."""
        fetcher = RoadFetcher(MockRoadSource(), storage, batch_size=1)

        with pytest.raises(ValueError):
            fetcher.run(make_points(100))


class TestRun:
    """Test fetch runs."""

    def test_all_batches_persisted(self, storage):
        """Test a clean run persists one file per batch."""
        fetcher = RoadFetcher(MockRoadSource(), storage, batch_size=2)
        records = fetcher.run(make_points(5))

        assert [r.batch_index for r in records] == [1, 2, 3]
        assert all(r.status == BatchStatus.PERSISTED for r in records)
        assert [p.name for p in storage.list_batches()] == [
            "around_roads-01.parquet",
            "around_roads-02.parquet",
            "around_roads-03.parquet",
        ]

    def test_failed_batch_does_not_abort_run(self, storage):
        """Test a failing batch is marked failed and later batches still run."""
        points = make_points(10)
        # Batch 3 holds rows 4 and 5
        source = MockFailingSource(points['longitude'].iloc[4:6])
        fetcher = RoadFetcher(source, storage, batch_size=2)

        records = fetcher.run(points)

        assert [r.status for r in records] == [
            BatchStatus.PERSISTED,
            BatchStatus.PERSISTED,
            BatchStatus.FAILED,
            BatchStatus.PERSISTED,
            BatchStatus.PERSISTED,
        ]
        assert records[2].error is not None
        assert records[2].error.source_name == "mock_failing"
        assert not storage.exists(3)

    def test_failed_batch_is_logged(self, storage, caplog):
        """Test the warning names the failing batch index."""
        points = make_points(4)
        source = MockFailingSource(points['longitude'].iloc[2:3])
        fetcher = RoadFetcher(source, storage, batch_size=2)

        with caplog.at_level("WARNING"):
            fetcher.run(points)

        assert "batch 2" in caplog.text

    def test_request_exception_marks_batch_failed(self, storage):
        """Test raw requests errors are contained at batch granularity."""
        class BrokenSource(MockRoadSource):
            def fetch_roads(self, point, radius):
                raise requests.exceptions.ConnectionError("connection reset")

        fetcher = RoadFetcher(BrokenSource(), storage, batch_size=2)
        records = fetcher.run(make_points(2))

        assert records[0].status == BatchStatus.FAILED
        assert isinstance(records[0].error.original_error, requests.exceptions.ConnectionError)

    def test_unexpected_source_error_marks_batch_failed(self, storage):
        """Test errors outside the FetchError family stay inside their batch."""
        points = make_points(3)
        bad_longitude = round(points['longitude'].iloc[1], 6)

        class ShapeErrorSource(MockRoadSource):
            def fetch_roads(self, point, radius):
                if round(point.x, 6) == bad_longitude:
                    raise KeyError('lon')
                return super().fetch_roads(point, radius)

        fetcher = RoadFetcher(ShapeErrorSource(), storage, batch_size=1)
        records = fetcher.run(points)

        assert [r.status for r in records] == [
            BatchStatus.PERSISTED,
            BatchStatus.FAILED,
            BatchStatus.PERSISTED,
        ]
        assert isinstance(records[1].error.original_error, KeyError)

    @patch('curvesafety.sources.overpass_source.requests.post')
    def test_malformed_overpass_payload_fails_only_its_batch(self, mock_post, storage):
        """Test a broken Overpass response in the middle batch does not stop the run."""
        def way(lon, lat):
            return {
                'type': 'way',
                'id': 1,
                'tags': {'highway': 'primary'},
                'geometry': [{'lat': lat, 'lon': lon - 0.001}, {'lat': lat, 'lon': lon + 0.001}],
            }

        def response(payload):
            resp = Mock()
            resp.raise_for_status.return_value = None
            resp.json.return_value = payload
            return resp

        mock_post.side_effect = [
            response({'elements': [way(135.0, 34.7)]}),
            response({'elements': [{'type': 'way', 'id': 2, 'geometry': [{'lat': 34.7}, {'lat': 34.8}]}]}),
            response({'elements': [way(135.02, 34.7)]}),
        ]
        fetcher = RoadFetcher(OverpassRoadSource(), storage, batch_size=1)

        records = fetcher.run(make_points(3))

        assert [r.status for r in records] == [
            BatchStatus.PERSISTED,
            BatchStatus.FAILED,
            BatchStatus.PERSISTED,
        ]
        assert records[1].error.source_name == "overpass"
        assert mock_post.call_count == 3

    def test_search_radius_passed_to_source(self, storage):
        """Test the configured radius reaches the source."""
        radii = []

        class RecordingSource(MockRoadSource):
            def fetch_roads(self, point, radius):
                radii.append(radius)
                return super().fetch_roads(point, radius)

        fetcher = RoadFetcher(RecordingSource(), storage, batch_size=2, search_radius=20)
        fetcher.run(make_points(2))

        assert radii == [20, 20]


class TestResume:
    """Test rerunning after a partial failure."""

    def test_rerun_adds_failed_batch_without_duplicates(self, storage):
        """Test 5 batches with batch 3 failing, then a rerun after the fix."""
        points = make_points(10)
        source = MockFailingSource(points['longitude'].iloc[4:6])
        fetcher = RoadFetcher(source, storage, batch_size=2)

        first = fetcher.combine(fetcher.run(points))

        assert sorted(first['report_number']) == [1, 2, 3, 4, 7, 8, 9, 10]
        # Batch files stay on disk so the rerun can resume
        assert len(storage.list_batches()) == 4

        source.broken = False
        source.calls.clear()
        records = fetcher.run(points)
        second = fetcher.combine(records)

        assert [r.reused for r in records] == [True, True, False, True, True]
        assert len(source.calls) == 2
        assert sorted(second['report_number']) == list(range(1, 11))
        assert second['report_number'].is_unique
        assert storage.list_batches() == []

    def test_rerun_after_success_fetches_nothing(self, storage):
        """Test already persisted batches are not fetched again."""
        source = MockRoadSource()
        fetcher = RoadFetcher(source, storage, batch_size=2)
        fetcher.run(make_points(4))
        source.calls.clear()

        records = fetcher.run(make_points(4))

        assert source.calls == []
        assert all(r.reused for r in records)


class TestCombine:
    """Test combining persisted batches."""

    def test_combine_drops_points_without_roads(self, storage):
        """Test rows with zero fetched roads are removed."""
        points = make_points(4)
        source = MockEmptySource(points['longitude'].iloc[[1]])
        fetcher = RoadFetcher(source, storage, batch_size=2)

        combined = fetcher.fetch_and_combine(points)

        assert sorted(combined['report_number']) == [1, 3, 4]
        assert (combined['road_count'] > 0).all()

    def test_combine_writes_combined_file_and_cleans_up(self, storage):
        """Test combined output is persisted and batch files removed."""
        fetcher = RoadFetcher(MockRoadSource(), storage, batch_size=2)
        combined = fetcher.fetch_and_combine(make_points(3))

        assert storage.combined_path.exists()
        assert len(storage.load_combined()) == len(combined) == 3
        assert storage.list_batches() == []

    def test_combine_keeps_row_order_by_batch(self, storage):
        """Test the combined table follows batch order."""
        fetcher = RoadFetcher(MockRoadSource(), storage, batch_size=2)
        combined = fetcher.fetch_and_combine(make_points(5))

        assert combined['report_number'].tolist() == [1, 2, 3, 4, 5]

    def test_combine_with_nothing_persisted(self, storage):
        """Test combine returns an empty frame when no batch exists."""
        fetcher = RoadFetcher(MockRoadSource(), storage, batch_size=2)
        combined = fetcher.combine([])

        assert combined.empty
        assert not storage.combined_path.exists()

    def test_combined_roads_readable(self, storage):
        """Test stored roads keep their WKT and highway class."""
        fetcher = RoadFetcher(MockRoadSource(), storage, batch_size=2)
        combined = fetcher.fetch_and_combine(make_points(1))

        assert list(combined['road_wkt'].iloc[0])[0].startswith("LINESTRING")
        assert list(combined['road_highway'].iloc[0]) == ["primary"]


class TestClusterRoads:
    """Test main/secondary road classification around a cluster."""

    def test_fetch_cluster_roads_classification(self, storage):
        """Test trunk and motorway roads count as main roads."""
        roads = [
            Road(((135.0, 34.7), (135.001, 34.7)), highway="trunk"),
            Road(((135.0, 34.7), (135.0, 34.701)), highway="motorway_link"),
            Road(((135.0, 34.7), (134.999, 34.7)), highway="residential"),
        ]
        captured = {}

        class FixedSource(MockRoadSource):
            def fetch_roads(self, point, radius):
                captured['radius'] = radius
                return roads

        fetcher = RoadFetcher(FixedSource(), storage)
        result = fetcher.fetch_cluster_roads(GeoPoint(135.0, 34.7))

        assert captured['radius'] == 100
        assert [r.highway for r in result['main_roads']] == ["trunk", "motorway_link"]
        assert [r.highway for r in result['secondary_roads']] == ["residential"]
