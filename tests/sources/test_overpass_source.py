"""
Unit tests for the Overpass road data source.

Tests the Overpass source with mocked API responses.
"""

import pytest
from unittest.mock import Mock, patch
import requests

from curvesafety.exceptions import FetchError, SourceConfigError
from curvesafety.models.geometry import GeoPoint
from curvesafety.services.geodesy import Geodesy
from curvesafety.sources.overpass_source import OverpassRoadSource


def overpass_response():
    return {
        'version': 0.6,
        'elements': [
            {
                'type': 'way',
                'id': 1001,
                'tags': {'highway': 'trunk', 'name': 'Route 1'},
                'geometry': [
                    {'lat': 34.7000, 'lon': 135.0000},
                    {'lat': 34.7005, 'lon': 135.0005},
                    {'lat': 34.7010, 'lon': 135.0008},
                ],
            },
            {
                'type': 'way',
                'id': 1002,
                'tags': {'highway': 'service'},
                'geometry': [{'lat': 34.7, 'lon': 135.0}],
            },
            {
                'type': 'node',
                'id': 5,
                'lat': 34.7,
                'lon': 135.0,
            },
        ],
    }


def mock_response(payload=None, status_code=200):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload if payload is not None else overpass_response()
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status_code} Error")
    else:
        response.raise_for_status.return_value = None
    return response


class TestOverpassSourceInitialization:
    """Tests for Overpass source initialization."""

    def test_initialization_with_defaults(self):
        """Test source can be initialized without configuration."""
        source = OverpassRoadSource()

        assert source.metadata.name == "overpass"
        assert source.api_url.startswith("https://")
        assert source.retry_attempts == 3
        assert source.crop is False

    def test_initialization_with_full_config(self):
        """Test all configuration options are applied."""
        source = OverpassRoadSource({
            'api_url': 'https://overpass.example.org/api/interpreter',
            'user_agent': 'Test/1.0',
            'timeout': 5,
            'retry_attempts': 5,
            'retry_delay': 0.5,
            'crop': True,
        })

        assert source.api_url == 'https://overpass.example.org/api/interpreter'
        assert source.user_agent == 'Test/1.0'
        assert source.timeout == 5
        assert source.retry_attempts == 5
        assert source.retry_delay == 0.5
        assert source.crop is True

    def test_invalid_retry_attempts_raises_error(self):
        """Test non-positive retry counts are rejected."""
        with pytest.raises(SourceConfigError) as exc_info:
            OverpassRoadSource({'retry_attempts': 0})

        assert exc_info.value.source_name == "overpass"

    def test_invalid_api_url_raises_error(self):
        """Test non-HTTP endpoints are rejected."""
        with pytest.raises(SourceConfigError) as exc_info:
            OverpassRoadSource({'api_url': 'ftp://example.org'})

        assert "Invalid api_url" in str(exc_info.value)


class TestOverpassQuery:
    """Tests for query construction and response parsing."""

    def test_build_query_uses_lat_lon_order(self):
        """Test the around filter receives radius, latitude, longitude."""
        source = OverpassRoadSource({'timeout': 25})
        query = source.build_query(GeoPoint(135.5, 34.7), 20)

        assert "[out:json][timeout:25]" in query
        assert "around:20,34.7,135.5" in query
        assert "out geom" in query

    def test_parse_roads(self):
        """Test ways become roads and unusable elements are dropped."""
        roads = OverpassRoadSource.parse_roads(overpass_response())

        assert len(roads) == 1
        assert roads[0].osm_id == 1001
        assert roads[0].highway == 'trunk'
        assert roads[0].coords[0] == (135.0, 34.7)
        assert len(roads[0].coords) == 3

    def test_parse_empty_response(self):
        """Test a response without elements yields no roads."""
        assert OverpassRoadSource.parse_roads({}) == []


class TestOverpassFetch:
    """Tests for fetching with mocked HTTP."""

    @patch('curvesafety.sources.overpass_source.requests.post')
    def test_fetch_roads_success(self, mock_post):
        """Test a successful request returns parsed roads."""
        mock_post.return_value = mock_response()
        source = OverpassRoadSource()

        roads = source.fetch_roads(GeoPoint(135.0, 34.7), 20)

        assert len(roads) == 1
        args, kwargs = mock_post.call_args
        assert 'around:20' in kwargs['data']['data']
        assert kwargs['headers']['User-Agent'] == source.user_agent

    @patch('curvesafety.sources.overpass_source.time.sleep')
    @patch('curvesafety.sources.overpass_source.requests.post')
    def test_fetch_retries_then_succeeds(self, mock_post, mock_sleep):
        """Test transient errors are retried with backoff."""
        mock_post.side_effect = [
            requests.exceptions.Timeout("timed out"),
            mock_response(),
        ]
        source = OverpassRoadSource({'retry_attempts': 3, 'retry_delay': 2})

        roads = source.fetch_roads(GeoPoint(135.0, 34.7), 20)

        assert len(roads) == 1
        assert mock_post.call_count == 2
        mock_sleep.assert_called_once_with(2)

    @patch('curvesafety.sources.overpass_source.time.sleep')
    @patch('curvesafety.sources.overpass_source.requests.post')
    def test_fetch_raises_fetch_error_after_retries(self, mock_post, mock_sleep):
        """Test exhausted retries surface as FetchError."""
        mock_post.return_value = mock_response(status_code=429)
        source = OverpassRoadSource({'retry_attempts': 3, 'retry_delay': 1})

        with pytest.raises(FetchError) as exc_info:
            source.fetch_roads(GeoPoint(135.0, 34.7), 20)

        assert mock_post.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1, 2]
        assert isinstance(exc_info.value.original_error, requests.exceptions.HTTPError)

    @patch('curvesafety.sources.overpass_source.requests.post')
    def test_fetch_malformed_response_raises_fetch_error(self, mock_post):
        """Test way nodes without coordinates surface as FetchError."""
        mock_post.return_value = mock_response({
            'elements': [{
                'type': 'way',
                'id': 8,
                'geometry': [{'lat': 34.7}, {'lat': 34.8}],
            }]
        })
        source = OverpassRoadSource()

        with pytest.raises(FetchError) as exc_info:
            source.fetch_roads(GeoPoint(135.0, 34.7), 20)

        assert isinstance(exc_info.value.original_error, KeyError)
        assert "Invalid Overpass response" in str(exc_info.value)

    @patch('curvesafety.sources.overpass_source.requests.post')
    def test_fetch_with_crop_clips_to_circle(self, mock_post):
        """Test cropping keeps only the part of a road inside the search circle."""
        geodesy = Geodesy(projected_crs="EPSG:3395")
        mock_post.return_value = mock_response({
            'elements': [{
                'type': 'way',
                'id': 7,
                'tags': {'highway': 'primary'},
                'geometry': [{'lat': 34.7, 'lon': 134.99}, {'lat': 34.7, 'lon': 135.01}],
            }]
        })
        source = OverpassRoadSource({'crop': True, 'geodesy': geodesy})

        roads = source.fetch_roads(GeoPoint(135.0, 34.7), 100)

        assert len(roads) == 1
        cropped = geodesy.to_projected(roads[0]).to_shapely()
        assert cropped.length == pytest.approx(200, rel=1e-3)
        assert roads[0].osm_id == 7


class TestOverpassHealthCheck:
    """Tests for the health check."""

    @patch('curvesafety.sources.overpass_source.requests.get')
    def test_health_check_healthy(self, mock_get):
        """Test a 200 status endpoint reports healthy."""
        mock_get.return_value = mock_response(status_code=200)
        status = OverpassRoadSource().health_check()

        assert status.healthy is True
        assert mock_get.call_args.args[0].endswith('/api/status')

    @patch('curvesafety.sources.overpass_source.requests.get')
    def test_health_check_connection_error(self, mock_get):
        """Test connection errors are reported, not raised."""
        mock_get.side_effect = requests.exceptions.ConnectionError("refused")
        status = OverpassRoadSource().health_check()

        assert status.healthy is False
        assert "Connection failed" in status.message
