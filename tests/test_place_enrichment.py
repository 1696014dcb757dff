import pytest
from core.errors import ExternalServiceError
from core.importer import BatchedImporter
from core.models import CanonicalVisit
from core.places import NO_SOURCE_AVAILABLE, GooglePlacesClient, PlaceEnrichmentCache
from datetime import UTC, datetime, timedelta
from unittest.mock import Mock, patch
from utils.geocoding import OsmAddress
from utils.retry import NO_RETRY

T0 = datetime(2024, 1, 15, 10, 0, tzinfo=UTC)
RICH_ID = "ChIJhome123"

GOOGLE_PAYLOAD = {
    'displayName': {'text': 'Hub Coffee Roasters', 'languageCode': 'en'},
    'formattedAddress': '727 Riverside Dr, Reno, NV 89503, USA',
    'types': ['cafe', 'food'],
    'photos': [{'name': f'places/{RICH_ID}/photos/photo-1'}],
}


def google_response(status_code=200, payload=None):
    response = Mock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.text = 'error body'
    response.json.return_value = payload or {}
    return response


def osm_address(name='Hub Coffee', address='727, Riverside Drive, Reno, Nevada, 89503'):
    return OsmAddress(name=name, address=address, types=['cafe'], postcode='89503', raw={'osm_id': 1})


class TestGooglePlacesClient:
    """Test suite for GooglePlacesClient"""

    @patch('core.places.requests.get')
    def test_fetch_details(self, mock_get):
        mock_get.return_value = google_response(payload=GOOGLE_PAYLOAD)
        client = GooglePlacesClient(api_key='test-key', retry_policy=NO_RETRY)

        details = client.fetch_details(RICH_ID)

        assert details.name == 'Hub Coffee Roasters'
        assert details.address == '727 Riverside Dr, Reno, NV 89503, USA'
        assert details.types == ['cafe', 'food']
        assert details.photo_url == (
            f'https://places.googleapis.com/v1/places/{RICH_ID}/photos/photo-1/media?maxWidthPx=400'
        )
        assert 'test-key' not in details.photo_url

        url = mock_get.call_args[0][0]
        headers = mock_get.call_args[1]['headers']
        assert url == f'https://places.googleapis.com/v1/places/{RICH_ID}'
        assert headers['X-Goog-Api-Key'] == 'test-key'

    def test_unavailable_without_key(self):
        client = GooglePlacesClient(api_key='', retry_policy=NO_RETRY)

        assert not client.available
        with pytest.raises(ExternalServiceError):
            client.fetch_details(RICH_ID)

    @patch('core.places.requests.get')
    def test_http_errors(self, mock_get):
        """Test rejections become ExternalServiceErrors, retryable only for server errors"""
        client = GooglePlacesClient(api_key='test-key', retry_policy=NO_RETRY)

        mock_get.return_value = google_response(status_code=403)
        with pytest.raises(ExternalServiceError) as exc_info:
            client.fetch_details(RICH_ID)
        assert not exc_info.value.retryable

        mock_get.return_value = google_response(status_code=503)
        with pytest.raises(ExternalServiceError) as exc_info:
            client.fetch_details(RICH_ID)
        assert exc_info.value.retryable


class TestPlaceEnrichmentCache:
    """Test suite for PlaceEnrichmentCache"""

    @pytest.fixture
    def geocoder(self):
        geocoder = Mock()
        geocoder.reverse.return_value = osm_address()
        return geocoder

    @pytest.fixture
    def google(self):
        return GooglePlacesClient(api_key='test-key', retry_policy=NO_RETRY)

    @pytest.fixture
    def cache(self, store, geocoder, google):
        return PlaceEnrichmentCache(store, geocoder, google)

    @pytest.fixture
    def imported(self, store):
        """One Google place and one coordinate place, each visited once"""
        visits = [
            CanonicalVisit(lat=39.526, lon=-119.813, start_time=T0, place_id=RICH_ID),
            CanonicalVisit(lat=40.0, lon=-75.0, start_time=T0 + timedelta(hours=3)),
        ]
        BatchedImporter(store, user_id="alice").import_records([], visits)
        return store

    def test_cached_place_skips_sources(self, cache, store, geocoder):
        store.insert_places([RICH_ID])
        store.fill_place(RICH_ID, name='Already Named')

        result = cache.enrich(RICH_ID, 39.526, -119.813, use_rich_source=True)

        assert result.cached
        assert result.place.name == 'Already Named'
        geocoder.reverse.assert_not_called()
        assert store.enrichments_for_place(RICH_ID) == []

    def test_free_geocoder(self, cache, imported, geocoder):
        result = cache.enrich("coord_40.000000_-75.000000", 40.0, -75.0, user_id="alice")

        assert not result.cached
        assert result.error is None
        assert result.source == 'osm_nominatim'
        assert result.place.name == 'Hub Coffee'
        assert result.place.types == ['cafe']

        records = imported.enrichments_for_place("coord_40.000000_-75.000000")
        assert [(r.type, r.status) for r in records] == [('osm_nominatim', 'complete')]
        assert records[0].user_id == "alice"
        assert records[0].metadata['name'] == 'Hub Coffee'

    @patch('core.places.requests.get')
    def test_rich_source(self, mock_get, cache, imported, geocoder):
        mock_get.return_value = google_response(payload=GOOGLE_PAYLOAD)

        result = cache.enrich(RICH_ID, 39.526, -119.813, use_rich_source=True)

        assert result.source == 'google_places'
        assert result.place.name == 'Hub Coffee Roasters'
        assert result.place.photo_url.endswith('/media?maxWidthPx=400')
        geocoder.reverse.assert_not_called()
        assert imported.enrichments_for_place(RICH_ID)[0].metadata['raw'] == GOOGLE_PAYLOAD

    @patch('core.places.requests.get')
    def test_rich_source_failure_falls_back(self, mock_get, cache, imported, geocoder):
        """Test a Google failure is recorded and Nominatim fills the place"""
        mock_get.return_value = google_response(status_code=403)

        result = cache.enrich(RICH_ID, 39.526, -119.813, use_rich_source=True)

        assert result.source == 'osm_nominatim'
        assert result.place.name == 'Hub Coffee'
        records = imported.enrichments_for_place(RICH_ID)
        assert [(r.type, r.status) for r in records] == [
            ('google_places', 'failed'),
            ('osm_nominatim', 'complete'),
        ]

    @patch('core.places.requests.get')
    def test_rich_source_not_requested(self, mock_get, cache, imported):
        result = cache.enrich(RICH_ID, 39.526, -119.813, use_rich_source=False)

        assert result.source == 'osm_nominatim'
        mock_get.assert_not_called()

    @patch('core.places.requests.get')
    def test_rich_source_needs_google_id(self, mock_get, cache, imported):
        result = cache.enrich("coord_40.000000_-75.000000", 40.0, -75.0, use_rich_source=True)

        assert result.source == 'osm_nominatim'
        mock_get.assert_not_called()

    @patch('core.places.requests.get')
    def test_rich_source_without_key(self, mock_get, store, geocoder, imported):
        cache = PlaceEnrichmentCache(store, geocoder, GooglePlacesClient(api_key='', retry_policy=NO_RETRY))

        result = cache.enrich(RICH_ID, 39.526, -119.813, use_rich_source=True)

        assert result.source == 'osm_nominatim'
        mock_get.assert_not_called()

    def test_no_source_available(self, cache, store, geocoder):
        """Test no coordinates and no rich source returns an error result without raising"""
        result = cache.enrich("coord_1.000000_2.000000")

        assert result.error == NO_SOURCE_AVAILABLE
        assert not result.cached
        geocoder.reverse.assert_not_called()
        assert store.get_place("coord_1.000000_2.000000") is not None

    def test_geocoder_failure(self, cache, imported, geocoder):
        geocoder.reverse.side_effect = ExternalServiceError('nominatim', 'unavailable', retryable=True)

        result = cache.enrich("coord_40.000000_-75.000000", 40.0, -75.0)

        assert result.error == NO_SOURCE_AVAILABLE
        assert imported.get_place("coord_40.000000_-75.000000").name is None
        records = imported.enrichments_for_place("coord_40.000000_-75.000000")
        assert [(r.type, r.status) for r in records] == [('osm_nominatim', 'failed')]
        assert 'unavailable' in records[0].metadata['error']

    def test_fields_only_fill_in(self, cache, imported, geocoder):
        """Test values that are already set are never overwritten"""
        imported.fill_place("coord_40.000000_-75.000000", address='Original address', types=['home'])

        result = cache.enrich("coord_40.000000_-75.000000", 40.0, -75.0)

        assert result.place.name == 'Hub Coffee'
        assert result.place.address == 'Original address'
        assert result.place.types == ['home']

    def test_address_only_place_is_retried(self, cache, imported, geocoder):
        geocoder.reverse.return_value = osm_address(name=None)

        first = cache.enrich("coord_40.000000_-75.000000", 40.0, -75.0)
        second = cache.enrich("coord_40.000000_-75.000000", 40.0, -75.0)

        assert first.place.address is not None
        assert not second.cached
        assert geocoder.reverse.call_count == 2

    def test_enrich_pending(self, cache, imported, geocoder):
        geocoder.reverse.side_effect = [osm_address(), None]

        results = cache.enrich_pending()

        assert results['success'] == 1
        assert results['failed'] == 1
        assert results['errors'][0]['error'] == NO_SOURCE_AVAILABLE
        # Coordinates come from each place's earliest visit
        called_with = [c[0] for c in geocoder.reverse.call_args_list]
        assert (39.526, -119.813) in called_with
        assert (40.0, -75.0) in called_with

    def test_enrich_pending_limit(self, cache, imported, geocoder):
        results = cache.enrich_pending(limit=1)

        assert results['success'] == 1
        assert geocoder.reverse.call_count == 1
