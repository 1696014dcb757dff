"""
Place enrichment

Places are global: their id is a content address shared by every user, so a
place enriched once is enriched for everybody. Sources are tried richest first:

    1. Google Places API (paid, only for Google place ids, only when requested)
    2. OSM Nominatim reverse geocoding (free, 1 request/second, needs coordinates)

Fields only ever fill in; a value that is already set is never overwritten.
"""

import logging
import re
import requests
from config import (
    ENRICHMENT_COMPLETE,
    ENRICHMENT_FAILED,
    GOOGLE_PHOTO_MAX_WIDTH,
    GOOGLE_PLACES_API_KEY,
    GOOGLE_PLACES_API_ROOT,
    GOOGLE_PLACES_FIELDS,
    GOOGLE_PLACES_URL,
    HTTP_TIMEOUT,
    RICH_PLACE_ID_PATTERN,
    SOURCE_GOOGLE_PLACES,
    SOURCE_NOMINATIM,
)
from core.errors import ExternalServiceError, RateLimitError
from core.models import EnrichmentRecord, Place
from core.store import JournalStore
from dataclasses import dataclass, field
from datetime import UTC, datetime
from utils.geocoding import NominatimClient, OsmAddress
from utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

NO_SOURCE_AVAILABLE = 'No enrichment source available'


@dataclass
class PlaceDetails:
    name: str | None
    address: str | None
    types: list[str] = field(default_factory=list)
    photo_url: str | None = None
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_osm(cls, osm: OsmAddress) -> 'PlaceDetails':
        return cls(name=osm.name, address=osm.address, types=osm.types, raw=osm.raw)

    def to_metadata(self) -> dict:
        return {
            'name': self.name,
            'address': self.address,
            'types': self.types,
            'photoUrl': self.photo_url,
            'raw': self.raw,
        }


@dataclass
class PlaceEnrichmentResult:
    cached: bool
    place: Place | None
    source: str | None = None
    error: str | None = None


class GooglePlacesClient:
    """Google Places API (v1) place details lookup"""

    def __init__(
        self,
        api_key: str = GOOGLE_PLACES_API_KEY,
        retry_policy: RetryPolicy | None = None,
        timeout: float = HTTP_TIMEOUT,
    ):
        self.api_key = api_key
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    def _fetch_once(self, place_id: str) -> dict:
        if not self.api_key:
            raise ExternalServiceError(SOURCE_GOOGLE_PLACES, 'GOOGLE_PLACES_API_KEY not configured')

        try:
            response = requests.get(
                f"{GOOGLE_PLACES_URL}/{place_id}",
                headers={
                    'X-Goog-Api-Key': self.api_key,
                    'X-Goog-FieldMask': ','.join(GOOGLE_PLACES_FIELDS),
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ExternalServiceError(SOURCE_GOOGLE_PLACES, str(e), retryable=True) from e

        if response.status_code == 429:
            raise RateLimitError(SOURCE_GOOGLE_PLACES)
        if not response.ok:
            raise ExternalServiceError(
                SOURCE_GOOGLE_PLACES,
                f"HTTP {response.status_code} - {response.text[:200]}",
                retryable=response.status_code >= 500,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ExternalServiceError(SOURCE_GOOGLE_PLACES, f"invalid JSON response: {e}") from e

    def fetch_details(self, place_id: str) -> PlaceDetails:
        """
        Fetch name, address, types and photo for a Google place id

        Raises:
            ExternalServiceError: API key missing, network failure or API rejection
        """
        data = self.retry_policy.call(self._fetch_once, place_id)

        photo_url = None
        photos = data.get('photos') or []
        if photos and photos[0].get('name'):
            photo_url = f"{GOOGLE_PLACES_API_ROOT}/{photos[0]['name']}/media?maxWidthPx={GOOGLE_PHOTO_MAX_WIDTH}"

        return PlaceDetails(
            name=(data.get('displayName') or {}).get('text'),
            address=data.get('formattedAddress'),
            types=data.get('types') or [],
            photo_url=photo_url,
            raw=data,
        )


class PlaceEnrichmentCache:
    """Waterfall-fills global Place rows and keeps an audit trail of every source attempt"""

    def __init__(
        self,
        store: JournalStore,
        geocoder: NominatimClient,
        places_client: GooglePlacesClient | None = None,
        rich_id_pattern: str = RICH_PLACE_ID_PATTERN,
    ):
        self.store = store
        self.geocoder = geocoder
        self.places_client = places_client
        self.rich_id_pattern = re.compile(rich_id_pattern)

    def is_rich_place_id(self, place_id: str) -> bool:
        return bool(self.rich_id_pattern.match(place_id))

    def _record(self, source: str, status: str, place_id: str, metadata: dict, user_id: str | None):
        self.store.append_enrichment(
            EnrichmentRecord(
                type=source,
                status=status,
                place_id=place_id,
                metadata=metadata,
                timestamp=datetime.now(UTC),
                user_id=user_id,
            )
        )

    def _try_rich_source(self, place_id: str, user_id: str | None) -> PlaceDetails | None:
        try:
            return self.places_client.fetch_details(place_id)
        except ExternalServiceError as e:
            logger.warning(f"Google Places failed for {place_id}: {e}")
            self._record(SOURCE_GOOGLE_PLACES, ENRICHMENT_FAILED, place_id, {'error': str(e)}, user_id)
            return None

    def _try_free_geocoder(self, place_id: str, lat: float, lon: float, user_id: str | None) -> PlaceDetails | None:
        try:
            osm = self.geocoder.reverse(lat, lon)
        except ExternalServiceError as e:
            logger.warning(f"OSM Nominatim failed for {place_id}: {e}")
            self._record(SOURCE_NOMINATIM, ENRICHMENT_FAILED, place_id, {'error': str(e)}, user_id)
            return None

        if osm is None:
            logger.warning(f"OSM Nominatim returned nothing for {place_id} at {lat:.4f}, {lon:.4f}")
            self._record(SOURCE_NOMINATIM, ENRICHMENT_FAILED, place_id, {'error': 'no result'}, user_id)
            return None

        return PlaceDetails.from_osm(osm)

    def enrich(
        self,
        place_id: str,
        lat: float | None = None,
        lon: float | None = None,
        use_rich_source: bool = False,
        user_id: str | None = None,
    ) -> PlaceEnrichmentResult:
        """
        Enrich one place, reusing whatever any earlier run already stored

        Args:
            place_id: Content-addressed place id
            lat: Latitude for the free geocoder fallback
            lon: Longitude for the free geocoder fallback
            use_rich_source: Allow the paid Google Places lookup
            user_id: User whose run triggered the enrichment, for the audit trail

        Returns:
            PlaceEnrichmentResult: cached=True when the place already had a name;
            error is set when no source could be used
        """
        existing = self.store.get_place(place_id)
        if existing and existing.name:
            return PlaceEnrichmentResult(cached=True, place=existing)

        if existing is None:
            self.store.insert_places([place_id])

        details, source = None, None

        if (
            use_rich_source
            and self.places_client is not None
            and self.places_client.available
            and self.is_rich_place_id(place_id)
        ):
            details = self._try_rich_source(place_id, user_id)
            source = SOURCE_GOOGLE_PLACES

        if details is None and lat is not None and lon is not None:
            details = self._try_free_geocoder(place_id, lat, lon, user_id)
            source = SOURCE_NOMINATIM

        if details is None:
            return PlaceEnrichmentResult(cached=False, place=self.store.get_place(place_id), error=NO_SOURCE_AVAILABLE)

        place = self.store.fill_place(
            place_id,
            name=details.name,
            address=details.address,
            types=details.types,
            photo_url=details.photo_url,
        )
        self._record(source, ENRICHMENT_COMPLETE, place_id, details.to_metadata(), user_id)

        return PlaceEnrichmentResult(cached=False, place=place, source=source)

    def enrich_pending(self, limit: int | None = None, use_rich_source: bool = False, user_id: str | None = None) -> dict:
        """
        Enrich every place that still has no name

        Coordinates come from the earliest visit to each place. Places that fail
        stay unnamed and are picked up again by the next run.

        Returns:
            dict: Counts of named, address-only and failed places plus per-place errors
        """
        pending = self.store.places_missing_names(limit=limit)
        logger.info(f"Found {len(pending)} places to enrich")

        results = {'success': 0, 'partial': 0, 'failed': 0, 'errors': []}

        for i, (place_id, lat, lon) in enumerate(pending, start=1):
            result = self.enrich(place_id, lat, lon, use_rich_source=use_rich_source, user_id=user_id)

            if result.error:
                results['failed'] += 1
                results['errors'].append({'placeId': place_id, 'error': result.error})
                logger.debug(f"[{i}/{len(pending)}] {place_id}: {result.error}")
            elif result.place and result.place.name:
                results['success'] += 1
                logger.debug(f"[{i}/{len(pending)}] {result.place.name}")
            else:
                results['partial'] += 1

        logger.info(
            f"Place enrichment finished: {results['success']} named, "
            f"{results['partial']} address only, {results['failed']} failed"
        )
        return results
