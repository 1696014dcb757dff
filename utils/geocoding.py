import logging
import re
import threading
import time
from config import HTTP_TIMEOUT, NOMINATIM_MIN_INTERVAL, NOMINATIM_USER_AGENT
from core.errors import ExternalServiceError, RateLimitError
from dataclasses import dataclass, field
from geopy.exc import GeocoderRateLimited, GeocoderServiceError, GeocoderTimedOut, GeocoderUnavailable
from geopy.geocoders import Nominatim
from utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

SERVICE = 'nominatim'
ZIP_PATTERN = re.compile(r'\b(\d{5})(?:-\d{4})?\b')
POSTCODE_PATTERN = re.compile(r'^(\d{5})')

# OSM address keys that name the place itself rather than where it is
PLACE_NAME_KEYS = ['amenity', 'shop', 'tourism', 'leisure', 'building']


def extract_zip_code(address: str | None) -> str | None:
    """Extract a 5-digit US ZIP code (optionally ZIP+4) from an address string"""
    if not address:
        return None
    match = ZIP_PATTERN.search(address)
    return match.group(1) if match else None


@dataclass
class OsmAddress:
    name: str | None
    address: str | None
    types: list[str] = field(default_factory=list)
    postcode: str | None = None
    raw: dict = field(default_factory=dict)

    @property
    def zip_code(self) -> str | None:
        if not self.postcode:
            return None
        match = POSTCODE_PATTERN.match(self.postcode)
        return match.group(1) if match else None


class NominatimClient:
    """Free OSM reverse geocoder, held to Nominatim's 1 request/second ceiling"""

    def __init__(
        self,
        user_agent: str = NOMINATIM_USER_AGENT,
        min_interval: float = NOMINATIM_MIN_INTERVAL,
        retry_policy: RetryPolicy | None = None,
        geocoder=None,
    ):
        self.geocoder = geocoder or Nominatim(user_agent=user_agent, timeout=HTTP_TIMEOUT)
        self.min_interval = min_interval
        self.retry_policy = retry_policy or RetryPolicy()
        self.last_api_call = 0.0
        self._rate_lock = threading.Lock()
        self.request_count = 0

    def enforce_rate_limit(self):
        """Sleep until at least min_interval has passed since the previous request"""
        with self._rate_lock:
            current_time = time.time()
            time_since_last = current_time - self.last_api_call

            if time_since_last < self.min_interval:
                sleep_time = self.min_interval - time_since_last
                logger.debug(f"Rate limiting: sleeping {sleep_time:.2f} seconds")
                time.sleep(sleep_time)

            self.last_api_call = time.time()

    def _reverse_once(self, lat: float, lon: float) -> dict | None:
        self.enforce_rate_limit()
        self.request_count += 1
        try:
            location = self.geocoder.reverse((lat, lon), exactly_one=True, language='en', addressdetails=True)
        except GeocoderRateLimited as e:
            raise RateLimitError(SERVICE, str(e)) from e
        except (GeocoderTimedOut, GeocoderUnavailable) as e:
            raise ExternalServiceError(SERVICE, str(e), retryable=True) from e
        except GeocoderServiceError as e:
            raise ExternalServiceError(SERVICE, str(e)) from e

        return location.raw if location else None

    def reverse(self, lat: float, lon: float) -> OsmAddress | None:
        """
        Reverse geocode coordinates into an address

        Returns:
            OsmAddress, or None when OSM knows nothing at that point

        Raises:
            ExternalServiceError: Nominatim was unreachable or refused the request
        """
        raw = self.retry_policy.call(self._reverse_once, lat, lon)
        if not raw:
            return None

        address = raw.get('address') or {}
        name = next((address[key] for key in PLACE_NAME_KEYS if address.get(key)), None)
        parts = [
            address.get('house_number'),
            address.get('road'),
            address.get('city') or address.get('town') or address.get('village'),
            address.get('state'),
            address.get('postcode'),
        ]
        formatted = ', '.join(part for part in parts if part) or raw.get('display_name')

        return OsmAddress(
            name=name,
            address=formatted,
            types=[raw['type']] if raw.get('type') else [],
            postcode=address.get('postcode'),
            raw=raw,
        )

    def reverse_zip(self, lat: float, lon: float) -> str | None:
        """US ZIP code at the given coordinates, if any"""
        result = self.reverse(lat, lon)
        return result.zip_code if result else None
