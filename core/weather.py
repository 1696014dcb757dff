"""
Historical weather enrichment

Weather is cached globally by (ZIP code, date): everybody who spent the day in
the same postal code shares one lookup. Days are anchored at the user's
dominant location, the place where they spent the most time. Historical
weather does not change, so cache entries are never invalidated.
"""

import logging
import math
import requests
from config import (
    DOMINANT_GROUP_PRECISION,
    HTTP_TIMEOUT,
    OPEN_METEO_ARCHIVE_URL,
    USER_AGENT,
    WEATHER_DAILY_FIELDS,
    WEATHER_KEY_PRECISION,
    WEATHER_PRECIPITATION_UNIT,
    WEATHER_TEMPERATURE_UNIT,
)
from core.errors import ConstraintViolation, ExternalServiceError, RateLimitError
from core.models import DayVisit, WeatherCacheEntry
from core.store import JournalStore
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from utils.geocoding import NominatimClient, extract_zip_code
from utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

SERVICE = 'open_meteo'

# WMO weather interpretation codes
WEATHER_CODES = {
    0: 'Clear',
    1: 'Mostly Clear',
    2: 'Partly Cloudy',
    3: 'Overcast',
    45: 'Foggy',
    48: 'Foggy',
    51: 'Light Drizzle',
    53: 'Drizzle',
    55: 'Heavy Drizzle',
    56: 'Freezing Drizzle',
    57: 'Freezing Drizzle',
    61: 'Light Rain',
    63: 'Rain',
    65: 'Heavy Rain',
    66: 'Freezing Rain',
    67: 'Freezing Rain',
    71: 'Light Snow',
    73: 'Snow',
    75: 'Heavy Snow',
    77: 'Snow Grains',
    80: 'Light Showers',
    81: 'Showers',
    82: 'Heavy Showers',
    85: 'Light Snow Showers',
    86: 'Snow Showers',
    95: 'Thunderstorm',
    96: 'Thunderstorm with Hail',
    99: 'Thunderstorm with Hail',
}

WEATHER_MOODS = {
    0: 'clear',
    1: 'clear',
    2: 'partly-cloudy',
    3: 'cloudy',
    45: 'fog',
    48: 'fog',
    71: 'snow',
    73: 'snow',
    75: 'snow',
    77: 'snow',
    85: 'snow',
    86: 'snow',
    95: 'storm',
    96: 'storm',
    99: 'storm',
}
# Drizzle, rain and showers
WEATHER_MOODS.update({code: 'rain' for code in [51, 53, 55, 56, 57, 61, 63, 65, 66, 67, 80, 81, 82]})

WEATHER_EMOJIS = {
    'clear': '☀️',
    'partly-cloudy': '⛅',
    'cloudy': '☁️',
    'rain': '🌧️',
    'storm': '⛈️',
    'snow': '❄️',
    'fog': '🌫️',
}


def weather_mood(weather_code: int | None) -> tuple[str, str]:
    """Mood category and emoji for a WMO weather code"""
    mood = WEATHER_MOODS.get(weather_code, 'cloudy')
    return mood, WEATHER_EMOJIS.get(mood, '🌤️')


def _as_date(value: date | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


def _round_half_up(value: float | None) -> int | None:
    if value is None:
        return None
    return math.floor(value + 0.5)


@dataclass
class DominantLocation:
    lat: float
    lon: float
    total_minutes: int = 0
    place_name: str | None = None
    place_address: str | None = None

    @property
    def zip_code(self) -> str | None:
        return extract_zip_code(self.place_address)


def select_dominant_location(visits: list[DayVisit]) -> DominantLocation | None:
    """
    Location where the most time was spent

    Visits are grouped by coordinates rounded to ~110 m and their dwell minutes
    summed. When groups tie, the first one seen wins, so the result only
    depends on the input order.
    """
    groups: dict[str, DominantLocation] = {}

    for visit in visits:
        key = f"{visit.lat:.{DOMINANT_GROUP_PRECISION}f},{visit.lon:.{DOMINANT_GROUP_PRECISION}f}"
        group = groups.get(key)
        if group is None:
            group = groups[key] = DominantLocation(lat=visit.lat, lon=visit.lon)

        group.total_minutes += visit.duration_minutes or 0
        if not group.place_address and visit.place_address:
            group.place_address = visit.place_address
        if not group.place_name and visit.place_name:
            group.place_name = visit.place_name

    dominant = None
    for group in groups.values():
        if dominant is None or group.total_minutes > dominant.total_minutes:
            dominant = group

    return dominant


def synthetic_weather_key(lat: float, lon: float) -> str:
    """~1.1 km coordinate bucket used when no ZIP code is known"""
    return f"{lat:.{WEATHER_KEY_PRECISION}f},{lon:.{WEATHER_KEY_PRECISION}f}"


class OpenMeteoClient:
    """Open-Meteo historical archive (free, no API key)"""

    def __init__(self, retry_policy: RetryPolicy | None = None, timeout: float = HTTP_TIMEOUT):
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self.request_count = 0

    def _fetch_once(self, lat: float, lon: float, day: date) -> dict:
        self.request_count += 1
        params = {
            'latitude': f"{lat:.4f}",
            'longitude': f"{lon:.4f}",
            'start_date': day.isoformat(),
            'end_date': day.isoformat(),
            'daily': ','.join(WEATHER_DAILY_FIELDS),
            'temperature_unit': WEATHER_TEMPERATURE_UNIT,
            'precipitation_unit': WEATHER_PRECIPITATION_UNIT,
            'timezone': 'auto',
        }
        try:
            response = requests.get(
                OPEN_METEO_ARCHIVE_URL, params=params, headers={'User-Agent': USER_AGENT}, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise ExternalServiceError(SERVICE, str(e), retryable=True) from e

        if response.status_code == 429:
            raise RateLimitError(SERVICE)
        if not response.ok:
            raise ExternalServiceError(
                SERVICE,
                f"HTTP {response.status_code} - {response.text[:200]}",
                retryable=response.status_code >= 500,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ExternalServiceError(SERVICE, f"invalid JSON response: {e}") from e

    def fetch_daily(self, lat: float, lon: float, day: date) -> dict:
        """
        Daily weather summary at a location

        Returns:
            dict: temp_max, temp_min (°F, rounded), condition, precipitation (in), weather_code

        Raises:
            ExternalServiceError: Request failed or no data exists for that date
        """
        data = self.retry_policy.call(self._fetch_once, lat, lon, day)
        daily = data.get('daily') or {}
        if not daily.get('time'):
            raise ExternalServiceError(SERVICE, f"No weather data available for {day}")

        def first(field):
            values = daily.get(field) or [None]
            return values[0]

        weather_code = first('weathercode')
        return {
            'temp_max': _round_half_up(first('temperature_2m_max')),
            'temp_min': _round_half_up(first('temperature_2m_min')),
            'condition': WEATHER_CODES.get(weather_code, 'Unknown'),
            'precipitation': first('precipitation_sum') or 0.0,
            'weather_code': weather_code,
        }


@dataclass
class WeatherEnrichmentResult:
    cached: bool = False
    weather: dict | None = None
    source: str | None = None
    zip_code: str | None = None
    location: DominantLocation | None = None
    error: str | None = None


class WeatherEnrichmentCache:
    """Per-user-day weather backed by the global (key, date) weather cache"""

    def __init__(self, store: JournalStore, geocoder: NominatimClient, weather_client: OpenMeteoClient | None = None):
        self.store = store
        self.geocoder = geocoder
        self.weather_client = weather_client or OpenMeteoClient()

    def derive_cache_key(self, dominant: DominantLocation, skip_reverse_geocode: bool = False) -> tuple[str, str]:
        """
        Global cache key for a dominant location

        Tried in order: ZIP in the known address, ZIP from reverse geocoding,
        rounded coordinates.

        Returns:
            tuple: (key, how the key was derived)
        """
        zip_code = dominant.zip_code
        if zip_code:
            return zip_code, 'address'

        if not skip_reverse_geocode:
            try:
                zip_code = self.geocoder.reverse_zip(dominant.lat, dominant.lon)
            except ExternalServiceError as e:
                logger.warning(f"Reverse geocoding ZIP failed for {dominant.lat:.4f}, {dominant.lon:.4f}: {e}")
            if zip_code:
                return zip_code, 'reverse_geocode'

        return synthetic_weather_key(dominant.lat, dominant.lon), 'coordinates'

    def get_or_create(self, key: str, day: date | str, lat: float, lon: float) -> tuple[WeatherCacheEntry, bool]:
        """
        Cached weather for (key, day), fetching and storing it on a miss

        Returns:
            tuple: (entry, True if it came from the cache)
        """
        day = _as_date(day)
        cached = self.store.get_weather(key, day)
        if cached:
            logger.debug(f"Weather cache hit for {key} on {day}")
            return cached, True

        weather = self.weather_client.fetch_daily(lat, lon, day)
        entry = WeatherCacheEntry(key=key, date=day, lat=lat, lon=lon, **weather)

        try:
            self.store.insert_weather(entry)
        except ConstraintViolation:
            logger.info(f"Weather for {key} on {day} was cached by another run")
            return self.store.get_weather(key, day) or entry, True

        logger.debug(f"Weather cached for {key} on {day}")
        return entry, False

    def enrich_day_weather(self, user_id: str, day: date | str, skip_reverse_geocode: bool = False) -> WeatherEnrichmentResult:
        """
        Attach weather to one user's day

        Raises:
            ExternalServiceError: The weather provider could not be reached
        """
        day = _as_date(day)

        existing = self.store.get_day_weather(user_id, day)
        if existing:
            return WeatherEnrichmentResult(cached=True, weather=existing, source='day_data')

        dominant = select_dominant_location(self.store.visits_for_day(user_id, day))
        if dominant is None:
            return WeatherEnrichmentResult(error='No visits found for this date')

        key, key_source = self.derive_cache_key(dominant, skip_reverse_geocode=skip_reverse_geocode)
        logger.debug(f"Weather key for {user_id} on {day}: {key} (from {key_source})")

        entry, cached = self.get_or_create(key, day, dominant.lat, dominant.lon)

        mood, emoji = weather_mood(entry.weather_code)
        weather = {
            'tempMax': entry.temp_max,
            'tempMin': entry.temp_min,
            'condition': entry.condition,
            'precipitation': entry.precipitation,
            'weatherCode': entry.weather_code,
            'mood': mood,
            'emoji': emoji,
            'zipCode': key,
            'locationName': dominant.place_name,
            'cachedFrom': 'cache' if cached else 'api',
        }
        self.store.save_day_weather(user_id, day, weather)

        return WeatherEnrichmentResult(
            cached=cached,
            weather=weather,
            source='weather_cache' if cached else SERVICE,
            zip_code=key,
            location=dominant,
        )

    def enrichment_stats(
        self,
        user_id: str,
        start: date | str | None = None,
        end: date | str | None = None,
        today: date | None = None,
    ) -> dict:
        """Which of a user's visit days still need weather; only days up to yesterday qualify"""
        start = _as_date(start) if start else None
        end = _as_date(end) if end else None
        yesterday = (today or datetime.now(UTC).date()) - timedelta(days=1)

        visit_dates = self.store.visit_dates(user_id, start, end)
        enriched = self.store.weather_dates(user_id)
        dates = sorted(d for d in visit_dates if d not in enriched and d <= yesterday)

        return {
            'totalDays': len(visit_dates),
            'alreadyEnriched': len(enriched),
            'toEnrich': len(dates),
            'globalCacheEntries': self.store.count('weather_cache'),
            'dates': dates,
        }
