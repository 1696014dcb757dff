import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any


@dataclass
class CanonicalPoint:
    """A GPS sample decoded from any export format"""

    lat: float
    lon: float
    timestamp: datetime | None
    source: str
    activity_type: str | None = None


@dataclass
class CanonicalVisit:
    """A semantically labeled dwell at a place"""

    lat: float
    lon: float
    start_time: datetime | None
    end_time: datetime | None = None
    place_id: str | None = None
    semantic_type: str | None = None
    probability: float = 0.0

    @property
    def duration_minutes(self) -> int | None:
        """Dwell time rounded half-up to whole minutes"""
        if self.start_time is None or self.end_time is None:
            return None
        millis = (self.end_time - self.start_time).total_seconds() * 1000
        return math.floor(millis / 60000 + 0.5)


@dataclass
class ParseResult:
    points: list[CanonicalPoint] = field(default_factory=list)
    visits: list[CanonicalVisit] = field(default_factory=list)


@dataclass
class Place:
    id: str
    name: str | None = None
    address: str | None = None
    types: list[str] = field(default_factory=list)
    photo_url: str | None = None


@dataclass
class EnrichmentRecord:
    type: str
    status: str
    place_id: str | None
    metadata: dict[str, Any]
    timestamp: datetime
    user_id: str | None = None


@dataclass
class WeatherCacheEntry:
    key: str
    date: date
    temp_max: int | None
    temp_min: int | None
    condition: str
    precipitation: float
    weather_code: int | None
    lat: float
    lon: float


@dataclass
class DayVisit:
    """A stored visit joined with whatever is known about its place"""

    lat: float
    lon: float
    duration_minutes: int | None
    place_name: str | None = None
    place_address: str | None = None


@dataclass
class ImportSummary:
    locations_created: int = 0
    visits_created: int = 0
    places_created: int = 0
    skipped: int = 0

    def to_dict(self) -> dict:
        """Summary in the shape reported to API consumers"""
        return {
            'locationsCreated': self.locations_created,
            'visitsCreated': self.visits_created,
            'placesCreated': self.places_created,
            'skipped': self.skipped,
        }
