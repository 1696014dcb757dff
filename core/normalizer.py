import logging
import re
from config import E7_SCALE
from datetime import UTC, datetime, timedelta
from dateutil.parser import isoparse

logger = logging.getLogger(__name__)

NUMBER_PATTERN = re.compile(r'-?\d+(?:\.\d+)?')
EPOCH_MILLIS_PATTERN = re.compile(r'^\s*-?\d+(?:\.\d+)?\s*$')


def decode_e7(value) -> float | None:
    """Decode an E7 integer coordinate (degrees * 10^7)"""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value) * E7_SCALE
    except (TypeError, ValueError):
        return None


def parse_geo_string(value) -> tuple[float, float] | None:
    """
    Decode a coordinate string such as "geo:35.123,-47.456" or "13.03°, 77.57°"

    The first two numbers found are taken as latitude and longitude.

    Returns:
        (lat, lon) or None when fewer than two numbers are present
    """
    if not value or not isinstance(value, str):
        return None

    numbers = NUMBER_PATTERN.findall(value)
    if len(numbers) < 2:
        return None

    return float(numbers[0]), float(numbers[1])


def parse_timestamp(value) -> datetime | None:
    """
    Decode any timestamp encoding found in location exports

    Numbers and numeric strings are epoch milliseconds, anything else is tried
    as ISO-8601. Naive ISO values are read as UTC.

    Returns:
        Timezone-aware UTC datetime, or None when the value cannot be decoded
    """
    if value is None or value == '' or isinstance(value, bool):
        return None

    try:
        if isinstance(value, int | float):
            return _from_epoch_millis(value)

        if not isinstance(value, str):
            return None

        if EPOCH_MILLIS_PATTERN.match(value):
            return _from_epoch_millis(float(value))

        parsed = isoparse(value.strip())
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=UTC)
        return parsed.astimezone(UTC)
    except (ValueError, OverflowError, OSError) as e:
        logger.debug(f"Failed to parse timestamp {value!r}: {e}")
        return None


def _from_epoch_millis(millis: float) -> datetime:
    return datetime(1970, 1, 1, tzinfo=UTC) + timedelta(milliseconds=millis)


def interpolate_timestamp(index: int, count: int, start: datetime | None, end: datetime | None) -> datetime | None:
    """Assign a time to path sample `index` of `count` spread evenly from start to end"""
    if start is None:
        return None
    if count <= 1:
        return start
    if end is None:
        return None
    return start + (end - start) * (index / (count - 1))


def parse_probability(value) -> float:
    """Parse a visit probability, defaulting to 0 and clamped to [0, 1]"""
    try:
        probability = float(value)
    except (TypeError, ValueError):
        return 0.0

    if probability != probability:  # NaN
        return 0.0
    return min(max(probability, 0.0), 1.0)
