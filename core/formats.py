"""
Export format detection and parsing

Google location history has shipped in four incompatible shapes over the years.
Each shape gets one parser; all of them emit the same canonical points and visits.

    ROOT_ARRAY          [ {visit|activity|timelinePath, startTime, endTime}, ... ]   (on-device export)
    LOCATIONS_LEGACY    {"locations": [ {latitudeE7, longitudeE7, timestampMs}, ... ]}   (Records.json)
    SEMANTIC_SEGMENTS   {"semanticSegments": [ {visit|activity|timelinePath}, ... ]}   (Android Timeline.json)
    TIMELINE_OBJECTS    {"timelineObjects": [ {placeVisit|activitySegment}, ... ]}   (Semantic Location History)
"""

import logging
from config import DEFAULT_ACTIVITY_TYPE, DEFAULT_SEMANTIC_TYPE, PROGRESS_LOG_INTERVAL
from core.errors import RecordError, UnrecognizedFormat
from core.models import CanonicalPoint, CanonicalVisit, ParseResult
from core.normalizer import (
    decode_e7,
    interpolate_timestamp,
    parse_geo_string,
    parse_probability,
    parse_timestamp,
)
from datetime import datetime, timedelta
from enum import StrEnum

logger = logging.getLogger(__name__)

SOURCE_PATH = 'path'
SOURCE_ACTIVITY = 'activity'


class ExportFormat(StrEnum):
    ROOT_ARRAY = 'root_array'
    LOCATIONS_LEGACY = 'locations'
    SEMANTIC_SEGMENTS = 'semanticSegments'
    TIMELINE_OBJECTS = 'timelineObjects'


# Keyed object shapes, checked in order
KEYED_FORMATS = [
    ('locations', ExportFormat.LOCATIONS_LEGACY),
    ('semanticSegments', ExportFormat.SEMANTIC_SEGMENTS),
    ('timelineObjects', ExportFormat.TIMELINE_OBJECTS),
]


def detect(raw) -> ExportFormat:
    """Identify the export format from the document's top-level shape"""
    if isinstance(raw, list):
        return ExportFormat.ROOT_ARRAY

    if isinstance(raw, dict):
        for key, export_format in KEYED_FORMATS:
            if isinstance(raw.get(key), list):
                return export_format
        keys = ', '.join(sorted(raw)[:5]) or 'none'
        raise UnrecognizedFormat(f"object (keys: {keys})")

    raise UnrecognizedFormat(type(raw).__name__)


def _activity_label(activity_type: str) -> str:
    return activity_type or DEFAULT_ACTIVITY_TYPE


def _activity_point(coords: tuple[float, float] | None, timestamp: datetime | None, activity_type: str):
    if coords is None:
        return None
    return CanonicalPoint(
        lat=coords[0],
        lon=coords[1],
        timestamp=timestamp,
        source=SOURCE_ACTIVITY,
        activity_type=activity_type,
    )


def _path_points(samples: list, start: datetime | None, end: datetime | None, decode) -> list[CanonicalPoint]:
    """
    Decode an ordered run of path samples, interpolating missing sample times

    Args:
        samples: Raw path samples in recorded order
        start: Segment start time (T0)
        end: Segment end time (T1)
        decode: Callable returning (coords, own_timestamp) for one sample

    Returns:
        list: Points for every sample whose coordinates decode
    """
    points = []
    count = len(samples)

    for index, sample in enumerate(samples):
        if not isinstance(sample, dict):
            continue
        coords, timestamp = decode(sample)
        if coords is None:
            continue
        if timestamp is None:
            timestamp = interpolate_timestamp(index, count, start, end)
        points.append(CanonicalPoint(lat=coords[0], lon=coords[1], timestamp=timestamp, source=SOURCE_PATH))

    return points


def _candidate_visit(coords, candidate: dict, start, end) -> CanonicalVisit:
    return CanonicalVisit(
        lat=coords[0],
        lon=coords[1],
        start_time=parse_timestamp(start),
        end_time=parse_timestamp(end),
        place_id=candidate.get('placeID') or candidate.get('placeId'),
        semantic_type=candidate.get('semanticType') or DEFAULT_SEMANTIC_TYPE,
        probability=parse_probability(candidate.get('probability')),
    )


class ExportParser:
    """Walks the record list of one export format, skipping malformed records"""

    export_format: ExportFormat
    record_label = 'record'

    def records(self, raw) -> list:
        return raw[self.export_format.value]

    def parse_record(self, record: dict) -> ParseResult:
        raise NotImplementedError

    def parse(self, raw) -> ParseResult:
        """Parse a whole export document into canonical points and visits"""
        logger.info(f"Processing '{self.export_format}' format...")
        result = ParseResult()
        skipped = 0

        for i, record in enumerate(self.records(raw)):
            try:
                if not isinstance(record, dict):
                    raise RecordError(f"expected an object, got {type(record).__name__}")
                parsed = self.parse_record(record)
            except (RecordError, AttributeError, KeyError, TypeError, ValueError) as e:
                skipped += 1
                logger.warning(f"Skipping {self.record_label} #{i + 1}: {e}")
                continue

            result.points.extend(parsed.points)
            result.visits.extend(parsed.visits)

            if (i + 1) % PROGRESS_LOG_INTERVAL == 0:
                logger.info(f"  {i + 1:,} {self.record_label}s processed...")

        if skipped:
            logger.warning(f"Skipped {skipped} malformed {self.record_label}s")

        return result


class RootArrayParser(ExportParser):
    export_format = ExportFormat.ROOT_ARRAY

    def records(self, raw) -> list:
        return raw

    def parse_record(self, record: dict) -> ParseResult:
        result = ParseResult()

        visit = record.get('visit')
        if visit:
            candidate = visit.get('topCandidate') or {}
            coords = parse_geo_string(candidate.get('placeLocation'))
            if coords is None:
                raise RecordError("visit has no decodable placeLocation")
            result.visits.append(
                _candidate_visit(
                    coords,
                    candidate,
                    visit.get('startTime') or record.get('startTime'),
                    visit.get('endTime') or record.get('endTime'),
                )
            )

        activity = record.get('activity')
        if activity:
            activity_type = _activity_label((activity.get('topCandidate') or {}).get('type'))
            endpoints = [
                (activity.get('start'), activity.get('startTime') or record.get('startTime')),
                (activity.get('end'), activity.get('endTime') or record.get('endTime')),
            ]
            for location, time in endpoints:
                point = _activity_point(parse_geo_string(location), parse_timestamp(time), activity_type)
                if point:
                    result.points.append(point)

        path = record.get('timelinePath')
        if path:
            start = parse_timestamp(record.get('startTime'))
            end = parse_timestamp(record.get('endTime'))

            def decode(sample):
                offset = sample.get('durationMinutesOffsetFromStartTime')
                timestamp = None
                if offset is not None and start is not None:
                    try:
                        timestamp = start + timedelta(minutes=float(offset))
                    except (TypeError, ValueError, OverflowError):
                        logger.debug(f"Unusable path offset {offset!r}, interpolating instead")
                return parse_geo_string(sample.get('point')), timestamp

            result.points.extend(_path_points(path, start, end, decode))

        return result


class LocationsLegacyParser(ExportParser):
    export_format = ExportFormat.LOCATIONS_LEGACY
    record_label = 'location'

    def parse_record(self, record: dict) -> ParseResult:
        lat = decode_e7(record.get('latitudeE7'))
        lon = decode_e7(record.get('longitudeE7'))
        if lat is None or lon is None:
            raise RecordError("missing latitudeE7/longitudeE7")

        point = CanonicalPoint(
            lat=lat,
            lon=lon,
            timestamp=parse_timestamp(record.get('timestampMs') or record.get('timestamp')),
            source=SOURCE_PATH,
            activity_type=self._activity_type(record.get('activity')),
        )
        return ParseResult(points=[point])

    def _activity_type(self, activity) -> str | None:
        """Most confident activity of the first classification attached to the sample"""
        if not activity or not isinstance(activity, list):
            return None
        candidates = (activity[0] or {}).get('activity') or []
        candidates = [c for c in candidates if isinstance(c, dict) and c.get('type')]
        if not candidates:
            return None
        return max(candidates, key=lambda c: c.get('confidence') or 0)['type']


class SemanticSegmentsParser(ExportParser):
    export_format = ExportFormat.SEMANTIC_SEGMENTS
    record_label = 'segment'

    def parse_record(self, record: dict) -> ParseResult:
        result = ParseResult()
        segment_start = record.get('startTime')
        segment_end = record.get('endTime')

        path = record.get('timelinePath')
        if path:
            result.points.extend(
                _path_points(
                    path,
                    parse_timestamp(segment_start),
                    parse_timestamp(segment_end),
                    lambda sample: (
                        parse_geo_string(sample.get('point')),
                        parse_timestamp(sample.get('time') or sample.get('timestamp')),
                    ),
                )
            )

        visit = record.get('visit')
        if visit:
            candidate = visit.get('topCandidate') or {}
            coords = parse_geo_string((candidate.get('placeLocation') or {}).get('latLng'))
            if coords is None:
                raise RecordError("visit has no decodable placeLocation.latLng")
            if 'probability' not in candidate and 'probability' in visit:
                candidate = {**candidate, 'probability': visit['probability']}
            result.visits.append(
                _candidate_visit(
                    coords,
                    candidate,
                    visit.get('startTime') or segment_start,
                    visit.get('endTime') or segment_end,
                )
            )

        activity = record.get('activity')
        if activity:
            activity_type = _activity_label((activity.get('topCandidate') or {}).get('type'))
            start = activity.get('start') or {}
            end = activity.get('end') or {}
            endpoints = [
                (start.get('latLng'), start.get('time') or segment_start),
                (end.get('latLng'), end.get('time') or segment_end),
            ]
            for location, time in endpoints:
                point = _activity_point(parse_geo_string(location), parse_timestamp(time), activity_type)
                if point:
                    result.points.append(point)

        return result


def _e7_pair(location: dict | None, lat_key: str = 'latitudeE7', lon_key: str = 'longitudeE7'):
    if not location:
        return None
    lat = decode_e7(location.get(lat_key))
    lon = decode_e7(location.get(lon_key))
    if lat is None or lon is None:
        return None
    return lat, lon


def _duration_bounds(duration: dict | None) -> tuple[datetime | None, datetime | None]:
    duration = duration or {}
    start = parse_timestamp(duration.get('startTimestamp') or duration.get('startTimestampMs'))
    end = parse_timestamp(duration.get('endTimestamp') or duration.get('endTimestampMs'))
    return start, end


class TimelineObjectsParser(ExportParser):
    export_format = ExportFormat.TIMELINE_OBJECTS
    record_label = 'timeline object'

    def parse_record(self, record: dict) -> ParseResult:
        result = ParseResult()

        place_visit = record.get('placeVisit')
        if place_visit:
            location = place_visit.get('location') or {}
            coords = _e7_pair(location)
            if coords is None:
                raise RecordError("placeVisit location has no E7 coordinates")
            start, end = _duration_bounds(place_visit.get('duration'))
            result.visits.append(
                CanonicalVisit(
                    lat=coords[0],
                    lon=coords[1],
                    start_time=start,
                    end_time=end,
                    place_id=location.get('placeId') or place_visit.get('placeId'),
                    semantic_type=(
                        location.get('semanticType') or place_visit.get('semanticType') or DEFAULT_SEMANTIC_TYPE
                    ),
                    probability=self._visit_probability(place_visit.get('visitConfidence')),
                )
            )

        segment = record.get('activitySegment')
        if segment:
            start, end = _duration_bounds(segment.get('duration'))
            activity_type = _activity_label(segment.get('activityType'))

            for coords, time in [(_e7_pair(segment.get('startLocation')), start), (_e7_pair(segment.get('endLocation')), end)]:
                point = _activity_point(coords, time, activity_type)
                if point:
                    result.points.append(point)

            raw_path = (segment.get('simplifiedRawPath') or {}).get('points') or []
            result.points.extend(
                _path_points(
                    raw_path,
                    start,
                    end,
                    lambda sample: (
                        _e7_pair(sample, 'latE7', 'lngE7'),
                        parse_timestamp(sample.get('timestampMs') or sample.get('timestamp')),
                    ),
                )
            )

        return result

    def _visit_probability(self, confidence) -> float:
        """visitConfidence is a 0-100 score"""
        try:
            return parse_probability(float(confidence) / 100)
        except (TypeError, ValueError):
            return 0.0


PARSERS: dict[ExportFormat, ExportParser] = {
    ExportFormat.ROOT_ARRAY: RootArrayParser(),
    ExportFormat.LOCATIONS_LEGACY: LocationsLegacyParser(),
    ExportFormat.SEMANTIC_SEGMENTS: SemanticSegmentsParser(),
    ExportFormat.TIMELINE_OBJECTS: TimelineObjectsParser(),
}


def parse_export(raw) -> tuple[ExportFormat, ParseResult]:
    """Detect the export format and parse the document with the matching parser"""
    export_format = detect(raw)
    result = PARSERS[export_format].parse(raw)

    logger.info(f"Format detected: {export_format}")
    logger.info(f"Total GPS points: {len(result.points):,}")
    logger.info(f"Total visits: {len(result.visits):,}")

    return export_format, result
