import logging
from config import DEFAULT_USER_ID, IMPORT_CHUNK_SIZE
from core.formats import parse_export
from core.identity import resolve_place_id
from core.models import CanonicalPoint, CanonicalVisit, ImportSummary
from core.store import JournalStore, to_db_time
from core.takeout import load_export
from pathlib import Path

logger = logging.getLogger(__name__)


def chunked(rows: list, size: int):
    for i in range(0, len(rows), size):
        yield rows[i : i + size]


class BatchedImporter:
    """
    Write canonical points and visits to the journal in dependency order

    Locations first, then every Place the visits reference, then the visits.
    Rows whose natural key already exists are skipped, so a failed or repeated
    import is recovered by simply running it again.
    """

    def __init__(self, store: JournalStore, user_id: str = DEFAULT_USER_ID, chunk_size: int = IMPORT_CHUNK_SIZE):
        self.store = store
        self.user_id = user_id
        self.chunk_size = max(chunk_size, 1)

    def location_rows(self, points: list[CanonicalPoint]) -> list[list]:
        """Rows for points with a resolved timestamp, one per natural key"""
        rows = {}
        for point in points:
            if point.timestamp is None:
                continue
            ts = to_db_time(point.timestamp)
            key = (ts, point.lat, point.lon, point.source)
            rows.setdefault(key, [self.user_id, ts, point.lat, point.lon, point.source, point.activity_type])
        return list(rows.values())

    def visit_rows(self, visits: list[CanonicalVisit]) -> list[list]:
        """Rows for visits with a resolved start time, keyed by content-addressed place id"""
        rows = {}
        for visit in visits:
            if visit.start_time is None:
                continue
            place_id = resolve_place_id(visit)
            start = to_db_time(visit.start_time)
            rows.setdefault(
                (place_id, start),
                [
                    self.user_id,
                    place_id,
                    visit.lat,
                    visit.lon,
                    start,
                    to_db_time(visit.end_time),
                    visit.duration_minutes,
                    visit.semantic_type,
                    visit.probability,
                ],
            )
        return list(rows.values())

    def import_records(self, points: list[CanonicalPoint], visits: list[CanonicalVisit]) -> ImportSummary:
        """
        Import parsed points and visits

        Returns:
            ImportSummary: Rows created per table; everything else (unresolved
            timestamps, duplicates) is counted as skipped
        """
        summary = ImportSummary()

        location_rows = self.location_rows(points)
        if location_rows:
            logger.info(f"Importing {len(location_rows):,} GPS points...")
        for i, chunk in enumerate(chunked(location_rows, self.chunk_size), start=1):
            summary.locations_created += self.store.insert_locations(chunk)
            logger.debug(f"  Location chunk {i}: {min(i * self.chunk_size, len(location_rows)):,} rows written")

        visit_rows = self.visit_rows(visits)
        place_ids = list(dict.fromkeys(row[1] for row in visit_rows))
        if place_ids:
            logger.info(f"Ensuring {len(place_ids):,} unique places exist...")
        for chunk in chunked(place_ids, self.chunk_size):
            summary.places_created += self.store.insert_places(chunk)

        if visit_rows:
            logger.info(f"Importing {len(visit_rows):,} visits...")
        for chunk in chunked(visit_rows, self.chunk_size):
            summary.visits_created += self.store.insert_visits(chunk)

        summary.skipped = (len(points) - summary.locations_created) + (len(visits) - summary.visits_created)

        logger.info("Import completed")
        logger.info(f"  - Locations: {summary.locations_created:,}")
        logger.info(f"  - Visits: {summary.visits_created:,}")
        logger.info(f"  - New places: {summary.places_created:,}")
        logger.info(f"  - Skipped: {summary.skipped:,}")

        return summary


def import_export_file(
    store: JournalStore,
    path: Path,
    user_id: str = DEFAULT_USER_ID,
    chunk_size: int = IMPORT_CHUNK_SIZE,
) -> ImportSummary:
    """Load, parse and import one location history export"""
    raw = load_export(path)
    _, result = parse_export(raw)
    importer = BatchedImporter(store, user_id=user_id, chunk_size=chunk_size)
    return importer.import_records(result.points, result.visits)
