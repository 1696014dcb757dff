#!/usr/bin/env python

"""
DejaView Journal - Location History Importer and Enricher

Imports Google location history exports (Takeout Records.json, Semantic
Location History, Android Timeline.json, on-device exports) into a DuckDB
journal and enriches it with place names and historical weather.

Usage:
    main.py [command] [options]

    Default command is 'stats' if none specified.

Commands:
    import: Import a location history export (JSON file, Takeout zip, or directory)
    enrich-places: Name unnamed places (Google Places for Google ids with --use-google, then OSM)
    enrich-weather: Attach historical weather to every visit day that has none
    enrich-user: Run the full background enrichment job (weather, then places via OSM)
    job-status: Show the enrichment job status for a user
    stats: Show journal table counts and pending enrichment

Options:
    --file: Export to import (auto-detects takeout-*.zip in the current directory)
    --user: User id the data belongs to (default: DEFAULT_USER_ID)
    --db: DuckDB journal path (default: DB_PATH)
    --verbose: Enable verbose logging output
"""

import argparse
import logging
import sys
from config import DB_PATH, DEFAULT_USER_ID, IMPORT_CHUNK_SIZE, JOB_STORE_PATH
from core.errors import ExternalServiceError, FormatError
from core.importer import import_export_file
from core.jobs import EnrichmentRunner, TinyDBJobStore
from core.places import GooglePlacesClient, PlaceEnrichmentCache
from core.store import JournalStore
from core.takeout import TakeoutReader
from core.weather import WeatherEnrichmentCache
from pathlib import Path
from utils.geocoding import NominatimClient

logger = logging.getLogger(__name__)

TABLES = ['locations', 'visits', 'places', 'enrichments', 'weather_cache', 'day_data']


def parse_arguments(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="DejaView Journal - Location History Importer and Enricher",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument('command', nargs='?', default='stats', help='Command to execute (default: stats)')
    parser.add_argument('--verbose', action='store_true', help='Enable verbose logging output')
    parser.add_argument('--db', type=Path, default=DB_PATH, help='Path to the DuckDB journal')
    parser.add_argument('--user', default=DEFAULT_USER_ID, help='User id the data belongs to')

    # Import options
    parser.add_argument('--file', type=Path, help='Export file, Takeout zip, or directory to import')
    parser.add_argument('--chunk-size', type=int, default=IMPORT_CHUNK_SIZE, help='Rows per bulk insert')

    # Enrichment options
    parser.add_argument('--limit', type=int, help='Maximum number of places to enrich')
    parser.add_argument('--use-google', action='store_true', help='Use Google Places API for Google place ids')
    parser.add_argument('--start', help='First date to enrich with weather (YYYY-MM-DD)')
    parser.add_argument('--end', help='Last date to enrich with weather (YYYY-MM-DD)')
    parser.add_argument(
        '--skip-reverse-geocode', action='store_true', help='Use coordinate weather keys instead of looking up ZIP codes'
    )
    parser.add_argument('--job-store', type=Path, default=JOB_STORE_PATH, help='Path to the enrichment job store')

    return parser.parse_args(argv)


def setup_logging(verbose: bool = False):
    """Configure logging based on verbosity level"""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format='%(asctime)s - %(levelname)s - %(message)s', force=True)


def run_import(store: JournalStore, args) -> bool:
    path = args.file
    if path is None:
        path = TakeoutReader().find_takeout_zip()
        if path is None:
            logger.error("No export given and no takeout-*.zip found in the current directory")
            return False

    try:
        summary = import_export_file(store, path, user_id=args.user, chunk_size=args.chunk_size)
    except (FileNotFoundError, FormatError) as e:
        logger.error(f"Import failed: {e}")
        return False

    print("\n=== Import Summary ===")
    print(f"Locations created: {summary.locations_created:,}")
    print(f"Visits created: {summary.visits_created:,}")
    print(f"Places created: {summary.places_created:,}")
    print(f"Skipped: {summary.skipped:,}")
    return True


def run_enrich_places(store: JournalStore, args) -> bool:
    places_client = GooglePlacesClient() if args.use_google else None
    if places_client is not None and not places_client.available:
        logger.warning("GOOGLE_PLACES_API_KEY not set, falling back to OSM Nominatim only")

    cache = PlaceEnrichmentCache(store, NominatimClient(), places_client)
    results = cache.enrich_pending(limit=args.limit, use_rich_source=args.use_google, user_id=args.user)

    print("\n=== Place Enrichment Results ===")
    print(f"Named: {results['success']}")
    print(f"Address only: {results['partial']}")
    print(f"Failed: {results['failed']}")
    return True


def run_enrich_weather(store: JournalStore, args) -> bool:
    cache = WeatherEnrichmentCache(store, NominatimClient())
    stats = cache.enrichment_stats(args.user, args.start, args.end)

    print("\n=== Weather Enrichment ===")
    print(f"Days with visits: {stats['totalDays']}")
    print(f"Already enriched: {stats['alreadyEnriched']}")
    print(f"To enrich: {stats['toEnrich']}")
    print(f"Global cache entries: {stats['globalCacheEntries']}")

    fetched, cached, failed = 0, 0, 0
    for i, day in enumerate(stats['dates'], start=1):
        try:
            result = cache.enrich_day_weather(args.user, day, skip_reverse_geocode=args.skip_reverse_geocode)
        except ExternalServiceError as e:
            failed += 1
            logger.warning(f"[{i}/{len(stats['dates'])}] {day}: {e}")
            continue

        if result.error:
            failed += 1
            logger.warning(f"[{i}/{len(stats['dates'])}] {day}: {result.error}")
            continue

        if result.cached:
            cached += 1
        else:
            fetched += 1
        weather = result.weather
        logger.info(f"[{i}/{len(stats['dates'])}] {day}: {weather['tempMax']}°F {weather['condition']} ({result.zip_code})")

    print(f"Fetched from API: {fetched}")
    print(f"Served from cache: {cached}")
    print(f"Failed: {failed}")
    return failed == 0


def build_runner(store: JournalStore, job_store_path: Path) -> EnrichmentRunner:
    geocoder = NominatimClient()
    return EnrichmentRunner(
        store,
        WeatherEnrichmentCache(store, geocoder),
        PlaceEnrichmentCache(store, geocoder),
        TinyDBJobStore(job_store_path),
    )


def print_job_status(status: dict):
    print("\n=== Enrichment Job ===")
    print(f"Status: {status['status']}")
    if 'pending' in status:
        print(f"Pending weather days: {status['pending']['weatherDays']}")
        print(f"Pending places: {status['pending']['places']}")
        return

    progress = status['progress']
    print(f"Started: {status['startedAt']}")
    print(f"Completed: {status['completedAt'] or '-'}")
    print(f"Weather: {progress['weather']['completed']}/{progress['weather']['total']}")
    print(f"Places: {progress['places']['completed']}/{progress['places']['total']}")
    if status['error']:
        print(f"Error: {status['error']}")


def print_stats(store: JournalStore):
    print("\n=== Journal Statistics ===")
    for table in TABLES:
        print(f"{table}: {store.count(table):,}")
    print(f"Places without names: {len(store.places_missing_names()):,}")


def main(argv=None):
    args = parse_arguments(argv)

    # Setup logging
    setup_logging(args.verbose)

    command = args.command
    store = JournalStore.open(args.db)

    try:
        if command == "import":
            success = run_import(store, args)

        elif command == "enrich-places":
            success = run_enrich_places(store, args)

        elif command == "enrich-weather":
            success = run_enrich_weather(store, args)

        elif command == "enrich-user":
            runner = build_runner(store, args.job_store)
            job = runner.run(args.user)
            print_job_status(runner.status(args.user))
            success = job.error is None

        elif command == "job-status":
            runner = build_runner(store, args.job_store)
            print_job_status(runner.status(args.user))
            success = True

        elif command == "stats":
            print_stats(store)
            success = True

        else:
            print(__doc__.strip())
            success = False
    finally:
        store.close()

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
