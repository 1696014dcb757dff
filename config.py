from decouple import config
from pathlib import Path

# Storage paths
DATA_DIR = Path(config('DATA_DIR', default='data'))
DB_PATH = Path(config('DB_PATH', default=str(DATA_DIR / 'journal.duckdb')))
JOB_STORE_PATH = Path(config('JOB_STORE_PATH', default=str(DATA_DIR / 'enrichment_jobs.json')))

# Import
DEFAULT_USER_ID = config('DEFAULT_USER_ID', default='local')
IMPORT_CHUNK_SIZE = config('IMPORT_CHUNK_SIZE', default=1000, cast=int)
PROGRESS_LOG_INTERVAL = config('PROGRESS_LOG_INTERVAL', default=20000, cast=int)

# Export file names looked for inside a Takeout zip or directory, most specific first
TAKEOUT_EXPORT_FILES = [
    'Timeline.json',
    'location-history.json',
    'Records.json',
]

# Coordinate encodings
E7_SCALE = 1e-7
PLACE_ID_PRECISION = 6          # coord_{lat}_{lon} synthetic place ids
DOMINANT_GROUP_PRECISION = 3    # ~110 m grouping for dominant location
WEATHER_KEY_PRECISION = 2       # ~1.1 km synthetic weather cache key

DEFAULT_SEMANTIC_TYPE = 'Unknown Location'
DEFAULT_ACTIVITY_TYPE = 'Unknown'

# External services
HTTP_TIMEOUT = config('HTTP_TIMEOUT', default=30.0, cast=float)
USER_AGENT = config('USER_AGENT', default='DejaView/1.0 (location-journal-app)')

GOOGLE_PLACES_API_KEY = config('GOOGLE_PLACES_API_KEY', default='')
GOOGLE_PLACES_API_ROOT = 'https://places.googleapis.com/v1'
GOOGLE_PLACES_URL = f'{GOOGLE_PLACES_API_ROOT}/places'
GOOGLE_PLACES_FIELDS = ['displayName', 'formattedAddress', 'types', 'photos', 'primaryType']
GOOGLE_PHOTO_MAX_WIDTH = 400
RICH_PLACE_ID_PATTERN = config('RICH_PLACE_ID_PATTERN', default=r'^ChIJ')

NOMINATIM_USER_AGENT = config('NOMINATIM_USER_AGENT', default=USER_AGENT)
NOMINATIM_MIN_INTERVAL = config('NOMINATIM_MIN_INTERVAL', default=1.1, cast=float)

OPEN_METEO_ARCHIVE_URL = 'https://archive-api.open-meteo.com/v1/archive'
WEATHER_DAILY_FIELDS = ['temperature_2m_max', 'temperature_2m_min', 'precipitation_sum', 'weathercode']
WEATHER_TEMPERATURE_UNIT = 'fahrenheit'
WEATHER_PRECIPITATION_UNIT = 'inch'

# Retry policy shared by all external integrations
RETRY_MAX_ATTEMPTS = config('RETRY_MAX_ATTEMPTS', default=3, cast=int)
RETRY_BASE_DELAY = config('RETRY_BASE_DELAY', default=1.0, cast=float)
RETRY_JITTER = config('RETRY_JITTER', default=0.3, cast=float)

# Enrichment statuses and sources
ENRICHMENT_COMPLETE = 'complete'
ENRICHMENT_FAILED = 'failed'
SOURCE_GOOGLE_PLACES = 'google_places'
SOURCE_NOMINATIM = 'osm_nominatim'

# Background job statuses
JOB_RUNNING = 'running'
JOB_COMPLETE = 'complete'
JOB_ERROR = 'error'
JOB_IDLE = 'idle'

# Background enrichment
ENRICHMENT_PLACE_BATCH = config('ENRICHMENT_PLACE_BATCH', default=500, cast=int)
JOB_PROGRESS_LOG_INTERVAL = 50
