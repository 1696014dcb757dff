"""
Background enrichment jobs

One job per user: weather for every visit day that has none yet, then names
for unnamed places using the free geocoder only. Job state lives in a TinyDB
document so status survives a restart of the process that polls it.
"""

import copy
import logging
import threading
from config import (
    ENRICHMENT_PLACE_BATCH,
    JOB_COMPLETE,
    JOB_ERROR,
    JOB_IDLE,
    JOB_PROGRESS_LOG_INTERVAL,
    JOB_RUNNING,
    JOB_STORE_PATH,
)
from core.errors import ExternalServiceError
from core.places import PlaceEnrichmentCache
from core.store import JournalStore
from core.weather import WeatherEnrichmentCache
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from tinydb import Query, TinyDB

logger = logging.getLogger(__name__)

# Place names are global, so only one run walks the unnamed places at a time
_places_lock = threading.Lock()


def _empty_progress() -> dict:
    return {'weather': {'total': 0, 'completed': 0}, 'places': {'total': 0, 'completed': 0}}


@dataclass
class EnrichmentJob:
    user_id: str
    status: str = JOB_RUNNING
    started_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    completed_at: str | None = None
    progress: dict = field(default_factory=_empty_progress)
    error: str | None = None

    def finish(self, status: str, error: str | None = None):
        self.status = status
        self.error = error
        self.completed_at = datetime.now(UTC).isoformat()

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'EnrichmentJob':
        return cls(**{key: data.get(key) for key in cls.__dataclass_fields__ if key in data})


class JobStore:
    """Where enrichment job state is kept, one job per user"""

    def get(self, user_id: str) -> EnrichmentJob | None:
        raise NotImplementedError

    def save(self, job: EnrichmentJob) -> None:
        raise NotImplementedError


class TinyDBJobStore(JobStore):
    def __init__(self, path: Path = JOB_STORE_PATH, db: TinyDB | None = None):
        self.db = db if db is not None else TinyDB(path, create_dirs=True)
        self.jobs = self.db.table('enrichment_jobs')
        self._lock = threading.Lock()

    def get(self, user_id: str) -> EnrichmentJob | None:
        Job = Query()
        with self._lock:
            doc = self.jobs.get(Job.user_id == user_id)
        return EnrichmentJob.from_dict(dict(doc)) if doc else None

    def save(self, job: EnrichmentJob) -> None:
        Job = Query()
        with self._lock:
            self.jobs.upsert(job.to_dict(), Job.user_id == job.user_id)

    def close(self):
        self.db.close()


class EnrichmentRunner:
    """Runs a user's weather and place enrichment and reports progress through a JobStore"""

    def __init__(
        self,
        store: JournalStore,
        weather_cache: WeatherEnrichmentCache,
        place_cache: PlaceEnrichmentCache,
        job_store: JobStore,
        place_batch: int = ENRICHMENT_PLACE_BATCH,
    ):
        self.store = store
        self.weather_cache = weather_cache
        self.place_cache = place_cache
        self.job_store = job_store
        self.place_batch = place_batch

    def _enrich_weather(self, job: EnrichmentJob):
        progress = job.progress['weather']
        stats = self.weather_cache.enrichment_stats(job.user_id)
        progress['total'] = stats['toEnrich']
        self.job_store.save(job)
        logger.info(f"Weather: {stats['toEnrich']} days to enrich")

        for day in stats['dates']:
            try:
                self.weather_cache.enrich_day_weather(job.user_id, day)
            except ExternalServiceError as e:
                logger.warning(f"Weather failed for {day}: {e}")
                continue

            progress['completed'] += 1
            if progress['completed'] % JOB_PROGRESS_LOG_INTERVAL == 0:
                logger.info(f"Weather progress: {progress['completed']}/{progress['total']}")
                self.job_store.save(job)

    def _enrich_places(self, job: EnrichmentJob):
        progress = job.progress['places']
        pending = self.store.places_missing_names(limit=self.place_batch)
        progress['total'] = len(pending)
        self.job_store.save(job)
        logger.info(f"Places: {len(pending)} places to enrich with OSM")

        for place_id, lat, lon in pending:
            result = self.place_cache.enrich(place_id, lat, lon, use_rich_source=False, user_id=job.user_id)
            if result.error:
                logger.warning(f"Place failed for {place_id}: {result.error}")

            progress['completed'] += 1
            if progress['completed'] % JOB_PROGRESS_LOG_INTERVAL == 0:
                logger.info(f"Places progress: {progress['completed']}/{progress['total']}")
                self.job_store.save(job)

    def run(self, user_id: str) -> EnrichmentJob:
        """Enrich everything pending for a user; never raises, failures end up on the job"""
        job = EnrichmentJob(user_id=user_id)
        self.job_store.save(job)
        logger.info(f"Starting background enrichment for user {user_id}")

        try:
            self._enrich_weather(job)
            with _places_lock:
                self._enrich_places(job)
            job.finish(JOB_COMPLETE)
            logger.info(f"Enrichment complete for user {user_id}")
        except Exception as e:
            logger.error(f"Enrichment failed for user {user_id}: {e}")
            job.finish(JOB_ERROR, str(e))

        self.job_store.save(job)
        return job

    def on_cursor(self) -> 'EnrichmentRunner':
        """A copy of this runner whose store and caches share a new cursor"""
        store = self.store.cursor()
        weather_cache = copy.copy(self.weather_cache)
        weather_cache.store = store
        place_cache = copy.copy(self.place_cache)
        place_cache.store = store
        return EnrichmentRunner(store, weather_cache, place_cache, self.job_store, self.place_batch)

    def _run_and_close(self, user_id: str):
        try:
            self.run(user_id)
        finally:
            self.store.close()

    def start(self, user_id: str) -> threading.Thread:
        """Run enrichment on a daemon thread with its own cursor and return immediately"""
        runner = self.on_cursor()
        thread = threading.Thread(
            target=runner._run_and_close, args=(user_id,), name=f"enrich-{user_id}", daemon=True
        )
        thread.start()
        return thread

    def status(self, user_id: str) -> dict:
        """Current job state, or what is pending when no job has run yet"""
        job = self.job_store.get(user_id)
        if job is None:
            stats = self.weather_cache.enrichment_stats(user_id)
            return {
                'status': JOB_IDLE,
                'pending': {
                    'weatherDays': stats['toEnrich'],
                    'places': len(self.store.places_missing_names()),
                },
            }

        return {
            'status': job.status,
            'startedAt': job.started_at,
            'completedAt': job.completed_at,
            'progress': job.progress,
            'error': job.error,
        }
