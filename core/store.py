"""
Durable journal storage on DuckDB

Every bulk insert goes through one contract: rows whose natural key already
exists are ignored, never reported as failures. Re-running an import or an
enrichment is therefore always safe.
"""

import duckdb
import json
import logging
from core.errors import ConstraintViolation
from core.models import DayVisit, EnrichmentRecord, Place, WeatherCacheEntry
from datetime import UTC, date, datetime, timedelta
from pathlib import Path

logger = logging.getLogger(__name__)

DDL = """
create table if not exists locations (
    user_id varchar not null,
    ts timestamp not null,
    lat double not null,
    lon double not null,
    source varchar not null,
    activity_type varchar,
    created_at timestamp default current_timestamp,
    primary key (user_id, ts, lat, lon, source)
);

create table if not exists places (
    id varchar primary key,
    name varchar,
    address varchar,
    types varchar,
    photo_url varchar,
    created_at timestamp default current_timestamp,
    updated_at timestamp default current_timestamp
);

create table if not exists visits (
    user_id varchar not null,
    place_id varchar not null,
    lat double not null,
    lon double not null,
    start_time timestamp not null,
    end_time timestamp,
    duration_minutes integer,
    semantic_type varchar,
    probability double,
    created_at timestamp default current_timestamp,
    primary key (user_id, place_id, start_time)
);

create table if not exists enrichments (
    type varchar not null,
    status varchar not null,
    place_id varchar,
    user_id varchar,
    metadata varchar,
    created_at timestamp not null
);

create table if not exists weather_cache (
    key varchar not null,
    day date not null,
    temp_max integer,
    temp_min integer,
    condition varchar,
    precipitation double,
    weather_code integer,
    lat double,
    lon double,
    created_at timestamp default current_timestamp,
    primary key (key, day)
);

create table if not exists day_data (
    user_id varchar not null,
    day date not null,
    weather varchar,
    updated_at timestamp,
    primary key (user_id, day)
);
"""

LOCATION_COLUMNS = ['user_id', 'ts', 'lat', 'lon', 'source', 'activity_type']
VISIT_COLUMNS = [
    'user_id',
    'place_id',
    'lat',
    'lon',
    'start_time',
    'end_time',
    'duration_minutes',
    'semantic_type',
    'probability',
]
WEATHER_COLUMNS = ['key', 'day', 'temp_max', 'temp_min', 'condition', 'precipitation', 'weather_code', 'lat', 'lon']


def to_db_time(value: datetime | None) -> datetime | None:
    """DuckDB TIMESTAMP columns hold naive UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def from_db_time(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value.replace(tzinfo=UTC)


def connect(db_path: str | Path = ':memory:') -> duckdb.DuckDBPyConnection:
    if str(db_path) != ':memory:':
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(str(db_path))


def init_db(conn: duckdb.DuckDBPyConnection) -> None:
    conn.execute(DDL)


class JournalStore:
    """Location, visit, place, enrichment and weather tables behind one connection"""

    def __init__(self, conn: duckdb.DuckDBPyConnection, initialize: bool = True):
        self.conn = conn
        if initialize:
            init_db(conn)

    @classmethod
    def open(cls, db_path: str | Path = ':memory:') -> 'JournalStore':
        return cls(connect(db_path))

    def cursor(self) -> 'JournalStore':
        """A store on its own cursor over the same database, for use from another thread"""
        return JournalStore(self.conn.cursor(), initialize=False)

    def close(self):
        self.conn.close()

    def count(self, table: str) -> int:
        return self.conn.execute(f"select count(*) from {table}").fetchone()[0]

    def insert_ignoring_conflicts(self, table: str, columns: list[str], rows: list[list]) -> int:
        """
        Insert rows, silently skipping any whose primary key already exists

        Returns:
            int: Number of rows actually created
        """
        if not rows:
            return 0

        placeholders = ', '.join('?' for _ in columns)
        before = self.count(table)
        self.conn.executemany(
            f"insert into {table} ({', '.join(columns)}) values ({placeholders}) on conflict do nothing",
            rows,
        )
        return self.count(table) - before

    # Locations and visits

    def insert_locations(self, rows: list[list]) -> int:
        return self.insert_ignoring_conflicts('locations', LOCATION_COLUMNS, rows)

    def insert_visits(self, rows: list[list]) -> int:
        return self.insert_ignoring_conflicts('visits', VISIT_COLUMNS, rows)

    def visits_for_day(self, user_id: str, day: date) -> list[DayVisit]:
        """A user's visits starting on a UTC calendar day, in start order"""
        day_start = datetime(day.year, day.month, day.day)
        rows = self.conn.execute(
            """
            select v.lat, v.lon, v.duration_minutes, p.name, p.address
            from visits v
            left join places p on p.id = v.place_id
            where v.user_id = ? and v.start_time >= ? and v.start_time < ?
            order by v.start_time, v.place_id
            """,
            [user_id, day_start, day_start + timedelta(days=1)],
        ).fetchall()
        return [DayVisit(*row) for row in rows]

    def visit_dates(self, user_id: str, start: date | None = None, end: date | None = None) -> set[date]:
        query = "select distinct cast(start_time as date) from visits where user_id = ?"
        params: list = [user_id]
        if start:
            query += " and cast(start_time as date) >= ?"
            params.append(start)
        if end:
            query += " and cast(start_time as date) <= ?"
            params.append(end)
        return {row[0] for row in self.conn.execute(query, params).fetchall()}

    # Places

    def insert_places(self, place_ids: list[str]) -> int:
        return self.insert_ignoring_conflicts('places', ['id'], [[place_id] for place_id in place_ids])

    def get_place(self, place_id: str) -> Place | None:
        row = self.conn.execute(
            "select id, name, address, types, photo_url from places where id = ?", [place_id]
        ).fetchone()
        if row is None:
            return None
        return Place(id=row[0], name=row[1], address=row[2], types=json.loads(row[3]) if row[3] else [], photo_url=row[4])

    def fill_place(
        self,
        place_id: str,
        name: str | None = None,
        address: str | None = None,
        types: list[str] | None = None,
        photo_url: str | None = None,
    ) -> Place | None:
        """Set only the place fields that are still empty"""
        self.conn.execute(
            """
            update places set
                name = coalesce(name, ?),
                address = coalesce(address, ?),
                types = case when types is null or types = '[]' then ? else types end,
                photo_url = coalesce(photo_url, ?),
                updated_at = ?
            where id = ?
            """,
            [name, address, json.dumps(types or []), photo_url, datetime.now(UTC).replace(tzinfo=None), place_id],
        )
        return self.get_place(place_id)

    def places_missing_names(self, limit: int | None = None) -> list[tuple]:
        """
        Places still without a name, with the coordinates of their earliest visit

        Returns:
            list: (place_id, lat, lon) tuples; lat/lon are None for places nobody visited
        """
        query = """
            select p.id, arg_min(v.lat, v.start_time), arg_min(v.lon, v.start_time)
            from places p
            left join visits v on v.place_id = p.id
            where p.name is null
            group by p.id
            order by p.id
        """
        if limit:
            query += f" limit {int(limit)}"
        return self.conn.execute(query).fetchall()

    # Enrichment audit trail

    def append_enrichment(self, record: EnrichmentRecord) -> None:
        self.conn.execute(
            "insert into enrichments (type, status, place_id, user_id, metadata, created_at) values (?, ?, ?, ?, ?, ?)",
            [
                record.type,
                record.status,
                record.place_id,
                record.user_id,
                json.dumps(record.metadata, default=str),
                to_db_time(record.timestamp),
            ],
        )

    def enrichments_for_place(self, place_id: str) -> list[EnrichmentRecord]:
        rows = self.conn.execute(
            """
            select type, status, place_id, metadata, created_at, user_id
            from enrichments where place_id = ? order by created_at, rowid
            """,
            [place_id],
        ).fetchall()
        return [
            EnrichmentRecord(
                type=row[0],
                status=row[1],
                place_id=row[2],
                metadata=json.loads(row[3]) if row[3] else {},
                timestamp=from_db_time(row[4]),
                user_id=row[5],
            )
            for row in rows
        ]

    # Global weather cache

    def get_weather(self, key: str, day: date) -> WeatherCacheEntry | None:
        row = self.conn.execute(
            f"select {', '.join(WEATHER_COLUMNS)} from weather_cache where key = ? and day = ?", [key, day]
        ).fetchone()
        return WeatherCacheEntry(*row) if row else None

    def insert_weather(self, entry: WeatherCacheEntry) -> None:
        """Raises ConstraintViolation when another run already cached (key, date)"""
        try:
            self.conn.execute(
                f"insert into weather_cache ({', '.join(WEATHER_COLUMNS)}) values ({', '.join('?' for _ in WEATHER_COLUMNS)})",
                [
                    entry.key,
                    entry.date,
                    entry.temp_max,
                    entry.temp_min,
                    entry.condition,
                    entry.precipitation,
                    entry.weather_code,
                    entry.lat,
                    entry.lon,
                ],
            )
        except (duckdb.ConstraintException, duckdb.TransactionException) as e:
            raise ConstraintViolation('weather_cache', (entry.key, entry.date)) from e

    # Per-user day aggregates

    def get_day_weather(self, user_id: str, day: date) -> dict | None:
        row = self.conn.execute(
            "select weather from day_data where user_id = ? and day = ?", [user_id, day]
        ).fetchone()
        if row is None or row[0] is None:
            return None
        return json.loads(row[0])

    def save_day_weather(self, user_id: str, day: date, weather: dict) -> None:
        self.conn.execute(
            """
            insert into day_data (user_id, day, weather, updated_at) values (?, ?, ?, ?)
            on conflict (user_id, day) do update set weather = excluded.weather, updated_at = excluded.updated_at
            """,
            [user_id, day, json.dumps(weather), datetime.now(UTC).replace(tzinfo=None)],
        )

    def weather_dates(self, user_id: str) -> set[date]:
        rows = self.conn.execute(
            "select day from day_data where user_id = ? and weather is not null", [user_id]
        ).fetchall()
        return {row[0] for row in rows}
