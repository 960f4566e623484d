"""Database storage module for users, preferences, observations and alert logs."""

import sqlite3
import logging
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional
from contextlib import contextmanager

from models import (
    User, Preferences, PreferencesUpdate, Observation, AlertLogEntry, CityInfo,
    normalize_email, normalize_city, normalize_country,
)
from errors import DatabaseError, ConflictError, NotFoundError, ConfigError

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONNECTIONS = 10
CASEFOLD_COLLATION = "CASEFOLD"

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL UNIQUE COLLATE CASEFOLD,
        city TEXT NOT NULL COLLATE CASEFOLD,
        country TEXT NOT NULL CHECK (length(country) = 2),
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_users_city ON users(city)",
    "CREATE INDEX IF NOT EXISTS idx_users_email ON users(email)",
    """
    CREATE TABLE IF NOT EXISTS user_preferences (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL UNIQUE REFERENCES users(id) ON DELETE CASCADE,
        min_temp INTEGER,
        max_temp INTEGER,
        alert_on_rain BOOLEAN NOT NULL DEFAULT 0,
        alert_on_snow BOOLEAN NOT NULL DEFAULT 0,
        alert_on_storm BOOLEAN NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_preferences_user_id ON user_preferences(user_id)",
    """
    CREATE TABLE IF NOT EXISTS weather_data (
        id TEXT PRIMARY KEY,
        city TEXT NOT NULL COLLATE CASEFOLD,
        country TEXT NOT NULL,
        temperature REAL NOT NULL,
        feels_like REAL NOT NULL,
        conditions TEXT NOT NULL,
        description TEXT,
        humidity INTEGER NOT NULL,
        wind_speed REAL NOT NULL,
        pressure INTEGER NOT NULL,
        fetched_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_weather_city ON weather_data(city)",
    "CREATE INDEX IF NOT EXISTS idx_weather_fetched_at ON weather_data(fetched_at DESC)",
    """
    CREATE TABLE IF NOT EXISTS alert_logs (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        alert_type TEXT NOT NULL,
        message TEXT NOT NULL,
        sent_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_alerts_user_id ON alert_logs(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_alerts_sent_at ON alert_logs(sent_at DESC)",
]


def database_path_from_url(database_url: str) -> str:
    """Resolve DATABASE_URL to a SQLite file path.

    Accepts ``sqlite:///relative.db``, ``sqlite:////absolute.db`` or a bare path.
    """
    if not database_url:
        raise ConfigError("DATABASE_URL not set")
    if database_url.startswith("sqlite:///"):
        path = database_url[len("sqlite:///"):]
    elif "://" in database_url:
        scheme = database_url.split("://", 1)[0]
        raise ConfigError(f"Unsupported database scheme '{scheme}', expected sqlite")
    else:
        path = database_url
    if not path or path == ":memory:":
        raise ConfigError("DATABASE_URL must point to a database file")
    return path


def _casefold_collation(left: str, right: str) -> int:
    """Unicode case-insensitive ordering (SQLite's NOCASE folds ASCII only)."""
    left, right = left.casefold(), right.casefold()
    return (left > right) - (left < right)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec='microseconds')


def _canonical_id(value: str) -> Optional[str]:
    try:
        return str(uuid.UUID(str(value)))
    except ValueError:
        return None


class WeatherAlertDatabase:
    """SQLite database for the weather alert service.

    Every operation runs on its own short-lived connection. At most
    ``max_connections`` connections are open at any time, so the instance can
    be shared between the API threads and the scheduler loop.
    """

    def __init__(self, database_url: str, max_connections: int = DEFAULT_MAX_CONNECTIONS):
        """Initialize database handle (the schema is created by init_database)."""
        self.db_path = database_path_from_url(database_url)
        self._pool = threading.BoundedSemaphore(max_connections)

    def init_database(self):
        """Create database tables and indexes if they don't exist."""
        parent = Path(self.db_path).parent
        parent.mkdir(parents=True, exist_ok=True)

        with self.get_connection() as conn:
            cursor = conn.cursor()
            for i, statement in enumerate(SCHEMA, start=1):
                logger.debug(f"Executing schema statement {i} of {len(SCHEMA)}")
                cursor.execute(statement)
            conn.commit()

        logger.info(f"Database schema ready at {self.db_path}")

    @contextmanager
    def get_connection(self):
        """Get a database connection with WAL mode and foreign keys enabled."""
        with self._pool:
            try:
                conn = sqlite3.connect(self.db_path, timeout=10)
            except sqlite3.Error as e:
                logger.error(f"Database connection error to {self.db_path}: {e}")
                raise DatabaseError(str(e)) from e
            try:
                conn.row_factory = sqlite3.Row
                # Must exist before any statement touching email/city columns
                conn.create_collation(CASEFOLD_COLLATION, _casefold_collation)
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA busy_timeout = 5000")  # 5 seconds
                conn.execute("PRAGMA foreign_keys = ON")
                yield conn
            except sqlite3.Error as e:
                logger.error(f"Database error: {e}")
                raise DatabaseError(str(e)) from e
            finally:
                conn.close()

    # =========================================================================
    # Users
    # =========================================================================

    def create_user(self, email: str, city: str, country: str) -> User:
        """Insert a user and its default preferences in one transaction."""
        email = normalize_email(email)
        city = normalize_city(city)
        country = normalize_country(country)

        now = _now()
        user_id = str(uuid.uuid4())

        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute("""
                    INSERT INTO users (id, email, city, country, created_at)
                    VALUES (?, ?, ?, ?, ?)
                """, (user_id, email, city, country, now))
                cursor.execute("""
                    INSERT INTO user_preferences (id, user_id, created_at, updated_at)
                    VALUES (?, ?, ?, ?)
                """, (str(uuid.uuid4()), user_id, now, now))
            except sqlite3.IntegrityError as e:
                conn.rollback()
                if 'users.email' in str(e):
                    raise ConflictError("User with this email already exists")
                raise
            conn.commit()

        logger.info(f"User created: {email} - {city}, {country}")
        return User(
            id=user_id,
            email=email,
            city=city,
            country=country,
            created_at=datetime.fromisoformat(now)
        )

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        user_id = _canonical_id(user_id)
        if user_id is None:
            return None
        with self.get_connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            return self._row_to_user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        """Case-insensitive lookup by email."""
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?", (email.strip(),)
            ).fetchone()
            return self._row_to_user(row) if row else None

    def list_users(self) -> List[User]:
        """All users, newest first."""
        with self.get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM users ORDER BY created_at DESC, rowid DESC"
            ).fetchall()
            return [self._row_to_user(row) for row in rows]

    def list_users_in_city(self, city: str, country: Optional[str] = None) -> List[User]:
        """Users whose city matches case-insensitively, optionally narrowed by country."""
        with self.get_connection() as conn:
            if country:
                rows = conn.execute("""
                    SELECT * FROM users WHERE city = ? AND country = ?
                    ORDER BY created_at ASC, rowid ASC
                """, (city, country.upper())).fetchall()
            else:
                rows = conn.execute("""
                    SELECT * FROM users WHERE city = ?
                    ORDER BY created_at ASC, rowid ASC
                """, (city,)).fetchall()
            return [self._row_to_user(row) for row in rows]

    def list_distinct_user_cities(self) -> List[CityInfo]:
        """Distinct (city, country) pairs with at least one user, sorted by city."""
        with self.get_connection() as conn:
            rows = conn.execute("""
                SELECT MIN(city) AS city, country FROM users
                GROUP BY city, country
                ORDER BY city COLLATE CASEFOLD, country
            """).fetchall()
            return [CityInfo(city=row['city'], country=row['country']) for row in rows]

    def delete_user(self, user_id: str) -> bool:
        """Remove a user; preferences and alert logs cascade."""
        user_id = _canonical_id(user_id)
        if user_id is None:
            return False
        with self.get_connection() as conn:
            cursor = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
            conn.commit()
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info(f"User deleted: {user_id}")
        return deleted

    # =========================================================================
    # Preferences
    # =========================================================================

    def get_preferences(self, user_id: str) -> Optional[Preferences]:
        user_id = _canonical_id(user_id)
        if user_id is None:
            return None
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM user_preferences WHERE user_id = ?", (user_id,)
            ).fetchone()
            return self._row_to_preferences(row) if row else None

    def update_preferences(self, user_id: str, update: PreferencesUpdate) -> Preferences:
        """Apply a partial update; fields left as None keep their stored value."""
        canonical = _canonical_id(user_id)
        if canonical is None:
            raise NotFoundError("Preferences not found")

        with self.get_connection() as conn:
            cursor = conn.execute("""
                UPDATE user_preferences
                SET
                    min_temp = COALESCE(?, min_temp),
                    max_temp = COALESCE(?, max_temp),
                    alert_on_rain = COALESCE(?, alert_on_rain),
                    alert_on_snow = COALESCE(?, alert_on_snow),
                    alert_on_storm = COALESCE(?, alert_on_storm),
                    updated_at = ?
                WHERE user_id = ?
            """, (
                update.min_temp, update.max_temp,
                update.alert_on_rain, update.alert_on_snow, update.alert_on_storm,
                _now(), canonical
            ))
            if cursor.rowcount == 0:
                conn.rollback()
                raise NotFoundError("Preferences not found")
            conn.commit()

            row = conn.execute(
                "SELECT * FROM user_preferences WHERE user_id = ?", (canonical,)
            ).fetchone()

        logger.info(f"Preferences updated for user: {canonical}")
        return self._row_to_preferences(row)

    # =========================================================================
    # Observations
    # =========================================================================

    def store_observation(self, observation: Observation) -> Observation:
        """Insert an observation. Observations are never updated."""
        observation.id = observation.id or str(uuid.uuid4())
        data = observation.to_dict()
        data['fetched_at'] = observation.fetched_at.isoformat(timespec='microseconds')

        with self.get_connection() as conn:
            conn.execute("""
                INSERT INTO weather_data
                (id, city, country, temperature, feels_like, conditions, description,
                 humidity, wind_speed, pressure, fetched_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                data['id'], data['city'], data['country'], data['temperature'],
                data['feels_like'], data['conditions'], data['description'],
                data['humidity'], data['wind_speed'], data['pressure'], data['fetched_at']
            ))
            conn.commit()

        logger.debug(f"Stored observation for {observation.city}, {observation.country}")
        return observation

    def get_latest_observation(self, city: str) -> Optional[Observation]:
        with self.get_connection() as conn:
            row = conn.execute("""
                SELECT * FROM weather_data
                WHERE city = ?
                ORDER BY fetched_at DESC, rowid DESC
                LIMIT 1
            """, (city,)).fetchone()
            return self._row_to_observation(row) if row else None

    def get_observation_history(self, city: str, limit: int = 24) -> List[Observation]:
        """Observations for a city, newest first."""
        with self.get_connection() as conn:
            rows = conn.execute("""
                SELECT * FROM weather_data
                WHERE city = ?
                ORDER BY fetched_at DESC, rowid DESC
                LIMIT ?
            """, (city, limit)).fetchall()
            return [self._row_to_observation(row) for row in rows]

    # =========================================================================
    # Alert log
    # =========================================================================

    def log_alert(self, user_id: str, alert_type: str, message: str) -> AlertLogEntry:
        entry = AlertLogEntry(
            id=str(uuid.uuid4()),
            user_id=user_id,
            alert_type=alert_type,
            message=message,
            sent_at=datetime.now(timezone.utc)
        )
        with self.get_connection() as conn:
            conn.execute("""
                INSERT INTO alert_logs (id, user_id, alert_type, message, sent_at)
                VALUES (?, ?, ?, ?, ?)
            """, (entry.id, entry.user_id, entry.alert_type, entry.message,
                  entry.sent_at.isoformat(timespec='microseconds')))
            conn.commit()
        return entry

    def get_user_alerts(self, user_id: str, limit: int = 50) -> List[AlertLogEntry]:
        user_id = _canonical_id(user_id)
        if user_id is None:
            return []
        with self.get_connection() as conn:
            rows = conn.execute("""
                SELECT * FROM alert_logs
                WHERE user_id = ?
                ORDER BY sent_at DESC, rowid DESC
                LIMIT ?
            """, (user_id, limit)).fetchall()
            return [self._row_to_alert(row) for row in rows]

    def get_all_alerts(self, limit: int = 100) -> List[AlertLogEntry]:
        with self.get_connection() as conn:
            rows = conn.execute("""
                SELECT * FROM alert_logs
                ORDER BY sent_at DESC, rowid DESC
                LIMIT ?
            """, (limit,)).fetchall()
            return [self._row_to_alert(row) for row in rows]

    # =========================================================================
    # Row mapping
    # =========================================================================

    @staticmethod
    def _row_to_user(row) -> User:
        return User(
            id=row['id'],
            email=row['email'],
            city=row['city'],
            country=row['country'],
            created_at=datetime.fromisoformat(row['created_at'])
        )

    @staticmethod
    def _row_to_preferences(row) -> Preferences:
        return Preferences(
            id=row['id'],
            user_id=row['user_id'],
            min_temp=row['min_temp'],
            max_temp=row['max_temp'],
            alert_on_rain=bool(row['alert_on_rain']),
            alert_on_snow=bool(row['alert_on_snow']),
            alert_on_storm=bool(row['alert_on_storm']),
            created_at=datetime.fromisoformat(row['created_at']),
            updated_at=datetime.fromisoformat(row['updated_at'])
        )

    @staticmethod
    def _row_to_observation(row) -> Observation:
        return Observation(
            id=row['id'],
            city=row['city'],
            country=row['country'],
            temperature=float(row['temperature']),
            feels_like=float(row['feels_like']),
            conditions=row['conditions'],
            description=row['description'] or "",
            humidity=int(row['humidity']),
            wind_speed=float(row['wind_speed']),
            pressure=int(row['pressure']),
            fetched_at=datetime.fromisoformat(row['fetched_at'])
        )

    @staticmethod
    def _row_to_alert(row) -> AlertLogEntry:
        return AlertLogEntry(
            id=row['id'],
            user_id=row['user_id'],
            alert_type=row['alert_type'],
            message=row['message'],
            sent_at=datetime.fromisoformat(row['sent_at'])
        )
