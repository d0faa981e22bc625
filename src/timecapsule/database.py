"""SQLite database initialization and schema management."""

import logging
import sqlite3
import time
from pathlib import Path
from typing import Optional


logger = logging.getLogger(__name__)


class DatabaseError(Exception):
    """Base exception for database errors."""


class DatabaseConnectionError(DatabaseError):
    """Raised when database connection fails."""


class DatabaseIntegrityError(DatabaseError):
    """Raised when data integrity check fails."""


def get_database_path(db_name: str = "timecapsule.db") -> Path:
    """Get the path to the database file."""
    return Path(db_name)


def initialize_database(
    db_path: str | Path | None = None, max_retries: int = 3
) -> sqlite3.Connection:
    """Initialize the SQLite database with required tables.

    Args:
        db_path: Path to the database file. If None, uses default 'timecapsule.db'.
        max_retries: Maximum number of connection retries.

    Returns:
        Connection to the initialized database.

    Raises:
        DatabaseConnectionError: If connection fails after max retries.
    """
    if db_path is None:
        db_path = get_database_path()

    last_error: Optional[Exception] = None
    for attempt in range(1, max_retries + 1):
        try:
            conn = sqlite3.connect(db_path, timeout=30.0)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")

            create_tables(conn)

            logger.info(f"Database initialized successfully at {db_path}")
            return conn
        except sqlite3.OperationalError as e:
            last_error = e
            logger.warning(
                f"Database connection attempt {attempt}/{max_retries} failed: {e}"
            )
            if attempt < max_retries:
                time.sleep(1.0)

    raise DatabaseConnectionError(
        f"Failed to connect to database after {max_retries} attempts: {last_error}"
    )


# Columns shared by both deliverable tables, after the family-specific ones.
_RELEASE_COLUMNS = """
                release_local_date TEXT NOT NULL,
                release_local_time TEXT NOT NULL DEFAULT '00:00',
                timezone TEXT,
                is_recurring INTEGER DEFAULT 0,
                recurrence_interval TEXT,
                recurrence_count INTEGER,
                recurrence_end_date TEXT,
                next_fire_instant TEXT,
                occurrence_count INTEGER DEFAULT 0,
                delivery_status TEXT DEFAULT 'pending',
                delivery_error TEXT,
                delivery_attempts INTEGER DEFAULT 0,
                last_delivery_attempt TEXT,
                last_sent_at TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (memorial_id) REFERENCES memorials(id) ON DELETE CASCADE
"""


def create_tables(conn: sqlite3.Connection, verify_only: bool = False) -> None:
    """Create all required database tables if they don't exist.

    Args:
        conn: Database connection.
        verify_only: If True, only verify tables exist without creating.
    """
    cursor = conn.cursor()

    tables = [
        (
            "memorials",
            """
            CREATE TABLE IF NOT EXISTS memorials (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                timezone TEXT,
                creator_email TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """,
        ),
        (
            "scheduled_messages",
            f"""
            CREATE TABLE IF NOT EXISTS scheduled_messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                memorial_id INTEGER NOT NULL,
                recipient_name TEXT NOT NULL,
                recipient_email TEXT,
                event_type TEXT NOT NULL DEFAULT 'custom',
                message TEXT NOT NULL,
                media_url TEXT,
                media_type TEXT,
                status TEXT DEFAULT 'pending',
                {_RELEASE_COLUMNS}
            )
        """,
        ),
        (
            "video_capsules",
            f"""
            CREATE TABLE IF NOT EXISTS video_capsules (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                memorial_id INTEGER NOT NULL,
                title TEXT NOT NULL,
                milestone_type TEXT NOT NULL,
                video_url TEXT NOT NULL,
                recipient_name TEXT,
                status TEXT DEFAULT 'scheduled',
                {_RELEASE_COLUMNS}
            )
        """,
        ),
    ]

    for table_name, create_sql in tables:
        if verify_only:
            cursor.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
                (table_name,),
            )
            if cursor.fetchone() is None:
                raise DatabaseIntegrityError(f"Table {table_name} is missing")
        else:
            cursor.execute(create_sql)

    indexes = [
        (
            "idx_scheduled_messages_due",
            "CREATE INDEX IF NOT EXISTS idx_scheduled_messages_due "
            "ON scheduled_messages(status, next_fire_instant)",
        ),
        (
            "idx_scheduled_messages_memorial_id",
            "CREATE INDEX IF NOT EXISTS idx_scheduled_messages_memorial_id "
            "ON scheduled_messages(memorial_id)",
        ),
        (
            "idx_video_capsules_due",
            "CREATE INDEX IF NOT EXISTS idx_video_capsules_due "
            "ON video_capsules(status, next_fire_instant)",
        ),
        (
            "idx_video_capsules_memorial_id",
            "CREATE INDEX IF NOT EXISTS idx_video_capsules_memorial_id "
            "ON video_capsules(memorial_id)",
        ),
    ]

    for index_name, create_sql in indexes:
        if verify_only:
            cursor.execute(
                "SELECT name FROM sqlite_master WHERE type='index' AND name=?",
                (index_name,),
            )
            if cursor.fetchone() is None:
                logger.warning(f"Index {index_name} is missing, creating...")
        cursor.execute(create_sql)

    conn.commit()


def close_database(conn: sqlite3.Connection) -> None:
    """Close the database connection."""
    try:
        conn.close()
        logger.info("Database connection closed")
    except sqlite3.Error as e:
        logger.error(f"Error closing database connection: {e}")
