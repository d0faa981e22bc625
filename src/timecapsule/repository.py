"""Database repositories for memorials and their deferred deliverables."""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Generator, Optional
from zoneinfo import ZoneInfo

from timecapsule.database import close_database, create_tables, initialize_database
from timecapsule.errors import StoreError, ValidationError
from timecapsule.models import (
    CapsuleContent,
    Deliverable,
    DeliverableKind,
    Memorial,
    MessageContent,
    statuses_for,
)


logger = logging.getLogger(__name__)

UTC = ZoneInfo("UTC")

# Fixed width, so string comparison in SQL is chronological.
INSTANT_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

_TABLES = {
    DeliverableKind.SCHEDULED_MESSAGE: "scheduled_messages",
    DeliverableKind.VIDEO_CAPSULE: "video_capsules",
}

_PATCHABLE_COLUMNS = frozenset(
    {
        "status",
        "timezone",
        "next_fire_instant",
        "occurrence_count",
        "delivery_status",
        "delivery_error",
        "delivery_attempts",
        "last_delivery_attempt",
        "last_sent_at",
    }
)


def format_instant(value: Optional[datetime]) -> Optional[str]:
    """Serialize an instant as fixed-width naive UTC text."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime(INSTANT_FORMAT)


def parse_instant(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored instant back into an aware UTC datetime."""
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace(" ", "T"))
    except (ValueError, AttributeError):
        logger.warning(f"Ignoring unparseable stored instant: {value!r}")
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


class DatabaseConnectionManager:
    """Manages SQLite database connections with context manager support."""

    def __init__(self, db_path: str | Path = "timecapsule.db", max_retries: int = 3) -> None:
        """Initialize the connection manager.

        Args:
            db_path: Path to the SQLite database file.
            max_retries: Connection attempts before giving up.
        """
        self.db_path = Path(db_path)
        self.max_retries = max_retries
        self._connection: Optional[sqlite3.Connection] = None

    def connect(self) -> sqlite3.Connection:
        """Establish a database connection, creating the schema if needed.

        Returns:
            Active database connection.
        """
        if self._connection is None:
            self._connection = initialize_database(self.db_path, self.max_retries)
        return self._connection

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            close_database(self._connection)
            self._connection = None

    def initialize(self) -> None:
        """Connect and verify that every table is present."""
        conn = self.connect()
        create_tables(conn, verify_only=True)

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database transactions with automatic commit/rollback.

        Yields:
            Active database connection within a transaction.

        Raises:
            Exception: Re-raises any exception after rollback.
        """
        conn = self.connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def get_connection(self) -> sqlite3.Connection:
        """Get the current connection, creating one if needed."""
        return self.connect()


class MemorialRepository:
    """Repository for Memorial CRUD operations."""

    def __init__(self, db_manager: DatabaseConnectionManager) -> None:
        self.db = db_manager

    def create(self, memorial: Memorial) -> Memorial:
        """Create a new memorial.

        Args:
            memorial: Memorial to insert. Its ``id`` is ignored and reassigned.

        Returns:
            Memorial with assigned ID.
        """
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO memorials (name, timezone, creator_email)
                VALUES (?, ?, ?)
                """,
                (memorial.name, memorial.timezone, memorial.creator_email),
            )
            memorial.id = cursor.lastrowid
        return memorial

    def get_by_id(self, memorial_id: int) -> Optional[Memorial]:
        """Retrieve a memorial by ID.

        Raises:
            StoreError: If the query fails.
        """
        try:
            conn = self.db.get_connection()
            row = conn.execute(
                "SELECT * FROM memorials WHERE id = ?", (memorial_id,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to load memorial {memorial_id}: {e}") from e
        return self._row_to_memorial(row) if row else None

    def update_timezone(self, memorial_id: int, timezone: Optional[str]) -> bool:
        """Change a memorial's time zone.

        Returns:
            True if the memorial exists and was updated.
        """
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE memorials SET timezone = ?, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (timezone, memorial_id),
            )
            return cursor.rowcount > 0

    def _row_to_memorial(self, row: sqlite3.Row) -> Memorial:
        return Memorial(
            id=row["id"],
            name=row["name"],
            timezone=row["timezone"],
            creator_email=row["creator_email"],
        )


class DeliverableRepository:
    """Store for scheduled messages and video capsules.

    Both families live in their own table but share the release columns, so
    reads and partial updates go through one code path keyed by kind.
    """

    def __init__(self, db_manager: DatabaseConnectionManager) -> None:
        self.db = db_manager

    def create(self, deliverable: Deliverable) -> Deliverable:
        """Insert a new deliverable.

        Args:
            deliverable: Deliverable to insert.

        Returns:
            Deliverable with assigned ID.
        """
        table = _TABLES[deliverable.kind]
        columns = self._content_columns(deliverable)
        columns.update(
            {
                "memorial_id": deliverable.owner_id,
                "status": deliverable.status,
                "release_local_date": deliverable.release_local_date,
                "release_local_time": deliverable.release_local_time,
                "timezone": deliverable.timezone,
                "is_recurring": 1 if deliverable.is_recurring else 0,
                "recurrence_interval": deliverable.recurrence_interval,
                "recurrence_count": deliverable.recurrence_count,
                "recurrence_end_date": format_instant(deliverable.recurrence_end_date),
                "next_fire_instant": format_instant(deliverable.next_fire_instant),
                "occurrence_count": deliverable.occurrence_count,
                "delivery_status": deliverable.delivery_status,
                "delivery_error": deliverable.delivery_error,
                "delivery_attempts": deliverable.delivery_attempts,
                "last_delivery_attempt": format_instant(deliverable.last_delivery_attempt),
                "last_sent_at": format_instant(deliverable.last_sent_at),
            }
        )
        names = ", ".join(columns)
        placeholders = ", ".join("?" for _ in columns)
        with self.db.transaction() as conn:
            cursor = conn.execute(
                f"INSERT INTO {table} ({names}) VALUES ({placeholders})",
                tuple(columns.values()),
            )
            deliverable.id = cursor.lastrowid
        return deliverable

    def get_by_id(self, kind: DeliverableKind, deliverable_id: int) -> Optional[Deliverable]:
        """Retrieve a deliverable by kind and ID.

        Raises:
            StoreError: If the query fails.
        """
        table = _TABLES[kind]
        try:
            conn = self.db.get_connection()
            row = conn.execute(
                f"""
                SELECT d.*, m.timezone AS owner_timezone
                FROM {table} d LEFT JOIN memorials m ON m.id = d.memorial_id
                WHERE d.id = ?
                """,
                (deliverable_id,),
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to load {kind.value} {deliverable_id}: {e}") from e
        return self._row_to_deliverable(kind, row) if row else None

    def list_active_by_owner(
        self,
        kind: DeliverableKind,
        owner_id: int,
        inherited_zone_only: bool = False,
    ) -> list[Deliverable]:
        """Retrieve every deliverable of an owner that is still awaiting a fire.

        Args:
            kind: Deliverable family.
            owner_id: Memorial ID.
            inherited_zone_only: Only return items without a zone of their own.

        Raises:
            StoreError: If the query fails.
        """
        table = _TABLES[kind]
        zone_filter = "AND d.timezone IS NULL" if inherited_zone_only else ""
        try:
            conn = self.db.get_connection()
            cursor = conn.execute(
                f"""
                SELECT d.*, m.timezone AS owner_timezone
                FROM {table} d LEFT JOIN memorials m ON m.id = d.memorial_id
                WHERE d.memorial_id = ? AND d.status = ? {zone_filter}
                ORDER BY d.id
                """,
                (owner_id, statuses_for(kind).active),
            )
            rows = cursor.fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to list {table} of memorial {owner_id}: {e}") from e
        return self._convert_rows(kind, rows)

    def find_due(self, kind: DeliverableKind, now: datetime, limit: int = 500) -> list[Deliverable]:
        """Retrieve active deliverables whose next fire instant has passed.

        A single bounded read: at most ``limit`` rows are returned; the rest
        stay due and are picked up on a later tick. Rows that fail validation
        are logged and skipped so they cannot block the rest of the family.

        Args:
            kind: Deliverable family to scan.
            now: Current instant.
            limit: Maximum rows to return.

        Returns:
            Due deliverables, oldest first.

        Raises:
            StoreError: If the query fails.
        """
        table = _TABLES[kind]
        try:
            conn = self.db.get_connection()
            cursor = conn.execute(
                f"""
                SELECT d.*, m.timezone AS owner_timezone
                FROM {table} d LEFT JOIN memorials m ON m.id = d.memorial_id
                WHERE d.status = ?
                  AND d.next_fire_instant IS NOT NULL
                  AND d.next_fire_instant <= ?
                ORDER BY d.next_fire_instant ASC
                LIMIT ?
                """,
                (statuses_for(kind).active, format_instant(now), limit),
            )
            rows = cursor.fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to scan due {table}: {e}") from e
        return self._convert_rows(kind, rows)

    def find_due_scheduled_messages(self, now: datetime, limit: int = 500) -> list[Deliverable]:
        return self.find_due(DeliverableKind.SCHEDULED_MESSAGE, now, limit)

    def find_due_video_capsules(self, now: datetime, limit: int = 500) -> list[Deliverable]:
        return self.find_due(DeliverableKind.VIDEO_CAPSULE, now, limit)

    def update_deliverable(
        self,
        kind: DeliverableKind,
        deliverable_id: int,
        patch: dict[str, Any],
    ) -> None:
        """Apply a partial update atomically.

        Args:
            kind: Deliverable family.
            deliverable_id: ID of the row to update.
            patch: Column values to set. Datetimes are stored as UTC text.

        Raises:
            StoreError: If the patch names an unknown column, the row does not
                exist, or the write fails. Nothing is persisted in that case.
        """
        if not patch:
            return
        unknown = set(patch) - _PATCHABLE_COLUMNS
        if unknown:
            raise StoreError(f"Cannot patch columns: {', '.join(sorted(unknown))}")

        table = _TABLES[kind]
        assignments = ", ".join(f"{column} = ?" for column in patch)
        values = [
            format_instant(value) if isinstance(value, datetime) else value
            for value in patch.values()
        ]
        try:
            with self.db.transaction() as conn:
                cursor = conn.execute(
                    f"""
                    UPDATE {table}
                    SET {assignments}, updated_at = CURRENT_TIMESTAMP
                    WHERE id = ?
                    """,
                    (*values, deliverable_id),
                )
                if cursor.rowcount == 0:
                    raise StoreError(f"{kind.value} {deliverable_id} not found")
        except sqlite3.Error as e:
            raise StoreError(f"Failed to update {kind.value} {deliverable_id}: {e}") from e

    def delete(self, kind: DeliverableKind, deliverable_id: int) -> bool:
        """Delete a deliverable by kind and ID."""
        with self.db.transaction() as conn:
            cursor = conn.execute(
                f"DELETE FROM {_TABLES[kind]} WHERE id = ?", (deliverable_id,)
            )
            return cursor.rowcount > 0

    def _content_columns(self, deliverable: Deliverable) -> dict[str, Any]:
        content = deliverable.content
        if isinstance(content, MessageContent):
            return {
                "recipient_name": content.recipient_name,
                "recipient_email": content.recipient_email,
                "event_type": content.event_type,
                "message": content.body,
                "media_url": content.media_ref,
                "media_type": content.media_type,
            }
        return {
            "title": content.title,
            "milestone_type": content.milestone_type,
            "video_url": content.video_ref,
            "recipient_name": content.recipient_name,
        }

    def _convert_rows(self, kind: DeliverableKind, rows: list[sqlite3.Row]) -> list[Deliverable]:
        deliverables = []
        for row in rows:
            try:
                deliverables.append(self._row_to_deliverable(kind, row))
            except ValidationError as e:
                logger.error(f"Skipping invalid {kind.value} {row['id']}: {e}")
        return deliverables

    def _row_to_deliverable(self, kind: DeliverableKind, row: sqlite3.Row) -> Deliverable:
        """Convert a database row to a Deliverable.

        The item's own zone wins; otherwise the owning memorial's zone is used.
        """
        content: MessageContent | CapsuleContent
        if kind is DeliverableKind.SCHEDULED_MESSAGE:
            content = MessageContent(
                recipient_name=row["recipient_name"],
                body=row["message"],
                event_type=row["event_type"],
                recipient_email=row["recipient_email"],
                media_ref=row["media_url"],
                media_type=row["media_type"],
            )
        else:
            content = CapsuleContent(
                title=row["title"],
                milestone_type=row["milestone_type"],
                video_ref=row["video_url"],
                recipient_name=row["recipient_name"],
            )
        return Deliverable(
            id=row["id"],
            kind=kind,
            owner_id=row["memorial_id"],
            release_local_date=row["release_local_date"],
            release_local_time=row["release_local_time"],
            content=content,
            status=row["status"],
            timezone=row["timezone"] or row["owner_timezone"],
            is_recurring=bool(row["is_recurring"]),
            recurrence_interval=row["recurrence_interval"],
            recurrence_count=row["recurrence_count"],
            recurrence_end_date=parse_instant(row["recurrence_end_date"]),
            next_fire_instant=parse_instant(row["next_fire_instant"]),
            occurrence_count=row["occurrence_count"] or 0,
            delivery_status=row["delivery_status"],
            delivery_error=row["delivery_error"],
            delivery_attempts=row["delivery_attempts"] or 0,
            last_delivery_attempt=parse_instant(row["last_delivery_attempt"]),
            last_sent_at=parse_instant(row["last_sent_at"]),
            created_at=parse_instant(row["created_at"]),
            updated_at=parse_instant(row["updated_at"]),
        )
