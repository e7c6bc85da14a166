"""
Repository pattern for data access.

Handles schema creation, the append-only event ledger, the atomic monthly
rollup upsert and tracking policy rows.
"""

import json
import sqlite3
from datetime import date, datetime, timezone
from typing import Any, List, Optional, Sequence

from cloud_cost_tracker.core.billable import EntityRef
from cloud_cost_tracker.core.rollup import utc_now
from .db import DEFAULT_DB_PATH, get_connection
from .models import TrackingMode, TrackingPolicy, UsageEvent, UsageRollup


TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS tracking_policies (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        entity_type TEXT NOT NULL,
        entity_id TEXT NOT NULL,
        tracking_mode TEXT NOT NULL DEFAULT 'all',
        tracking_features TEXT,
        usage_multiplier REAL NOT NULL DEFAULT 1.0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (entity_type, entity_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS usage_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        entity_type TEXT NOT NULL,
        entity_id TEXT NOT NULL,
        feature TEXT NOT NULL,
        execution_time_ms REAL NOT NULL,
        computed_cost REAL NOT NULL DEFAULT 0,
        cost_dimensions TEXT NOT NULL,
        metadata TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS usage_events_entity_feature
        ON usage_events (entity_type, entity_id, feature)
    """,
    """
    CREATE INDEX IF NOT EXISTS usage_events_created_at
        ON usage_events (created_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS usage_rollups (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        entity_type TEXT NOT NULL,
        entity_id TEXT NOT NULL,
        feature TEXT NOT NULL,
        period_start TEXT NOT NULL,
        total_execution_ms REAL NOT NULL DEFAULT 0,
        total_cost REAL NOT NULL DEFAULT 0,
        event_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (entity_type, entity_id, feature, period_start)
    )
    """,
)


def format_timestamp(value: datetime) -> str:
    """Serialize a datetime as UTC text; naive values are taken as UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the tracker tables and indexes if they don't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        for statement in SCHEMA:
            conn.execute(statement)
        conn.commit()
    finally:
        conn.close()


def event_from_row(row: sqlite3.Row) -> UsageEvent:
    return UsageEvent(
        id=row["id"],
        entity=EntityRef(type=row["entity_type"], id=row["entity_id"]),
        feature=row["feature"],
        execution_time_ms=row["execution_time_ms"],
        computed_cost=row["computed_cost"],
        cost_dimensions=json.loads(row["cost_dimensions"]),
        metadata=json.loads(row["metadata"]) if row["metadata"] is not None else None,
        created_at=parse_timestamp(row["created_at"]),
    )


def rollup_from_row(row: sqlite3.Row) -> UsageRollup:
    return UsageRollup(
        id=row["id"],
        entity=EntityRef(type=row["entity_type"], id=row["entity_id"]),
        feature=row["feature"],
        period_start=date.fromisoformat(row["period_start"]),
        total_execution_ms=row["total_execution_ms"],
        total_cost=row["total_cost"],
        event_count=row["event_count"],
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


def _insert_event(conn: sqlite3.Connection, event: UsageEvent) -> int:
    cursor = conn.execute("""
        INSERT INTO usage_events
        (entity_type, entity_id, feature, execution_time_ms,
         computed_cost, cost_dimensions, metadata, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
    """, (
        event.entity.type,
        event.entity.id,
        event.feature,
        event.execution_time_ms,
        event.computed_cost,
        json.dumps(event.cost_dimensions),
        json.dumps(event.metadata) if event.metadata is not None else None,
        format_timestamp(event.created_at),
    ))
    return cursor.lastrowid


def _upsert_rollup(
    conn: sqlite3.Connection,
    entity: EntityRef,
    feature: str,
    period_start: date,
    execution_time_ms: float,
    cost: float,
    now: datetime
) -> None:
    timestamp = format_timestamp(now)
    conn.execute("""
        INSERT INTO usage_rollups
        (entity_type, entity_id, feature, period_start,
         total_execution_ms, total_cost, event_count, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?)
        ON CONFLICT (entity_type, entity_id, feature, period_start) DO UPDATE SET
            total_execution_ms = total_execution_ms + excluded.total_execution_ms,
            total_cost = total_cost + excluded.total_cost,
            event_count = event_count + 1,
            updated_at = excluded.updated_at
    """, (
        entity.type,
        entity.id,
        feature,
        period_start.isoformat(),
        execution_time_ms,
        cost,
        timestamp,
        timestamp,
    ))


class UsageRepository:
    """Repository for usage events, rollups and tracking policies.

    Every operation opens its own connection and closes it when done, so a
    repository can be shared between threads.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def initialize_schema(self) -> None:
        initialize_schema(self.db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = get_connection(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def fetch_all(self, query: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        """Run a read-only query and return all rows."""
        conn = self._connect()
        try:
            return conn.execute(query, list(params)).fetchall()
        finally:
            conn.close()

    # Usage events

    def insert_usage_event(self, event: UsageEvent) -> int:
        """Append a usage event to the ledger.

        Args:
            event: The usage event to record

        Returns:
            Row id of the new event
        """
        conn = self._connect()
        try:
            event_id = _insert_event(conn, event)
            conn.commit()
            return event_id
        finally:
            conn.close()

    def fetch_usage_events(
        self,
        entity: Optional[EntityRef] = None,
        feature: Optional[str] = None,
        limit: int = 1000
    ) -> List[UsageEvent]:
        """Fetch usage events, newest first, optionally filtered.

        Args:
            entity: Optional filter for one billable entity
            feature: Optional filter for one feature
            limit: Maximum number of events to return
        """
        query = "SELECT * FROM usage_events"
        conditions = []
        params: List[Any] = []

        if entity is not None:
            conditions.append("entity_type = ? AND entity_id = ?")
            params.extend([entity.type, entity.id])
        if feature:
            conditions.append("feature = ?")
            params.append(feature)

        if conditions:
            query += " WHERE " + " AND ".join(conditions)

        query += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit)

        return [event_from_row(row) for row in self.fetch_all(query, params)]

    # Rollups

    def increment_rollup(
        self,
        entity: EntityRef,
        feature: str,
        period_start: date,
        execution_time_ms: float,
        cost: float,
        now: Optional[datetime] = None
    ) -> None:
        """Add one invocation to the monthly rollup in a single statement.

        Inserts the row seeded with this invocation, or on conflict adds to
        the existing totals. The increment happens inside SQLite, so
        concurrent writers for the same key never lose updates.
        """
        conn = self._connect()
        try:
            _upsert_rollup(conn, entity, feature, period_start, execution_time_ms, cost, now or utc_now())
            conn.commit()
        finally:
            conn.close()

    def record_usage(
        self,
        event: Optional[UsageEvent],
        entity: EntityRef,
        feature: str,
        period_start: date,
        execution_time_ms: float,
        cost: float,
        now: Optional[datetime] = None
    ) -> Optional[int]:
        """Write the event and its rollup increment in one transaction.

        Either both rows change or neither does. ``event`` may be None when
        event logging is off, in which case only the rollup is written.

        Returns:
            Row id of the new event, or None when no event was given
        """
        conn = self._connect()
        try:
            event_id = _insert_event(conn, event) if event is not None else None
            _upsert_rollup(conn, entity, feature, period_start, execution_time_ms, cost, now or utc_now())
            conn.commit()
            return event_id
        except sqlite3.Error:
            conn.rollback()
            raise
        finally:
            conn.close()

    def fetch_usage_rollups(
        self,
        entity: Optional[EntityRef] = None,
        feature: Optional[str] = None
    ) -> List[UsageRollup]:
        """Fetch rollups, most recent period first."""
        query = "SELECT * FROM usage_rollups"
        conditions = []
        params: List[Any] = []

        if entity is not None:
            conditions.append("entity_type = ? AND entity_id = ?")
            params.extend([entity.type, entity.id])
        if feature:
            conditions.append("feature = ?")
            params.append(feature)

        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY period_start DESC, feature"

        return [rollup_from_row(row) for row in self.fetch_all(query, params)]

    # Tracking policies

    def get_tracking_policy(self, entity: EntityRef) -> Optional[TrackingPolicy]:
        """Load the policy row for an entity, or None if it has none."""
        rows = self.fetch_all(
            "SELECT * FROM tracking_policies WHERE entity_type = ? AND entity_id = ?",
            (entity.type, entity.id),
        )
        if not rows:
            return None

        row = rows[0]
        features = json.loads(row["tracking_features"]) if row["tracking_features"] else []
        return TrackingPolicy(
            entity=entity,
            tracking_mode=TrackingMode(row["tracking_mode"]),
            tracking_features=frozenset(features),
            usage_multiplier=row["usage_multiplier"],
        )

    def save_tracking_policy(self, policy: TrackingPolicy) -> None:
        """Create or replace the policy row for the policy's entity.

        Resolvers cache policies; call ``flush()`` on them after saving.
        """
        timestamp = format_timestamp(utc_now())
        conn = self._connect()
        try:
            conn.execute("""
                INSERT INTO tracking_policies
                (entity_type, entity_id, tracking_mode, tracking_features,
                 usage_multiplier, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (entity_type, entity_id) DO UPDATE SET
                    tracking_mode = excluded.tracking_mode,
                    tracking_features = excluded.tracking_features,
                    usage_multiplier = excluded.usage_multiplier,
                    updated_at = excluded.updated_at
            """, (
                policy.entity.type,
                policy.entity.id,
                policy.tracking_mode.value,
                json.dumps(sorted(policy.tracking_features)),
                policy.usage_multiplier,
                timestamp,
                timestamp,
            ))
            conn.commit()
        finally:
            conn.close()

    def delete_tracking_policy(self, entity: EntityRef) -> bool:
        """Remove an entity's policy row. Returns True if one existed."""
        conn = self._connect()
        try:
            cursor = conn.execute(
                "DELETE FROM tracking_policies WHERE entity_type = ? AND entity_id = ?",
                (entity.type, entity.id),
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()
