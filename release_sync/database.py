"""
Persisted calendar store.

Handles all database operations including:
- Connection management with SQLAlchemy
- Owner-scoped upsert/delete/read of reconciled events
- The per-owner full-sync marker and cache epoch
- Table setup
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .config import Config
from .exceptions import StoreError
from .models import MediaKind, ReconciledEvent
from .utils import setup_logger

EVENT_COLUMNS = [
    "owner_id",
    "title_id",
    "media_kind",
    "season_number",
    "episode_number",
    "air_date",
    "air_instant",
    "release_type",
    "source",
    "title_name",
    "episode_name",
    "overview",
    "poster_path",
    "backdrop_path",
    "release_country",
]
EVENT_KEY = ["owner_id", "title_id", "media_kind", "season_number", "episode_number"]


class CalendarStore(ABC):
    """
    Interface the sync engine persists through.

    Every operation is scoped to a single owner.
    """

    @abstractmethod
    def upsert_events(self, events: List[ReconciledEvent]) -> int:
        """Insert or fully replace events by their key. Returns rows written."""

    @abstractmethod
    def delete_owner_events(self, owner_id: str) -> int:
        """Delete every cached event of an owner. Returns rows deleted."""

    @abstractmethod
    def delete_title_events(self, owner_id: str, title_id: int, media_kind: MediaKind) -> int:
        """Delete one title's events for an owner (title untracked)."""

    @abstractmethod
    def read_owner_events(self, owner_id: str) -> List[ReconciledEvent]:
        """Read every cached event of an owner."""

    @abstractmethod
    def mark_full_sync(self, owner_id: str, when: Optional[datetime] = None) -> None:
        """Record that the owner's cache was fully rebuilt."""

    @abstractmethod
    def is_full_sync_completed(self, owner_id: str) -> bool:
        """Whether a full sync has ever completed for the owner."""

    @abstractmethod
    def get_cache_epoch(self, owner_id: str) -> int:
        """Current read-through cache epoch for the owner."""

    @abstractmethod
    def bump_cache_epoch(self, owner_id: str) -> int:
        """Increment and return the owner's cache epoch."""


class SQLCalendarStore(CalendarStore):
    """
    SQLAlchemy-backed calendar store.

    Works on MySQL (production) and SQLite (local development, tests).
    Every SQLAlchemy failure surfaces as StoreError.
    """

    REQUIRED_TABLES = ["user_calendar_events", "sync_state"]

    def __init__(self, config: Optional[Config] = None, engine: Optional[Engine] = None, log_dir=None):
        if engine is None and config is None:
            raise ValueError("SQLCalendarStore needs a config or an engine")
        self.config = config
        self.engine = engine or self._create_engine()
        self.logger = setup_logger("database", log_dir or (config.log_dir if config else None))

    def _create_engine(self) -> Engine:
        """Create SQLAlchemy engine with connection pooling."""
        url = self.config.get_db_url()
        if url.startswith("sqlite"):
            return create_engine(url, connect_args={"check_same_thread": False})
        return create_engine(
            url,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            pool_recycle=3600,
        )

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def _execute(self, query: str, params: Optional[dict] = None) -> list:
        """Execute a query and return results."""
        try:
            with self.engine.connect() as conn:
                result = conn.execute(text(query), params or {})
                rows = result.mappings().all() if result.returns_rows else []
                conn.commit()
                return rows
        except SQLAlchemyError as e:
            self.logger.error(f"Query failed: {e}")
            raise StoreError(f"Calendar store query failed: {e}") from e

    # ============ SETUP OPERATIONS ============

    def table_exists(self, table_name: str) -> bool:
        """Check if a specific table exists."""
        try:
            return inspect(self.engine).has_table(table_name)
        except SQLAlchemyError as e:
            raise StoreError(f"Calendar store unavailable: {e}") from e

    def check_and_create_tables(self) -> dict:
        """
        Check which tables exist and create any that are missing.

        Returns:
            {"existing": List[str], "created": List[str]}
        """
        result = {"existing": [], "created": []}
        for table in self.REQUIRED_TABLES:
            if self.table_exists(table):
                result["existing"].append(table)
            else:
                self._create_table(table)
                result["created"].append(table)
        return result

    def _create_table(self, table_name: str) -> None:
        """Create a specific table."""
        sql_templates = {
            "user_calendar_events": """
                CREATE TABLE IF NOT EXISTS user_calendar_events (
                    owner_id VARCHAR(64) NOT NULL,
                    title_id INT NOT NULL,
                    media_kind VARCHAR(16) NOT NULL,
                    season_number INT NOT NULL,
                    episode_number INT NOT NULL,
                    air_date VARCHAR(10) NOT NULL,
                    air_instant VARCHAR(40),
                    release_type VARCHAR(16),
                    source VARCHAR(20),
                    title_name VARCHAR(255) NOT NULL DEFAULT '',
                    episode_name VARCHAR(255),
                    overview TEXT,
                    poster_path VARCHAR(255),
                    backdrop_path VARCHAR(255),
                    release_country VARCHAR(8),
                    PRIMARY KEY (owner_id, title_id, media_kind, season_number, episode_number)
                )
            """,
            "sync_state": """
                CREATE TABLE IF NOT EXISTS sync_state (
                    owner_id VARCHAR(64) PRIMARY KEY,
                    full_sync_completed INT NOT NULL DEFAULT 0,
                    last_full_sync VARCHAR(40),
                    cache_epoch INT NOT NULL DEFAULT 0
                )
            """,
        }
        self._execute(sql_templates[table_name])
        self.logger.info(f"Created table: {table_name}")

    # ============ EVENT OPERATIONS ============

    def _upsert_sql(self) -> str:
        columns = ", ".join(EVENT_COLUMNS)
        placeholders = ", ".join(f":{c}" for c in EVENT_COLUMNS)
        updates = [c for c in EVENT_COLUMNS if c not in EVENT_KEY]

        if self.dialect == "mysql":
            set_clause = ", ".join(f"{c} = VALUES({c})" for c in updates)
            return (
                f"INSERT INTO user_calendar_events ({columns}) VALUES ({placeholders}) "
                f"ON DUPLICATE KEY UPDATE {set_clause}"
            )

        set_clause = ", ".join(f"{c} = excluded.{c}" for c in updates)
        return (
            f"INSERT INTO user_calendar_events ({columns}) VALUES ({placeholders}) "
            f"ON CONFLICT ({', '.join(EVENT_KEY)}) DO UPDATE SET {set_clause}"
        )

    def upsert_events(self, events: List[ReconciledEvent]) -> int:
        """Upsert events in one transaction (last write wins per key)."""
        if not events:
            return 0
        rows = [e.to_dict() for e in events]
        try:
            with self.engine.begin() as conn:
                conn.execute(text(self._upsert_sql()), rows)
        except SQLAlchemyError as e:
            self.logger.error(f"Upsert of {len(rows)} events failed: {e}")
            raise StoreError(f"Calendar store upsert failed: {e}") from e
        return len(rows)

    def delete_owner_events(self, owner_id: str) -> int:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    text("DELETE FROM user_calendar_events WHERE owner_id = :owner_id"),
                    {"owner_id": owner_id},
                )
                return result.rowcount
        except SQLAlchemyError as e:
            self.logger.error(f"Clearing events for {owner_id} failed: {e}")
            raise StoreError(f"Calendar store delete failed: {e}") from e

    def delete_title_events(self, owner_id: str, title_id: int, media_kind: MediaKind) -> int:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    text(
                        "DELETE FROM user_calendar_events "
                        "WHERE owner_id = :owner_id AND title_id = :title_id AND media_kind = :media_kind"
                    ),
                    {"owner_id": owner_id, "title_id": title_id, "media_kind": media_kind.value},
                )
                return result.rowcount
        except SQLAlchemyError as e:
            raise StoreError(f"Calendar store delete failed: {e}") from e

    def read_owner_events(self, owner_id: str) -> List[ReconciledEvent]:
        rows = self._execute(
            f"SELECT {', '.join(EVENT_COLUMNS)} FROM user_calendar_events "
            "WHERE owner_id = :owner_id "
            "ORDER BY air_date, title_id, season_number, episode_number",
            {"owner_id": owner_id},
        )
        return [ReconciledEvent.from_row(dict(row)) for row in rows]

    def count_owner_events(self, owner_id: str) -> int:
        rows = self._execute(
            "SELECT COUNT(*) AS cnt FROM user_calendar_events WHERE owner_id = :owner_id",
            {"owner_id": owner_id},
        )
        return rows[0]["cnt"]

    # ============ SYNC STATE ============

    def _ensure_state_row(self, conn, owner_id: str) -> None:
        exists = conn.execute(
            text("SELECT 1 FROM sync_state WHERE owner_id = :owner_id"),
            {"owner_id": owner_id},
        ).first()
        if exists is None:
            conn.execute(
                text("INSERT INTO sync_state (owner_id) VALUES (:owner_id)"),
                {"owner_id": owner_id},
            )

    def mark_full_sync(self, owner_id: str, when: Optional[datetime] = None) -> None:
        when = when or datetime.now(timezone.utc)
        try:
            with self.engine.begin() as conn:
                self._ensure_state_row(conn, owner_id)
                conn.execute(
                    text(
                        "UPDATE sync_state SET full_sync_completed = 1, last_full_sync = :when "
                        "WHERE owner_id = :owner_id"
                    ),
                    {"owner_id": owner_id, "when": when.isoformat()},
                )
        except SQLAlchemyError as e:
            raise StoreError(f"Writing full-sync marker failed: {e}") from e

    def is_full_sync_completed(self, owner_id: str) -> bool:
        rows = self._execute(
            "SELECT full_sync_completed FROM sync_state WHERE owner_id = :owner_id",
            {"owner_id": owner_id},
        )
        return bool(rows and rows[0]["full_sync_completed"])

    def get_last_full_sync(self, owner_id: str) -> Optional[str]:
        rows = self._execute(
            "SELECT last_full_sync FROM sync_state WHERE owner_id = :owner_id",
            {"owner_id": owner_id},
        )
        return rows[0]["last_full_sync"] if rows else None

    def get_cache_epoch(self, owner_id: str) -> int:
        rows = self._execute(
            "SELECT cache_epoch FROM sync_state WHERE owner_id = :owner_id",
            {"owner_id": owner_id},
        )
        return rows[0]["cache_epoch"] if rows else 0

    def bump_cache_epoch(self, owner_id: str) -> int:
        try:
            with self.engine.begin() as conn:
                self._ensure_state_row(conn, owner_id)
                conn.execute(
                    text("UPDATE sync_state SET cache_epoch = cache_epoch + 1 WHERE owner_id = :owner_id"),
                    {"owner_id": owner_id},
                )
                return conn.execute(
                    text("SELECT cache_epoch FROM sync_state WHERE owner_id = :owner_id"),
                    {"owner_id": owner_id},
                ).scalar_one()
        except SQLAlchemyError as e:
            raise StoreError(f"Bumping cache epoch failed: {e}") from e

    def get_status(self, owner_id: str) -> dict:
        """Get current store status for an owner."""
        return {
            "events": self.count_owner_events(owner_id),
            "full_sync_completed": self.is_full_sync_completed(owner_id),
            "last_full_sync": self.get_last_full_sync(owner_id),
            "cache_epoch": self.get_cache_epoch(owner_id),
        }
