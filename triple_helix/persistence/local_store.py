"""
SQLite local store for Triple-Helix.

Local-first persistence for:
- Primary scheduler state per user (key ``triple_helix_state_<userId>``)
- Backup record written when remote sync gives up (``triple_helix_backup_<userId>``)
- Anonymous -> authenticated identity migrations

Database location: ~/.triple_helix/state.db
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path

from loguru import logger

from triple_helix.errors import StorageUnavailable
from triple_helix.scheduling.models import SchedulerState, utc_now

from .schemas import decode_backup, decode_state, encode_backup, encode_state

STATE_KEY_PREFIX = "triple_helix_state_"
BACKUP_KEY_PREFIX = "triple_helix_backup_"
ACTIVE_IDENTITY_KEY = "triple_helix_active_user"


def state_key(user_id: str) -> str:
    return f"{STATE_KEY_PREFIX}{user_id}"


def backup_key(user_id: str) -> str:
    return f"{BACKUP_KEY_PREFIX}{user_id}"


class LocalStateStore:
    """
    SQLite-backed key/value persistence for scheduler state.

    Every write commits before returning; sqlite errors surface as
    StorageUnavailable.
    """

    DEFAULT_DB_PATH = Path.home() / ".triple_helix" / "state.db"

    def __init__(self, db_path: Path | None = None):
        """
        Initialize the local store.

        Args:
            db_path: Custom database path (defaults to ~/.triple_helix/state.db)
        """
        self.db_path = db_path or self.DEFAULT_DB_PATH
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailable(f"Cannot create {self.db_path.parent}: {e}") from e

        self._conn: sqlite3.Connection | None = None
        self._init_schema()

        logger.debug(f"LocalStateStore initialized at {self.db_path}")

    @property
    def conn(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            try:
                self._conn = sqlite3.connect(str(self.db_path))
            except sqlite3.Error as e:
                raise StorageUnavailable(f"Cannot open {self.db_path}: {e}") from e
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_schema(self) -> None:
        """Initialize database schema."""
        try:
            with self.conn:
                self.conn.execute("""
                    CREATE TABLE IF NOT EXISTS kv_state (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        written_at TEXT NOT NULL
                    )
                """)
                self.conn.execute("""
                    CREATE TABLE IF NOT EXISTS identity_migrations (
                        anonymous_id TEXT PRIMARY KEY,
                        user_id TEXT NOT NULL,
                        migrated_at TEXT NOT NULL
                    )
                """)
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Cannot initialize schema in {self.db_path}: {e}") from e

    # =========================================================================
    # Raw key/value
    # =========================================================================

    def _get(self, key: str) -> str | None:
        try:
            row = self.conn.execute("SELECT value FROM kv_state WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Read of {key} failed: {e}") from e
        return row["value"] if row else None

    def _put(self, key: str, value: str) -> None:
        try:
            with self.conn:
                self._put_in_tx(key, value)
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Write of {key} failed: {e}") from e

    def _put_in_tx(self, key: str, value: str) -> None:
        self.conn.execute(
            """
            INSERT INTO kv_state (key, value, written_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                written_at = excluded.written_at
        """,
            (key, value, utc_now().isoformat()),
        )

    def _delete(self, key: str) -> bool:
        try:
            with self.conn:
                cursor = self.conn.execute("DELETE FROM kv_state WHERE key = ?", (key,))
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Delete of {key} failed: {e}") from e
        return cursor.rowcount > 0

    def keys(self) -> list[str]:
        try:
            rows = self.conn.execute("SELECT key FROM kv_state ORDER BY key").fetchall()
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Listing keys failed: {e}") from e
        return [row["key"] for row in rows]

    # =========================================================================
    # Primary state
    # =========================================================================

    def load_state(self, user_id: str) -> SchedulerState | None:
        """
        Read the primary copy for a user.

        Returns:
            The stored state, or None if nothing was persisted yet

        Raises:
            InvalidPayload: If the stored document is corrupt
        """
        raw = self._get(state_key(user_id))
        if raw is None:
            return None
        return decode_state(raw)

    def save_state(self, state: SchedulerState) -> None:
        """Write the primary copy for ``state.user_id``."""
        self._put(state_key(state.user_id), encode_state(state))
        logger.debug(f"Persisted state for {state.user_id} at {state.last_updated.isoformat()}")

    # =========================================================================
    # Backup record
    # =========================================================================

    def load_backup(self, user_id: str) -> tuple[datetime, SchedulerState] | None:
        raw = self._get(backup_key(user_id))
        if raw is None:
            return None
        return decode_backup(raw)

    def save_backup(self, state: SchedulerState, backup_timestamp: datetime | None = None) -> datetime:
        """
        Write the fallback copy used after exhausted sync retries.

        Returns:
            The backup timestamp written
        """
        stamp = backup_timestamp or utc_now()
        self._put(backup_key(state.user_id), encode_backup(state, stamp))
        logger.warning(f"Wrote backup record for {state.user_id} at {stamp.isoformat()}")
        return stamp

    def clear_backup(self, user_id: str) -> bool:
        removed = self._delete(backup_key(user_id))
        if removed:
            logger.info(f"Cleared backup record for {user_id}")
        return removed

    # =========================================================================
    # Identity migration
    # =========================================================================

    def load_active_identity(self) -> str | None:
        """The user id the last session ran as on this device."""
        return self._get(ACTIVE_IDENTITY_KEY)

    def save_active_identity(self, user_id: str) -> None:
        self._put(ACTIVE_IDENTITY_KEY, user_id)

    def migrated_to(self, anonymous_id: str) -> str | None:
        """The user an anonymous id was already migrated to, if any."""
        try:
            row = self.conn.execute(
                "SELECT user_id FROM identity_migrations WHERE anonymous_id = ?",
                (anonymous_id,),
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Migration lookup for {anonymous_id} failed: {e}") from e
        return row["user_id"] if row else None

    def commit_identity_migration(
        self, anonymous_id: str, user_id: str, state: SchedulerState | None = None
    ) -> None:
        """
        Record an anonymous -> user migration and discard the anonymous keys.

        When ``state`` is given it is written under the user's key first. The
        write, the anonymous deletes and the migration record happen in one
        transaction.
        """
        try:
            with self.conn:
                if state is not None:
                    self._put_in_tx(state_key(user_id), encode_state(state))
                self.conn.execute(
                    "DELETE FROM kv_state WHERE key IN (?, ?)",
                    (state_key(anonymous_id), backup_key(anonymous_id)),
                )
                self.conn.execute(
                    """
                    INSERT INTO identity_migrations (anonymous_id, user_id, migrated_at)
                    VALUES (?, ?, ?)
                """,
                    (anonymous_id, user_id, utc_now().isoformat()),
                )
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Identity migration {anonymous_id} -> {user_id} failed: {e}") from e

        logger.info(f"Migrated anonymous state {anonymous_id} -> {user_id}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
