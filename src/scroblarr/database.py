"""SQLite database operations for users, settings and sync history."""

import json
import logging
import uuid
from datetime import UTC, datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any

import aiosqlite

from .config import get_config
from .models import MediaIdentifiers, MediaType, SyncHistoryEntry, User

logger = logging.getLogger(__name__)

# Columns that may be changed through update_user()
USER_UPDATABLE_COLUMNS = frozenset(User.model_fields) - {"id", "created_at", "updated_at"}

# Cross-reference id columns usable for rewatch matching
IDENTIFIER_COLUMNS = frozenset(MediaIdentifiers.model_fields)

HISTORY_SORT_FIELDS = {"synced_at", "media_title", "media_type", "success"}


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _to_db(value: Any) -> Any:
    """Convert a model value to something sqlite3 stores natively."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC).isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    return value


class Database:
    """Async SQLite database for scroblarr state."""

    def __init__(self, db_path: str | Path | None = None, journal_mode: str | None = None):
        self._config_db_path = db_path
        self._config_journal_mode = journal_mode
        self._db: aiosqlite.Connection | None = None

    @property
    def db_path(self) -> str:
        """Get database path from config or override."""
        if self._config_db_path:
            return str(self._config_db_path)
        return get_config().database.path

    @property
    def journal_mode(self) -> str:
        """Get journal mode from config or override."""
        if self._config_journal_mode:
            return self._config_journal_mode.upper()
        try:
            return get_config().database.journal_mode.upper()
        except RuntimeError:
            return "WAL"  # Default if config not loaded (tests)

    @property
    def is_connected(self) -> bool:
        return self._db is not None

    async def connect(self) -> None:
        """Connect to the database and create tables."""
        db_path = Path(self.db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info("Connecting to database: %s (journal_mode=%s)", db_path, self.journal_mode)
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row

        # WAL is default, use DELETE for NFS compatibility
        if self.journal_mode in ("WAL", "DELETE", "TRUNCATE", "MEMORY", "OFF"):
            await self._db.execute(f"PRAGMA journal_mode={self.journal_mode}")

        await self._create_tables()
        logger.info("Database connected successfully")

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            logger.info("Closing database connection")
            await self._db.close()
            self._db = None

    async def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        assert self._db is not None

        await self._db.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                plex_username TEXT UNIQUE,
                jellyfin_username TEXT UNIQUE,
                jellyfin_user_id TEXT,
                display_name TEXT,
                email TEXT,
                is_admin INTEGER NOT NULL DEFAULT 0,
                enabled INTEGER NOT NULL DEFAULT 1,
                jellyfin_access_token TEXT,
                tvtime_access_token TEXT,
                tvtime_refresh_token TEXT,
                tvtime_email TEXT,
                tvtime_password TEXT,
                trakt_access_token TEXT,
                trakt_refresh_token TEXT,
                trakt_token_expires_at TEXT,
                trakt_client_id TEXT,
                trakt_client_secret TEXT,
                mark_movies_as_rewatched INTEGER NOT NULL DEFAULT 0,
                mark_episodes_as_rewatched INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """
        )

        await self._db.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_users_jellyfin_user_id
            ON users(jellyfin_user_id)
        """
        )

        await self._db.execute(
            """
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT NOT NULL
            )
        """
        )

        await self._db.execute(
            """
            CREATE TABLE IF NOT EXISTS sync_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                media_type TEXT NOT NULL,
                media_title TEXT NOT NULL,
                source TEXT,
                tvdb_episode_id TEXT,
                tvdb_movie_id TEXT,
                imdb_episode_id TEXT,
                imdb_movie_id TEXT,
                tmdb_movie_id TEXT,
                tmdb_series_id TEXT,
                poster_url TEXT,
                season_number INTEGER,
                episode_number INTEGER,
                year INTEGER,
                success INTEGER NOT NULL,
                error_message TEXT,
                was_rewatched INTEGER NOT NULL DEFAULT 0,
                destinations TEXT NOT NULL DEFAULT '[]',
                synced_at TEXT NOT NULL
            )
        """
        )

        await self._db.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_sync_history_user_synced
            ON sync_history(user_id, synced_at)
        """
        )

        await self._db.commit()

    # ========== Users ==========

    def _row_to_user(self, row: aiosqlite.Row) -> User:
        return User.model_validate(dict(row))

    async def create_user(self, **fields: Any) -> User:
        """Insert a new user. Unknown fields raise ValueError."""
        assert self._db is not None

        unknown = set(fields) - USER_UPDATABLE_COLUMNS - {"id"}
        if unknown:
            raise ValueError(f"Unknown user columns: {sorted(unknown)}")

        if fields.get("jellyfin_user_id"):
            fields["jellyfin_user_id"] = fields["jellyfin_user_id"].replace("-", "")
        user = User(id=fields.pop("id", None) or uuid.uuid4().hex, **fields)
        data = {key: _to_db(value) for key, value in user.model_dump().items()}

        columns = ", ".join(data)
        placeholders = ", ".join("?" for _ in data)
        await self._db.execute(
            f"INSERT INTO users ({columns}) VALUES ({placeholders})",
            tuple(data.values()),
        )
        await self._db.commit()
        logger.info("Created user %s (%s)", user.id, user.primary_username)
        return user

    async def get_user(self, user_id: str) -> User | None:
        """Get a user by id."""
        assert self._db is not None

        async with self._db.execute("SELECT * FROM users WHERE id = ?", (user_id,)) as cursor:
            row = await cursor.fetchone()
            return self._row_to_user(row) if row else None

    async def get_all_users(self) -> list[User]:
        """Get all users, oldest first."""
        assert self._db is not None

        users = []
        async with self._db.execute("SELECT * FROM users ORDER BY created_at") as cursor:
            async for row in cursor:
                users.append(self._row_to_user(row))
        return users

    async def _find_user(self, column: str, value: str, enabled_only: bool) -> User | None:
        assert self._db is not None

        query = f"SELECT * FROM users WHERE {column} = ?"
        if enabled_only:
            query += " AND enabled = 1"
        async with self._db.execute(query, (value,)) as cursor:
            row = await cursor.fetchone()
            if row:
                logger.debug("Found user by %s: %s -> %s", column, value, row["id"])
                return self._row_to_user(row)
            logger.debug("User not found by %s: %s", column, value)
            return None

    async def find_user_by_plex_username(self, plex_username: str, enabled_only: bool = True) -> User | None:
        return await self._find_user("plex_username", plex_username, enabled_only)

    async def find_user_by_jellyfin_username(self, jellyfin_username: str, enabled_only: bool = True) -> User | None:
        return await self._find_user("jellyfin_username", jellyfin_username, enabled_only)

    async def find_user_by_jellyfin_user_id(self, jellyfin_user_id: str, enabled_only: bool = True) -> User | None:
        """Find a user by Jellyfin user id (hyphenated or not)."""
        return await self._find_user("jellyfin_user_id", jellyfin_user_id.replace("-", ""), enabled_only)

    async def update_user(self, user_id: str, **fields: Any) -> User | None:
        """Update the given columns of a user in a single statement.

        Returns the updated user, or None if the user does not exist.
        """
        assert self._db is not None

        unknown = set(fields) - USER_UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update user columns: {sorted(unknown)}")
        if not fields:
            return await self.get_user(user_id)

        if fields.get("jellyfin_user_id"):
            fields["jellyfin_user_id"] = fields["jellyfin_user_id"].replace("-", "")

        assignments = ", ".join(f"{column} = ?" for column in fields)
        values = [_to_db(value) for value in fields.values()]
        cursor = await self._db.execute(
            f"UPDATE users SET {assignments}, updated_at = ? WHERE id = ?",
            (*values, _now(), user_id),
        )
        await self._db.commit()

        if cursor.rowcount == 0:
            logger.warning("Update for unknown user %s ignored", user_id)
            return None
        logger.debug("Updated user %s: %s", user_id, sorted(fields))
        return await self.get_user(user_id)

    async def delete_user(self, user_id: str) -> bool:
        """Delete a user and their sync history. Returns True if deleted."""
        assert self._db is not None

        await self._db.execute("DELETE FROM sync_history WHERE user_id = ?", (user_id,))
        cursor = await self._db.execute("DELETE FROM users WHERE id = ?", (user_id,))
        await self._db.commit()
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted user %s", user_id)
        return deleted

    # ========== Settings ==========

    async def get_setting(self, key: str) -> str | None:
        """Get a setting value. Empty values read as None."""
        assert self._db is not None

        async with self._db.execute("SELECT value FROM settings WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
            return (row["value"] or None) if row else None

    async def set_setting(self, key: str, value: str) -> None:
        """Insert or update a setting."""
        assert self._db is not None

        await self._db.execute(
            """
            INSERT INTO settings (key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key)
            DO UPDATE SET value = excluded.value,
                          updated_at = excluded.updated_at
            """,
            (key, value, _now()),
        )
        await self._db.commit()
        logger.debug("Setting saved: %s", key)

    async def get_all_settings(self) -> dict[str, str]:
        """Get all non-empty settings."""
        assert self._db is not None

        settings: dict[str, str] = {}
        async with self._db.execute("SELECT key, value FROM settings") as cursor:
            async for row in cursor:
                if row["value"]:
                    settings[row["key"]] = row["value"]
        return settings

    async def delete_setting(self, key: str) -> bool:
        assert self._db is not None

        cursor = await self._db.execute("DELETE FROM settings WHERE key = ?", (key,))
        await self._db.commit()
        return cursor.rowcount > 0

    # ========== Sync History ==========

    def _row_to_entry(self, row: aiosqlite.Row) -> SyncHistoryEntry:
        data = dict(row)
        data["destinations"] = json.loads(data["destinations"] or "[]")
        return SyncHistoryEntry.model_validate(data)

    async def add_sync_history(self, entry: SyncHistoryEntry) -> SyncHistoryEntry:
        """Insert a sync history entry and return it with its id."""
        assert self._db is not None

        data = entry.model_dump(exclude={"id"})
        data["destinations"] = json.dumps(data["destinations"])
        data = {key: _to_db(value) for key, value in data.items()}

        columns = ", ".join(data)
        placeholders = ", ".join("?" for _ in data)
        cursor = await self._db.execute(
            f"INSERT INTO sync_history ({columns}) VALUES ({placeholders})",
            tuple(data.values()),
        )
        await self._db.commit()
        entry_id = cursor.lastrowid or 0
        logger.debug("[%s] Sync history entry %d saved: %s", entry.user_id, entry_id, entry.media_title)
        return entry.model_copy(update={"id": entry_id})

    async def has_successful_sync(
        self,
        user_id: str,
        media_type: MediaType,
        identifiers: dict[str, str],
    ) -> bool:
        """Check whether a successful entry shares any of the given identifiers."""
        assert self._db is not None

        identifiers = {column: value for column, value in identifiers.items() if value}
        if not identifiers:
            return False
        unknown = set(identifiers) - IDENTIFIER_COLUMNS
        if unknown:
            raise ValueError(f"Unknown identifier columns: {sorted(unknown)}")

        matches = " OR ".join(f"{column} = ?" for column in identifiers)
        async with self._db.execute(
            f"""
            SELECT 1 FROM sync_history
            WHERE user_id = ?
              AND media_type = ?
              AND success = 1
              AND ({matches})
            LIMIT 1
            """,
            (user_id, _to_db(media_type), *identifiers.values()),
        ) as cursor:
            return await cursor.fetchone() is not None

    async def count_sync_history(self, user_id: str | None = None) -> int:
        assert self._db is not None

        if user_id is None:
            query, params = "SELECT COUNT(*) FROM sync_history", ()
        else:
            query, params = "SELECT COUNT(*) FROM sync_history WHERE user_id = ?", (user_id,)
        async with self._db.execute(query, params) as cursor:
            row = await cursor.fetchone()
            return row[0] if row else 0

    async def trim_sync_history(self, user_id: str, keep: int) -> int:
        """Delete a user's entries beyond the ``keep`` most recent ones.

        A single statement, so concurrent trims can only leave extra rows
        behind, never delete one of the newest ``keep``.
        """
        assert self._db is not None

        if keep < 0:
            raise ValueError("keep must be >= 0")

        cursor = await self._db.execute(
            """
            DELETE FROM sync_history
            WHERE user_id = ?
              AND id NOT IN (
                  SELECT id FROM sync_history
                  WHERE user_id = ?
                  ORDER BY synced_at DESC, id DESC
                  LIMIT ?
              )
            """,
            (user_id, user_id, keep),
        )
        await self._db.commit()
        deleted = cursor.rowcount
        if deleted > 0:
            logger.debug("[%s] Trimmed %d old sync history entries (keep=%d)", user_id, deleted, keep)
        return deleted

    async def get_sync_history_page(
        self,
        user_id: str,
        page: int = 1,
        page_size: int = 20,
        media_type: MediaType | None = None,
        success: bool | None = None,
        source: str | None = None,
        sort_by: str = "synced_at",
        sort_order: str = "DESC",
    ) -> tuple[list[SyncHistoryEntry], int]:
        """Get one page of a user's history and the total matching count."""
        assert self._db is not None

        conditions = ["user_id = ?"]
        params: list[Any] = [user_id]
        if media_type is not None:
            conditions.append("media_type = ?")
            params.append(_to_db(media_type))
        if success is not None:
            conditions.append("success = ?")
            params.append(int(success))
        if source:
            conditions.append("source = ?")
            params.append(source)
        where_clause = " AND ".join(conditions)

        sort_field = sort_by if sort_by in HISTORY_SORT_FIELDS else "synced_at"
        order = "ASC" if sort_order.upper() == "ASC" else "DESC"

        async with self._db.execute(f"SELECT COUNT(*) FROM sync_history WHERE {where_clause}", params) as cursor:
            row = await cursor.fetchone()
            total = row[0] if row else 0

        page = max(page, 1)
        entries = []
        async with self._db.execute(
            f"""
            SELECT * FROM sync_history
            WHERE {where_clause}
            ORDER BY {sort_field} {order}, id {order}
            LIMIT ? OFFSET ?
            """,
            (*params, page_size, (page - 1) * page_size),
        ) as cursor:
            async for row in cursor:
                entries.append(self._row_to_entry(row))
        return entries, total

    async def get_sync_history_entry(self, entry_id: int, user_id: str | None = None) -> SyncHistoryEntry | None:
        assert self._db is not None

        query = "SELECT * FROM sync_history WHERE id = ?"
        params: tuple[Any, ...] = (entry_id,)
        if user_id is not None:
            query += " AND user_id = ?"
            params = (entry_id, user_id)
        async with self._db.execute(query, params) as cursor:
            row = await cursor.fetchone()
            return self._row_to_entry(row) if row else None

    async def delete_sync_history_entries(self, entry_ids: list[int], user_id: str) -> int:
        """Delete specific entries owned by a user. Returns number deleted."""
        assert self._db is not None

        if not entry_ids:
            return 0
        placeholders = ", ".join("?" for _ in entry_ids)
        cursor = await self._db.execute(
            f"DELETE FROM sync_history WHERE user_id = ? AND id IN ({placeholders})",
            (user_id, *entry_ids),
        )
        await self._db.commit()
        return cursor.rowcount

    async def clear_sync_history(self, user_id: str | None = None) -> int:
        """Delete all history, or all history of one user."""
        assert self._db is not None

        if user_id is None:
            cursor = await self._db.execute("DELETE FROM sync_history")
        else:
            cursor = await self._db.execute("DELETE FROM sync_history WHERE user_id = ?", (user_id,))
        await self._db.commit()
        logger.info("Cleared %d sync history entries%s", cursor.rowcount, f" for {user_id}" if user_id else "")
        return cursor.rowcount

    async def get_sync_stats_by_user(
        self,
        user_id: str,
        destinations: tuple[str, ...] = ("TVTime", "Trakt"),
    ) -> dict[str, Any]:
        """Aggregate statistics over a user's retained history."""
        assert self._db is not None

        async def scalar(query: str, *params: Any) -> Any:
            assert self._db is not None
            async with self._db.execute(query, (user_id, *params)) as cursor:
                row = await cursor.fetchone()
                return row[0] if row else None

        now = datetime.now(UTC)
        start_of_today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        start_of_week = start_of_today - timedelta(days=start_of_today.weekday())
        start_of_month = start_of_today.replace(day=1)
        since = "SELECT COUNT(*) FROM sync_history WHERE user_id = ? AND synced_at >= ?"

        total = await scalar("SELECT COUNT(*) FROM sync_history WHERE user_id = ?")
        successful = await scalar("SELECT COUNT(*) FROM sync_history WHERE user_id = ? AND success = 1")
        failed = total - successful

        by_media_type = {
            "episode": await scalar(
                "SELECT COUNT(*) FROM sync_history WHERE user_id = ? AND media_type = ?", MediaType.EPISODE.value
            ),
            "movie": await scalar(
                "SELECT COUNT(*) FROM sync_history WHERE user_id = ? AND media_type = ?", MediaType.MOVIE.value
            ),
            "series": await scalar(
                """
                SELECT COUNT(DISTINCT COALESCE(tmdb_series_id, media_title))
                FROM sync_history WHERE user_id = ? AND media_type = ?
                """,
                MediaType.EPISODE.value,
            ),
        }

        by_source = {}
        for source in ("plex", "jellyfin"):
            by_source[source] = await scalar(
                "SELECT COUNT(*) FROM sync_history WHERE user_id = ? AND source = ?", source
            )

        # LIKE is case-insensitive for ASCII in SQLite
        by_destination = {}
        for name in destinations:
            by_destination[name.lower()] = await scalar(
                "SELECT COUNT(*) FROM sync_history WHERE user_id = ? AND destinations LIKE ?", f'%"{name}"%'
            )

        last_synced_at = await scalar("SELECT MAX(synced_at) FROM sync_history WHERE user_id = ?")

        last_failure = None
        async with self._db.execute(
            """
            SELECT media_title, synced_at FROM sync_history
            WHERE user_id = ? AND success = 0
            ORDER BY synced_at DESC, id DESC LIMIT 1
            """,
            (user_id,),
        ) as cursor:
            row = await cursor.fetchone()
            if row:
                last_failure = {"media_title": row["media_title"], "synced_at": row["synced_at"]}

        return {
            "total": total,
            "successful": successful,
            "failed": failed,
            "success_rate": round(successful / total * 100, 2) if total else 0.0,
            "by_media_type": by_media_type,
            "by_source": by_source,
            "by_destination": by_destination,
            "by_period": {
                "today": await scalar(since, start_of_today.isoformat()),
                "this_week": await scalar(since, start_of_week.isoformat()),
                "this_month": await scalar(since, start_of_month.isoformat()),
                "last_30_days": await scalar(since, (now - timedelta(days=30)).isoformat()),
            },
            "last_synced_at": last_synced_at,
            "last_failure": last_failure,
        }


# Global database instance
_db: Database | None = None


async def get_db() -> Database:
    """Get the global database instance."""
    global _db
    if _db is None:
        _db = Database()
        await _db.connect()
    return _db


async def close_db() -> None:
    """Close the global database connection."""
    global _db
    if _db:
        await _db.close()
        _db = None
