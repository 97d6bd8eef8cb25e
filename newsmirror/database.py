"""SQLite database for mirrored content and sync state."""
import functools
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

from newsmirror.models import Channel, LocalEntity, Term


def format_timestamp(utc_str: str, tz_name: str = 'Europe/Zurich') -> str:
    """Convert UTC timestamp string to local timezone for display.

    Args:
        utc_str: UTC timestamp as string from SQLite
        tz_name: Target timezone

    Returns:
        Formatted string in local time: 'YYYY-MM-DD HH:MM:SS'
    """
    if not utc_str:
        return 'N/A'

    # SQLite CURRENT_TIMESTAMP returns UTC string
    utc_dt = datetime.fromisoformat(utc_str.replace(' ', 'T'))
    local_dt = utc_dt.replace(tzinfo=ZoneInfo('UTC')).astimezone(ZoneInfo(tz_name))

    return local_dt.strftime('%Y-%m-%d %H:%M:%S')


def _locked(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)
    return wrapper


class Database:
    """SQLite database wrapper for mirrored entities and channels."""

    SCHEMA = """
    -- Remote feeds; each channel is also the grouping term of its entities
    CREATE TABLE IF NOT EXISTS channels (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        url TEXT UNIQUE NOT NULL,
        name TEXT,
        added_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        last_synced_at TIMESTAMP,
        is_active BOOLEAN DEFAULT 1
    );

    -- Mirrored content, one row per identity key
    CREATE TABLE IF NOT EXISTS entities (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        entity_type TEXT NOT NULL,
        api_id TEXT NOT NULL,
        translation_id TEXT NOT NULL DEFAULT '',
        title TEXT NOT NULL DEFAULT '',
        body TEXT NOT NULL DEFAULT '',
        excerpt TEXT NOT NULL DEFAULT '',
        image_url TEXT,
        meta TEXT NOT NULL DEFAULT '{}',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (entity_type, api_id, translation_id)
    );

    -- Local categories, optionally tagged with a remote category id
    CREATE TABLE IF NOT EXISTS categories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        remote_category_id TEXT
    );

    CREATE TABLE IF NOT EXISTS term_translations (
        term_id INTEGER NOT NULL,
        language TEXT NOT NULL,
        translated_term_id INTEGER NOT NULL,
        PRIMARY KEY (term_id, language),
        FOREIGN KEY (term_id) REFERENCES categories(id)
    );

    CREATE TABLE IF NOT EXISTS entity_categories (
        entity_id INTEGER NOT NULL,
        category_id INTEGER NOT NULL,
        PRIMARY KEY (entity_id, category_id),
        FOREIGN KEY (entity_id) REFERENCES entities(id),
        FOREIGN KEY (category_id) REFERENCES categories(id)
    );

    -- Which channels have delivered which entities
    CREATE TABLE IF NOT EXISTS entity_channels (
        entity_id INTEGER NOT NULL,
        channel_id INTEGER NOT NULL,
        PRIMARY KEY (entity_id, channel_id),
        FOREIGN KEY (entity_id) REFERENCES entities(id),
        FOREIGN KEY (channel_id) REFERENCES channels(id)
    );

    -- Sync pass history
    CREATE TABLE IF NOT EXISTS sync_runs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        channel_id INTEGER,
        started_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        completed_at TIMESTAMP,
        items_fetched INTEGER DEFAULT 0,
        items_created INTEGER DEFAULT 0,
        items_updated INTEGER DEFAULT 0,
        items_skipped INTEGER DEFAULT 0,
        status TEXT CHECK (status IN ('running', 'completed', 'failed')),
        error TEXT,
        FOREIGN KEY (channel_id) REFERENCES channels(id)
    );

    CREATE TABLE IF NOT EXISTS sync_skips (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        run_id INTEGER NOT NULL,
        position INTEGER NOT NULL,
        api_id TEXT,
        error TEXT,
        FOREIGN KEY (run_id) REFERENCES sync_runs(id)
    );

    CREATE INDEX IF NOT EXISTS idx_categories_remote ON categories(remote_category_id);
    CREATE INDEX IF NOT EXISTS idx_entity_channels_channel ON entity_channels(channel_id);
    CREATE INDEX IF NOT EXISTS idx_sync_skips_run ON sync_skips(run_id);
    """

    def __init__(self, db_path: Path):
        """Initialize database, creating tables if needed."""
        self.db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        # One connection shared by all threads; every access goes through _lock
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self._lock = threading.RLock()
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        """Create tables if they don't exist."""
        self.conn.executescript(self.SCHEMA)
        self.conn.commit()

    @_locked
    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Execute SQL and return cursor."""
        return self.conn.execute(sql, params)

    @_locked
    def commit(self) -> None:
        """Commit current transaction."""
        self.conn.commit()

    @_locked
    def close(self) -> None:
        """Close database connection."""
        self.conn.close()

    # === Channels ===

    @_locked
    def add_channel(self, url: str, name: str | None = None) -> Channel:
        """Subscribe to a remote feed."""
        cursor = self.execute(
            "INSERT INTO channels (url, name) VALUES (?, ?)",
            (url, name),
        )
        self.commit()
        return Channel(id=cursor.lastrowid, url=url, name=name)

    @_locked
    def get_channel(self, url: str) -> Channel | None:
        row = self.execute("SELECT * FROM channels WHERE url = ?", (url,)).fetchone()
        return self._row_to_channel(row) if row else None

    @_locked
    def list_channels(self, active_only: bool = False) -> list[Channel]:
        sql = "SELECT * FROM channels"
        if active_only:
            sql += " WHERE is_active = 1"
        rows = self.execute(sql + " ORDER BY id").fetchall()
        return [self._row_to_channel(row) for row in rows]

    @_locked
    def remove_channel(self, url: str) -> bool:
        """Drop a channel and its ownership links.

        Entities are kept; `orphaned_entity_ids` finds the ones no
        channel owns any more.
        """
        channel = self.get_channel(url)
        if channel is None:
            return False
        self.execute("DELETE FROM entity_channels WHERE channel_id = ?", (channel.id,))
        self.execute("UPDATE sync_runs SET channel_id = NULL WHERE channel_id = ?", (channel.id,))
        self.execute("DELETE FROM channels WHERE id = ?", (channel.id,))
        self.commit()
        return True

    @_locked
    def set_channel_active(self, url: str, active: bool) -> bool:
        """Enable or disable a channel; disabled channels are not synced."""
        cursor = self.execute(
            "UPDATE channels SET is_active = ? WHERE url = ?",
            (1 if active else 0, url),
        )
        self.commit()
        return cursor.rowcount > 0

    @_locked
    def mark_channel_synced(self, channel_id: int) -> None:
        self.execute(
            "UPDATE channels SET last_synced_at = CURRENT_TIMESTAMP WHERE id = ?",
            (channel_id,),
        )
        self.commit()

    @staticmethod
    def _row_to_channel(row: sqlite3.Row) -> Channel:
        return Channel(
            id=row["id"],
            url=row["url"],
            name=row["name"],
            is_active=bool(row["is_active"]),
        )

    # === Entities ===

    @_locked
    def load_by_identity(
        self, entity_type: str, api_id: str, translation_id: str
    ) -> LocalEntity | None:
        """Find the entity stored under an identity key."""
        row = self.execute(
            """SELECT * FROM entities
               WHERE entity_type = ? AND api_id = ? AND translation_id = ?""",
            (entity_type, api_id, translation_id),
        ).fetchone()
        return self._row_to_entity(row) if row else None

    @_locked
    def get_entity(self, entity_id: int) -> LocalEntity | None:
        row = self.execute("SELECT * FROM entities WHERE id = ?", (entity_id,)).fetchone()
        return self._row_to_entity(row) if row else None

    @_locked
    def identity_index(self, entity_type: str) -> dict[tuple[str, str], int]:
        """Map every (api_id, translation_id) of a type to its entity id."""
        rows = self.execute(
            "SELECT id, api_id, translation_id FROM entities WHERE entity_type = ?",
            (entity_type,),
        ).fetchall()
        return {(row["api_id"], row["translation_id"]): row["id"] for row in rows}

    @_locked
    def create_entity(self, entity: LocalEntity, channel_id: int | None = None) -> LocalEntity:
        """Insert a fully populated entity, returning it with its id set.

        The row, its categories and (if given) the owning channel are
        written in one transaction: on error nothing is stored.
        """
        with self.conn:
            cursor = self.conn.execute(
                """INSERT INTO entities
                   (entity_type, api_id, translation_id, title, body, excerpt, image_url, meta)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    entity.entity_type,
                    entity.api_id,
                    entity.translation_id,
                    entity.title,
                    entity.body,
                    entity.excerpt,
                    entity.image_url,
                    json.dumps(dict(entity.meta), sort_keys=True),
                ),
            )
            entity_id = cursor.lastrowid
            self._write_categories(entity_id, entity.categories)
            if channel_id is not None:
                self.conn.execute(
                    "INSERT OR IGNORE INTO entity_channels (entity_id, channel_id) VALUES (?, ?)",
                    (entity_id, channel_id),
                )
        entity.id = entity_id
        return entity

    @_locked
    def save_entity(self, entity: LocalEntity) -> None:
        """Persist the content fields and categories of an existing entity."""
        if entity.id is None:
            raise ValueError("Cannot save an entity that was never created")
        with self.conn:
            self.conn.execute(
                """UPDATE entities
                   SET title = ?, body = ?, excerpt = ?, image_url = ?, meta = ?,
                       updated_at = CURRENT_TIMESTAMP
                   WHERE id = ?""",
                (
                    entity.title,
                    entity.body,
                    entity.excerpt,
                    entity.image_url,
                    json.dumps(dict(entity.meta), sort_keys=True),
                    entity.id,
                ),
            )
            self._write_categories(entity.id, entity.categories)

    @_locked
    def set_entity_categories(self, entity_id: int, category_ids: list[int]) -> None:
        """Replace the categories of an entity (manual assignment)."""
        with self.conn:
            self._write_categories(entity_id, category_ids)

    def _write_categories(self, entity_id: int, category_ids: list[int]) -> None:
        self.conn.execute("DELETE FROM entity_categories WHERE entity_id = ?", (entity_id,))
        for category_id in category_ids:
            self.conn.execute(
                "INSERT OR IGNORE INTO entity_categories (entity_id, category_id) VALUES (?, ?)",
                (entity_id, category_id),
            )

    @_locked
    def count_entities(self, entity_type: str | None = None) -> int:
        if entity_type is None:
            row = self.execute("SELECT COUNT(*) AS n FROM entities").fetchone()
        else:
            row = self.execute(
                "SELECT COUNT(*) AS n FROM entities WHERE entity_type = ?",
                (entity_type,),
            ).fetchone()
        return row["n"]

    def _row_to_entity(self, row: sqlite3.Row) -> LocalEntity:
        categories = [
            r["category_id"]
            for r in self.execute(
                "SELECT category_id FROM entity_categories WHERE entity_id = ? ORDER BY category_id",
                (row["id"],),
            ).fetchall()
        ]
        return LocalEntity(
            id=row["id"],
            entity_type=row["entity_type"],
            api_id=row["api_id"],
            translation_id=row["translation_id"],
            title=row["title"],
            body=row["body"],
            excerpt=row["excerpt"],
            image_url=row["image_url"],
            meta=json.loads(row["meta"]),
            categories=categories,
        )

    # === Ownership ===

    @_locked
    def set_ownership(self, entity_id: int, channel_id: int) -> None:
        """Record that a channel delivered an entity."""
        self.execute(
            "INSERT OR IGNORE INTO entity_channels (entity_id, channel_id) VALUES (?, ?)",
            (entity_id, channel_id),
        )
        self.commit()

    @_locked
    def entity_ids_for_channel(self, channel_id: int) -> set[int]:
        rows = self.execute(
            "SELECT entity_id FROM entity_channels WHERE channel_id = ?",
            (channel_id,),
        ).fetchall()
        return {row["entity_id"] for row in rows}

    @_locked
    def orphaned_entity_ids(self) -> list[int]:
        """Entities that no channel owns any more."""
        rows = self.execute(
            """SELECT id FROM entities
               WHERE id NOT IN (SELECT entity_id FROM entity_channels)
               ORDER BY id"""
        ).fetchall()
        return [row["id"] for row in rows]

    @_locked
    def delete_entities(self, entity_ids: list[int]) -> int:
        for entity_id in entity_ids:
            self.execute("DELETE FROM entity_categories WHERE entity_id = ?", (entity_id,))
            self.execute("DELETE FROM entity_channels WHERE entity_id = ?", (entity_id,))
            self.execute("DELETE FROM entities WHERE id = ?", (entity_id,))
        self.commit()
        return len(entity_ids)

    # === Categories ===

    @_locked
    def add_category(self, name: str, remote_category_id: str | None = None) -> Term:
        cursor = self.execute(
            "INSERT INTO categories (name, remote_category_id) VALUES (?, ?)",
            (name, remote_category_id),
        )
        self.commit()
        return Term(id=cursor.lastrowid, name=name, remote_category_id=remote_category_id)

    @_locked
    def list_categories(self) -> list[Term]:
        rows = self.execute("SELECT * FROM categories ORDER BY id").fetchall()
        return [Term(row["id"], row["name"], row["remote_category_id"]) for row in rows]

    @_locked
    def terms_by_metadata(self, remote_category_id: str) -> list[Term]:
        """Categories tagged with a remote category id.

        Ordered by id (creation order). Category disambiguation falls
        back to the first of these, so the order must stay stable.
        """
        rows = self.execute(
            "SELECT * FROM categories WHERE remote_category_id = ? ORDER BY id",
            (str(remote_category_id),),
        ).fetchall()
        return [Term(row["id"], row["name"], row["remote_category_id"]) for row in rows]

    @_locked
    def add_translation(self, term_id: int, language: str, translated_term_id: int) -> None:
        self.execute(
            """INSERT OR REPLACE INTO term_translations (term_id, language, translated_term_id)
               VALUES (?, ?, ?)""",
            (term_id, language, translated_term_id),
        )
        self.commit()

    @_locked
    def get_translation(self, term_id: int, language: str) -> int | None:
        row = self.execute(
            "SELECT translated_term_id FROM term_translations WHERE term_id = ? AND language = ?",
            (term_id, language),
        ).fetchone()
        return row["translated_term_id"] if row else None

    # === Sync runs ===

    @_locked
    def record_run_start(self, channel_id: int | None) -> int:
        """Start a new sync run, return run_id.

        Also cleans up stale 'running' runs of the same channel left by
        interrupted executions.
        """
        self.execute(
            """UPDATE sync_runs
               SET status = 'failed',
                   completed_at = CURRENT_TIMESTAMP,
                   error = 'interrupted'
               WHERE status = 'running' AND channel_id IS ?""",
            (channel_id,),
        )
        cursor = self.execute(
            "INSERT INTO sync_runs (channel_id, status) VALUES (?, ?)",
            (channel_id, "running"),
        )
        self.commit()
        return cursor.lastrowid

    @_locked
    def record_run_complete(
        self, run_id: int, fetched: int, created: int, updated: int, skipped: int
    ) -> None:
        """Mark sync run as complete with stats."""
        self.execute(
            """UPDATE sync_runs
               SET completed_at = CURRENT_TIMESTAMP,
                   items_fetched = ?,
                   items_created = ?,
                   items_updated = ?,
                   items_skipped = ?,
                   status = ?
               WHERE id = ?""",
            (fetched, created, updated, skipped, "completed", run_id),
        )
        self.commit()

    @_locked
    def record_run_failed(self, run_id: int, error: str) -> None:
        self.execute(
            """UPDATE sync_runs
               SET completed_at = CURRENT_TIMESTAMP,
                   status = 'failed',
                   error = ?
               WHERE id = ?""",
            (error, run_id),
        )
        self.commit()

    @_locked
    def record_skip(self, run_id: int, position: int, api_id: str | None, error: str) -> None:
        self.execute(
            "INSERT INTO sync_skips (run_id, position, api_id, error) VALUES (?, ?, ?, ?)",
            (run_id, position, api_id, error),
        )
        self.commit()

    @_locked
    def get_last_run(self, channel_id: int | None = None) -> dict | None:
        """Get the most recent sync run with its skipped records.

        Args:
            channel_id: Restrict to one channel, or None for any channel

        Returns:
            Dict with run metadata and skips, or None if no runs found
        """
        if channel_id is None:
            run_row = self.execute(
                """SELECT sync_runs.*, channels.url AS channel_url
                   FROM sync_runs LEFT JOIN channels ON channels.id = sync_runs.channel_id
                   ORDER BY sync_runs.id DESC LIMIT 1"""
            ).fetchone()
        else:
            run_row = self.execute(
                """SELECT sync_runs.*, channels.url AS channel_url
                   FROM sync_runs LEFT JOIN channels ON channels.id = sync_runs.channel_id
                   WHERE sync_runs.channel_id = ?
                   ORDER BY sync_runs.id DESC LIMIT 1""",
                (channel_id,),
            ).fetchone()
        if not run_row:
            return None

        skips = [
            dict(row)
            for row in self.execute(
                "SELECT position, api_id, error FROM sync_skips WHERE run_id = ? ORDER BY position",
                (run_row["id"],),
            ).fetchall()
        ]
        run = dict(run_row)
        run["skips"] = skips
        return run
