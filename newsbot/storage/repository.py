"""Bounded news feed: SQLite table plus an in-memory mirror for reads.

The mirror is ordered newest-first by insertion. Every write goes to the
table first and then to the mirror, both trimmed to the same capacity.
"""

import json
import logging
import sqlite3
from pathlib import Path
from threading import Lock
from typing import List, Optional, Union

from newsbot.errors import NotFound
from newsbot.storage.models import NewsItem, NewsUpdate

logger = logging.getLogger(__name__)

FEED_CAPACITY = 50

_COLUMNS = "id, seq, title, body, timestamp, source, emoji, raw_message"


class FeedStore:
    """Single writer for the feed; all mutations go through ``self._lock``."""

    def __init__(self, db_path: Union[str, Path], capacity: int = FEED_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._lock = Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._create_tables()

        self._mirror: List[NewsItem] = []
        self._next_seq = 1
        self._hydrate()

    def _create_tables(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS news (
                id TEXT PRIMARY KEY,
                seq INTEGER NOT NULL,
                title TEXT NOT NULL,
                body TEXT NOT NULL,
                timestamp TEXT,
                source TEXT NOT NULL,
                emoji TEXT NOT NULL,
                raw_message TEXT
            )
        """)
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_news_seq ON news (seq)")
        self._conn.commit()

    def _hydrate(self) -> None:
        with self._lock:
            # trims rows left over from a run with a larger capacity
            self._evict_overflow()
            self._conn.commit()
            rows = self._conn.execute(
                f"SELECT {_COLUMNS} FROM news ORDER BY seq DESC LIMIT ?",
                (self.capacity,),
            ).fetchall()
            self._mirror = [_row_to_item(r) for r in rows]
            top = self._conn.execute("SELECT MAX(seq) FROM news").fetchone()[0]
            self._next_seq = (top or 0) + 1
        logger.info("Feed store loaded %d item(s) from %s", len(self._mirror), self.db_path)

    def _evict_overflow(self) -> int:
        cur = self._conn.execute(
            "DELETE FROM news WHERE id NOT IN (SELECT id FROM news ORDER BY seq DESC LIMIT ?)",
            (self.capacity,),
        )
        return cur.rowcount

    def _index_of(self, item_id: str) -> int:
        for i, item in enumerate(self._mirror):
            if item.id == item_id:
                return i
        return -1

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, item: NewsItem) -> bool:
        """Insert ``item`` or replace the stored one with the same id.

        Returns ``True`` when the item is new to the feed. A replaced item
        keeps its position; a new one goes to the front and may evict the
        oldest entry.
        """
        with self._lock:
            raw = json.dumps(item.raw_message, ensure_ascii=False) if item.raw_message is not None else None
            self._conn.execute(
                """
                INSERT INTO news (id, seq, title, body, timestamp, source, emoji, raw_message)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title,
                    body = excluded.body,
                    timestamp = excluded.timestamp,
                    source = excluded.source,
                    emoji = excluded.emoji,
                    raw_message = excluded.raw_message
                """,
                (item.id, self._next_seq, item.title, item.body, item.timestamp,
                 item.source, item.emoji, raw),
            )
            evicted = self._evict_overflow()
            self._conn.commit()

            idx = self._index_of(item.id)
            is_new = idx == -1
            stored = item.model_copy(deep=True)
            if is_new:
                self._next_seq += 1
                self._mirror.insert(0, stored)
                del self._mirror[self.capacity:]
            else:
                self._mirror[idx] = stored

        if evicted:
            logger.info("Evicted %d old item(s), feed capped at %d", evicted, self.capacity)
        return is_new

    def update(self, item_id: str, changes: NewsUpdate) -> NewsItem:
        """Overwrite the supplied fields of an existing item."""
        fields = changes.changes()
        with self._lock:
            idx = self._index_of(item_id)
            if idx == -1:
                raise NotFound(f"News not found: {item_id}")
            updated = self._mirror[idx].model_copy(update=fields)
            if fields:
                assignments = ", ".join(f"{name} = ?" for name in fields)
                self._conn.execute(
                    f"UPDATE news SET {assignments} WHERE id = ?",
                    (*fields.values(), item_id),
                )
                self._conn.commit()
                self._mirror[idx] = updated
        return updated.model_copy(deep=True)

    def delete(self, item_id: str) -> None:
        with self._lock:
            idx = self._index_of(item_id)
            if idx == -1:
                raise NotFound(f"News not found: {item_id}")
            self._conn.execute("DELETE FROM news WHERE id = ?", (item_id,))
            self._conn.commit()
            del self._mirror[idx]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list(self) -> List[NewsItem]:
        """Current feed, newest first."""
        with self._lock:
            return [item.model_copy(deep=True) for item in self._mirror]

    def get(self, item_id: str) -> Optional[NewsItem]:
        with self._lock:
            idx = self._index_of(item_id)
            return self._mirror[idx].model_copy(deep=True) if idx != -1 else None

    def count(self) -> int:
        with self._lock:
            return len(self._mirror)

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def _row_to_item(row: sqlite3.Row) -> NewsItem:
    raw = row["raw_message"]
    try:
        raw_message = json.loads(raw) if raw else None
    except (json.JSONDecodeError, TypeError):
        logger.warning("Unreadable raw_message for %s, dropping it", row["id"])
        raw_message = None
    return NewsItem(
        id=row["id"],
        title=row["title"],
        body=row["body"],
        timestamp=row["timestamp"],
        source=row["source"],
        emoji=row["emoji"],
        raw_message=raw_message,
    )
