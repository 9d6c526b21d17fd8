"""SQLite citation cache: selected citations per search key, with expiry."""

import json
import logging
import re
import sqlite3
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path

from nutrimatch.search.models import SelectedCitation

logger = logging.getLogger(__name__)

# ── Schema DDL ───────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS citation_cache (
    key             TEXT PRIMARY KEY,   -- normalized ingredient / search term
    payload         TEXT NOT NULL,      -- JSON array of selected citations
    fetched_at      TEXT NOT NULL
);
"""


# ── CitationCache ────────────────────────────────────────────────────


class CitationCache:
    """Shared across requests. Reads and writes for one key are serialized."""

    def __init__(self, db_path: str | Path, ttl_days: int = 30):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.ttl = timedelta(days=ttl_days)

        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

        self._db_lock = threading.Lock()
        self._key_locks: dict[str, threading.Lock] = {}
        self._key_locks_guard = threading.Lock()

    # ── Lookups ──────────────────────────────────────────────

    def get(self, key: str) -> list[SelectedCitation] | None:
        """Cached citations for ``key`` if fetched within the expiry window."""
        norm = normalize_key(key)
        with self._db_lock:
            row = self._conn.execute(
                "SELECT payload, fetched_at FROM citation_cache WHERE key = ?",
                (norm,),
            ).fetchone()
        if row is None:
            return None

        fetched_at = datetime.fromisoformat(row["fetched_at"])
        if _now() - fetched_at > self.ttl:
            logger.debug("Cache entry for '%s' expired (%s)", norm, row["fetched_at"])
            return None

        return [SelectedCitation.model_validate(c) for c in json.loads(row["payload"])]

    def put(self, key: str, citations: list[SelectedCitation]) -> None:
        """Insert or replace the entry for ``key``. Empty lists are not stored."""
        if not citations:
            return
        norm = normalize_key(key)
        payload = json.dumps([c.model_dump(mode="json") for c in citations])
        with self._db_lock:
            self._conn.execute(
                """INSERT INTO citation_cache (key, payload, fetched_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET
                       payload = excluded.payload,
                       fetched_at = excluded.fetched_at""",
                (norm, payload, _now().isoformat()),
            )
            self._conn.commit()
        logger.info("Cached %d citations for '%s'", len(citations), norm)

    def get_or_fetch(
        self,
        key: str,
        fetch: Callable[[], list[SelectedCitation]],
    ) -> tuple[list[SelectedCitation], bool]:
        """Return ``(citations, from_cache)``, calling ``fetch`` only on a miss.

        The per-key lock is held across the read, the fetch and the insert, so
        concurrent misses on one key trigger a single external lookup.
        """
        with self.lock_for(key):
            cached = self.get(key)
            if cached is not None:
                logger.info("Cache hit for '%s'", key)
                return cached, True
            citations = fetch()
            self.put(key, citations)
            return citations, False

    def purge_expired(self) -> int:
        """Delete stale rows. Returns the number removed."""
        cutoff = (_now() - self.ttl).isoformat()
        with self._db_lock:
            cur = self._conn.execute(
                "DELETE FROM citation_cache WHERE fetched_at < ?", (cutoff,)
            )
            self._conn.commit()
        return cur.rowcount

    def lock_for(self, key: str) -> threading.Lock:
        """The lock serializing lookups for one normalized key."""
        norm = normalize_key(key)
        with self._key_locks_guard:
            return self._key_locks.setdefault(norm, threading.Lock())

    # ── Cleanup ──────────────────────────────────────────────

    def close(self) -> None:
        self._conn.close()


# ── Helpers ──────────────────────────────────────────────────────────

_SPACE_RE = re.compile(r"\s+")


def normalize_key(key: str) -> str:
    """Lowercase and collapse whitespace."""
    return _SPACE_RE.sub(" ", key.lower()).strip()


def _now() -> datetime:
    return datetime.now(timezone.utc)
