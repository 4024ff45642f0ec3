"""
Database Module for the Rating Cache

This module provides a SQLite-based key/value store backing the rating
cache. It handles:
- Raw entry reads and writes
- Key enumeration by namespace prefix
- Entry deletion
- Automatic schema creation
"""

import sqlite3, os, threading, logging
from contextlib import contextmanager
from typing import Optional

logger = logging.getLogger(__name__)

SCHEMA = (
    'CREATE TABLE IF NOT EXISTS cache('
    ' key TEXT PRIMARY KEY,'
    ' value TEXT NOT NULL'
    ');'
)


class DB:
    """
    Thread-safe SQLite key/value store.

    Values are opaque strings; validation is the cache policy's job.
    """

    def __init__(self, path: str):
        """
        Initialize the database connection.

        Args:
            path (str): Path to the SQLite database file.
                       Directory will be created if it doesn't exist.
        """
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        self.path = path
        self._lock = threading.Lock()
        with self._conn() as c:
            c.executescript(SCHEMA)

    @contextmanager
    def _conn(self):
        """
        Context manager for database connections.

        Autocommit mode (isolation_level=None), 30 second busy timeout,
        connection closed on exit.
        """
        conn = sqlite3.connect(self.path, timeout=30, isolation_level=None)
        try:
            yield conn
        finally:
            conn.close()

    def get(self, key: str) -> Optional[str]:
        with self._lock, self._conn() as c:
            row = c.execute('SELECT value FROM cache WHERE key=?', (key,)).fetchone()
            return row[0] if row else None

    def put(self, key: str, value: str):
        """
        Insert or overwrite an entry.

        Raises:
            sqlite3.Error: If database operation fails
        """
        try:
            with self._lock, self._conn() as c:
                c.execute(
                    'INSERT INTO cache(key,value) VALUES (?,?) '
                    'ON CONFLICT(key) DO UPDATE SET value=excluded.value',
                    (key, value)
                )
        except sqlite3.Error as e:
            logger.error(f"Database error in put: {e}")
            raise

    def delete(self, key: str) -> bool:
        with self._lock, self._conn() as c:
            cur = c.execute('DELETE FROM cache WHERE key=?', (key,))
            return cur.rowcount == 1

    def keys(self, prefix: str = "") -> list:
        """
        List stored keys starting with `prefix`.

        Args:
            prefix (str): Namespace prefix, matched literally

        Returns:
            list: Matching keys in key order
        """
        with self._lock, self._conn() as c:
            rows = c.execute(
                'SELECT key FROM cache WHERE substr(key, 1, ?) = ? ORDER BY key',
                (len(prefix), prefix)
            ).fetchall()
            return [r[0] for r in rows]

    def size(self) -> int:
        with self._conn() as c:
            res = c.execute("SELECT COUNT(*) FROM cache").fetchone()
            return res[0] if res else 0
