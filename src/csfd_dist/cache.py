"""
Rating Cache Module

This module provides a TTL-based cache of rating distributions with:
- Strict validation of stored entries
- Time-based expiration
- Cooperative background pruning of expired and corrupt entries
"""

import asyncio
import json
import logging
import math
import time
from dataclasses import dataclass

from .db import DB
from .histogram import Histogram, validate_counts
from .utils import CACHE_KEY_PREFIX

logger = logging.getLogger(__name__)

DEFAULT_TTL_SEC = 7 * 24 * 3600


class CacheEntryError(ValueError):
    """Raised when a stored entry does not match the cache schema."""


@dataclass
class CacheEntry:
    """
    Cached rating distribution.

    Attributes:
        histogram: Final distribution of a completed traversal
        created_at: Creation time in epoch milliseconds
    """
    histogram: Histogram
    created_at: int

    def to_json(self) -> str:
        return json.dumps({"rating": self.histogram.counts, "timestamp": self.created_at})

    @classmethod
    def from_json(cls, raw: str) -> "CacheEntry":
        """
        Decode and validate a stored entry.

        The whole entry is rejected on the first violation; values are
        never coerced.

        Raises:
            CacheEntryError: If the entry is not valid JSON or breaks the schema
        """
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise CacheEntryError(f"not JSON: {e}")
        if not isinstance(data, dict):
            raise CacheEntryError("entry is not an object")
        if "rating" not in data or "timestamp" not in data:
            raise CacheEntryError("missing rating or timestamp")

        ts = data["timestamp"]
        if isinstance(ts, bool) or not isinstance(ts, (int, float)) or not math.isfinite(ts):
            raise CacheEntryError(f"bad timestamp {ts!r}")
        try:
            counts = validate_counts(data["rating"])
        except ValueError as e:
            raise CacheEntryError(f"bad rating: {e}")
        return cls(Histogram(counts), int(ts))


class CacheStore:
    """
    TTL cache of rating distributions on top of the SQLite store.

    Expired and corrupt entries read as absent; `prune_all` removes them
    physically.
    """

    def __init__(self, db: DB, ttl_sec: float = DEFAULT_TTL_SEC, clock=time.time,
                 prefix: str = CACHE_KEY_PREFIX):
        """
        Initialize the cache.

        Args:
            db (DB): Physical key/value store
            ttl_sec (float): Entry lifetime in seconds (default: 7 days)
            clock (callable): Returns current time in seconds
            prefix (str): Key namespace handled by this cache
        """
        self.db = db
        self.ttl = float(ttl_sec)
        self.clock = clock
        self.prefix = prefix

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _load(self, key: str):
        raw = self.db.get(key)
        if raw is None:
            return None
        try:
            entry = CacheEntry.from_json(raw)
        except CacheEntryError as e:
            logger.warning(f"Corrupt cache entry {key}: {e}")
            return None
        age_ms = self._now_ms() - entry.created_at
        if age_ms > self.ttl * 1000:
            logger.debug(f"Expired cache entry {key} (age {age_ms / 1000:.0f}s)")
            return None
        return entry

    def read(self, key):
        """
        Read a valid cached distribution.

        Args:
            key (str or None): Cache key

        Returns:
            Histogram or None: Frozen histogram, or None if the key is
            missing, the entry is malformed or older than the TTL
        """
        if not key:
            return None
        entry = self._load(key)
        if entry is None:
            return None
        return entry.histogram.freeze()

    def write(self, key, histogram: Histogram):
        """
        Store a distribution, overwriting any previous entry.

        Does nothing when `key` is None.
        """
        if not key:
            return
        entry = CacheEntry(Histogram(list(histogram.counts)), self._now_ms())
        self.db.put(key, entry.to_json())
        logger.debug(f"Cached {key}: {entry.histogram.counts}")

    async def prune_all(self) -> int:
        """
        Delete every expired or corrupt entry in the namespace.

        Yields to the event loop between entries. Not transactional: an
        interrupted pass leaves the remaining entries for the next one.

        Returns:
            int: Number of entries removed
        """
        removed = 0
        keys = self.db.keys(self.prefix)
        for key in keys:
            if self._load(key) is None:
                if self.db.delete(key):
                    removed += 1
            await asyncio.sleep(0)
        if removed:
            logger.info(f"Pruned {removed} of {len(keys)} cache entries")
        return removed
