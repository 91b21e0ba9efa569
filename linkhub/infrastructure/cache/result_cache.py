"""Result cache for enrichment and search calls.

Maps a stable key derived from the request input (URL or query text) to a
previously computed result with a fixed time-to-live. The cache is a pure
optimization: every failure is logged and swallowed.
"""

import hashlib
import logging
import math
from typing import Any, List, Optional, Tuple

from linkhub.domain.interfaces.cache import CacheStore
from linkhub.domain.models.catalog import normalize_url
from linkhub.domain.models.common import CacheKey, Clock, system_clock
from linkhub.domain.models.errors import CacheQuotaExceededError

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60 # 24 hours
PRUNE_FRACTION = 0.2
ENRICHMENT_PREFIX = "enrich_"
SEARCH_PREFIX = "search_"


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def make_enrichment_key(url: str) -> CacheKey:
    return CacheKey(ENRICHMENT_PREFIX + _digest(normalize_url(url)))


def make_search_key(query: str) -> CacheKey:
    return CacheKey(SEARCH_PREFIX + _digest(query.strip().lower()))


class ResultCache:
    """TTL cache on top of a CacheStore backend."""

    def __init__(self, store: CacheStore, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Clock = system_clock):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        logger.info(f"ResultCache initialized: backend={type(store).__name__}, ttl={ttl_seconds}s")

    def get(self, key: CacheKey) -> Optional[Any]:
        """Returns the cached value, or None if absent, expired or unreadable."""
        try:
            entry = self.store.get(key)
            if entry is None:
                return None
            timestamp = float(entry["timestamp"])
            if self.clock() - timestamp > self.ttl_seconds:
                logger.debug(f"Cache entry expired for key: {key[:16]}...")
                self.store.delete(key)
                return None
            logger.debug(f"Cache hit for key: {key[:16]}...")
            return entry["data"]
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Corrupt cache entry for key {key[:16]}...: {e}. Removing.")
            self._safe_delete(key)
        except Exception as e:
            logger.error(f"Cache get error for key {key[:16]}...: {e}")
        return None

    def set(self, key: CacheKey, value: Any) -> None:
        """Stores a value; on a storage quota error prunes the oldest entries and retries once."""
        entry = {"data": value, "timestamp": self.clock()}
        try:
            self.store.set(key, entry)
            return
        except CacheQuotaExceededError as e:
            logger.warning(f"Cache quota exceeded ({e}); pruning oldest entries.")
        except Exception as e:
            logger.error(f"Cache set error for key {key[:16]}...: {e}")
            return

        self.prune()
        try:
            self.store.set(key, entry)
        except Exception as retry_err:
            logger.error(f"Cache set error after prune: {retry_err}")

    def prune(self, fraction: float = PRUNE_FRACTION) -> int:
        """Removes the oldest ``fraction`` of entries by timestamp. Returns the number removed."""
        stamped: List[Tuple[float, CacheKey]] = []
        for key, entry in self.store.items():
            try:
                stamped.append((float(entry["timestamp"]), key))
            except (KeyError, TypeError, ValueError):
                # Corrupt entry
                self._safe_delete(key)
        stamped.sort(key=lambda pair: pair[0])
        to_remove = math.ceil(len(stamped) * fraction)
        for _, key in stamped[:to_remove]:
            self._safe_delete(key)
        logger.info(f"Pruned {to_remove} of {len(stamped)} cache entries.")
        return to_remove

    def clear(self) -> None:
        self.store.clear()
        logger.info("Cleared result cache.")

    def _safe_delete(self, key: CacheKey) -> None:
        try:
            self.store.delete(key)
        except Exception as e:
            logger.warning(f"Failed to delete cache entry {key[:16]}...: {e}")
