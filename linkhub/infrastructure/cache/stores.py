"""Cache storage backends.

MemoryCacheStore keeps entries in a dict bounded by entry count.
DiskCacheStore persists entries with `diskcache`, bounded by on-disk volume.
Both raise CacheQuotaExceededError instead of silently evicting, so the
result cache can apply its own pruning policy.
"""

import errno
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple

import diskcache as dc

from linkhub.domain.interfaces.cache import CacheStore
from linkhub.domain.models.common import CacheKey
from linkhub.domain.models.errors import CacheQuotaExceededError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 1000
DEFAULT_SIZE_LIMIT_BYTES = 5 * 1024 * 1024 # 5 MB
DEFAULT_CACHE_DIR = Path.home() / ".linkhub" / "cache"


class MemoryCacheStore(CacheStore):
    """In-memory backend with a maximum number of entries."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        self.max_entries = max_entries
        self._entries: Dict[CacheKey, Any] = {}

    def get(self, key: CacheKey) -> Optional[Any]:
        return self._entries.get(key)

    def set(self, key: CacheKey, entry: Any) -> None:
        if key not in self._entries and len(self._entries) >= self.max_entries:
            raise CacheQuotaExceededError(f"Memory cache full ({self.max_entries} entries)")
        self._entries[key] = entry

    def delete(self, key: CacheKey) -> None:
        self._entries.pop(key, None)

    def items(self) -> Iterator[Tuple[CacheKey, Any]]:
        return iter(list(self._entries.items()))

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class DiskCacheStore(CacheStore):
    """Disk backend built on diskcache with eviction disabled."""

    def __init__(self, directory: Path = DEFAULT_CACHE_DIR, size_limit: int = DEFAULT_SIZE_LIMIT_BYTES):
        self.directory = Path(directory)
        self.size_limit = size_limit
        # eviction_policy='none': quota is enforced here, pruning by the result cache
        self._cache = dc.Cache(str(self.directory), timeout=1, eviction_policy="none")
        logger.info(f"Initialized disk cache at: {self._cache.directory} (limit {size_limit} bytes)")

    def get(self, key: CacheKey) -> Optional[Any]:
        return self._cache.get(key)

    def set(self, key: CacheKey, entry: Any) -> None:
        if key not in self._cache and self._cache.volume() >= self.size_limit:
            raise CacheQuotaExceededError(f"Disk cache full ({self._cache.volume()} >= {self.size_limit} bytes)")
        try:
            self._cache.set(key, entry)
        except sqlite3.OperationalError as e:
            if "full" in str(e).lower():
                raise CacheQuotaExceededError(str(e)) from e
            raise
        except OSError as e:
            if e.errno == errno.ENOSPC:
                raise CacheQuotaExceededError(str(e)) from e
            raise

    def delete(self, key: CacheKey) -> None:
        self._cache.delete(key)

    def items(self) -> Iterator[Tuple[CacheKey, Any]]:
        for key in list(self._cache.iterkeys()):
            entry = self._cache.get(key)
            if entry is not None:
                yield CacheKey(key), entry

    def clear(self) -> None:
        self._cache.clear()

    def close(self) -> None:
        self._cache.close()
