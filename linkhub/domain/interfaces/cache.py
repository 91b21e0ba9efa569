"""Interface for cache storage backends.

The result cache keeps its TTL and pruning policy itself; a backend only
stores raw entries and reports when it runs out of room.
"""

import abc
from typing import Any, Iterator, Optional, Tuple

from ..models.common import CacheKey


class CacheStore(abc.ABC):
    """Abstract Base Class for key/value cache storage."""

    @abc.abstractmethod
    def get(self, key: CacheKey) -> Optional[Any]:
        """Returns the stored entry or None."""
        pass

    @abc.abstractmethod
    def set(self, key: CacheKey, entry: Any) -> None:
        """Stores an entry.

        Raises:
            CacheQuotaExceededError: If the backend has no room left.
        """
        pass

    @abc.abstractmethod
    def delete(self, key: CacheKey) -> None:
        pass

    @abc.abstractmethod
    def items(self) -> Iterator[Tuple[CacheKey, Any]]:
        """Iterates over all stored (key, entry) pairs."""
        pass

    @abc.abstractmethod
    def clear(self) -> None:
        pass
