"""Interface for small key/value state persistence (e.g. rate limit state)."""

import abc
from typing import Any, Dict, Optional


class StateStore(abc.ABC):
    """Abstract Base Class for persisting JSON-like state across restarts."""

    @abc.abstractmethod
    def load(self, key: str) -> Optional[Dict[str, Any]]:
        pass

    @abc.abstractmethod
    def save(self, key: str, value: Dict[str, Any]) -> None:
        pass
