"""Concrete implementations of the StateStore interface."""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import diskcache as dc

from linkhub.domain.interfaces.state_store import StateStore

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = Path.home() / ".linkhub" / "state"


class MemoryStateStore(StateStore):
    def __init__(self):
        self._data: Dict[str, Dict[str, Any]] = {}

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        value = self._data.get(key)
        return dict(value) if value is not None else None

    def save(self, key: str, value: Dict[str, Any]) -> None:
        self._data[key] = dict(value)


class DiskStateStore(StateStore):
    """Persists state dicts with diskcache so they survive restarts."""

    def __init__(self, directory: Path = DEFAULT_STATE_DIR):
        self._cache = dc.Cache(str(directory), timeout=1)
        logger.debug(f"DiskStateStore at: {self._cache.directory}")

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        value = self._cache.get(key)
        return dict(value) if isinstance(value, dict) else None

    def save(self, key: str, value: Dict[str, Any]) -> None:
        self._cache.set(key, dict(value))

    def close(self) -> None:
        self._cache.close()
