"""Concrete implementations of the ItemStore interface.

InMemoryItemStore keeps items in insertion order and notifies subscribers
after each change. JsonFileItemStore adds persistence to a JSON file,
written with `aiofiles` through a temp file and an atomic replace.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

import aiofiles

from linkhub.domain.interfaces.item_store import ChangeListener, ItemStore, Unsubscribe
from linkhub.domain.models.catalog import CatalogItem
from linkhub.domain.models.common import ItemId
from linkhub.domain.models.errors import ItemNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_FILE = Path.home() / ".linkhub" / "catalog.json"


class InMemoryItemStore(ItemStore):
    """Item store backed by an insertion-ordered dict."""

    def __init__(self, items: Optional[List[CatalogItem]] = None):
        self._items: Dict[ItemId, CatalogItem] = {}
        self._listeners: List[ChangeListener] = []
        for item in items or []:
            self._items[item.id] = item

    async def list_items(self) -> List[CatalogItem]:
        return list(self._items.values())

    async def get_item(self, item_id: ItemId) -> Optional[CatalogItem]:
        return self._items.get(item_id)

    async def add_item(self, item: CatalogItem) -> None:
        self._items[item.id] = item
        await self._changed()

    async def update_item(self, item: CatalogItem) -> None:
        if item.id not in self._items:
            raise ItemNotFoundError(item.id)
        self._items[item.id] = item
        await self._changed()

    async def delete_item(self, item_id: ItemId) -> None:
        if self._items.pop(item_id, None) is None:
            raise ItemNotFoundError(item_id)
        await self._changed()

    def subscribe(self, listener: ChangeListener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _changed(self) -> None:
        await self._persist()
        snapshot = list(self._items.values())
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Item store listener failed: {e}", exc_info=True)

    async def _persist(self) -> None:
        """Hook for persistent subclasses."""
        pass


class JsonFileItemStore(InMemoryItemStore):
    """Item store persisted as a JSON array in a single file."""

    def __init__(self, path: Path = DEFAULT_CATALOG_FILE):
        super().__init__()
        self.path = Path(path)
        self._write_lock = asyncio.Lock()
        self._loaded = False

    async def load(self) -> None:
        """Reads the catalog file; a missing file means an empty catalog."""
        self._items.clear()
        if self.path.exists():
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                raw = await f.read()
            try:
                data = json.loads(raw) if raw.strip() else []
            except json.JSONDecodeError as e:
                logger.error(f"Catalog file {self.path} is not valid JSON: {e}")
                raise
            for entry in data:
                item = CatalogItem.from_dict(entry)
                self._items[item.id] = item
            logger.info(f"Loaded {len(self._items)} catalog items from {self.path}")
        else:
            logger.debug(f"Catalog file not found, starting empty: {self.path}")
        self._loaded = True

    async def list_items(self) -> List[CatalogItem]:
        if not self._loaded:
            await self.load()
        return await super().list_items()

    async def get_item(self, item_id: ItemId) -> Optional[CatalogItem]:
        if not self._loaded:
            await self.load()
        return await super().get_item(item_id)

    async def add_item(self, item: CatalogItem) -> None:
        if not self._loaded:
            await self.load()
        await super().add_item(item)

    async def update_item(self, item: CatalogItem) -> None:
        if not self._loaded:
            await self.load()
        await super().update_item(item)

    async def delete_item(self, item_id: ItemId) -> None:
        if not self._loaded:
            await self.load()
        await super().delete_item(item_id)

    async def _persist(self) -> None:
        payload = json.dumps([item.to_dict() for item in self._items.values()], indent=2, ensure_ascii=False)
        async with self._write_lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self.path.with_suffix(".tmp")
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(payload)
            os.replace(str(temp_path), str(self.path))
        logger.debug(f"Persisted {len(self._items)} catalog items to {self.path}")
