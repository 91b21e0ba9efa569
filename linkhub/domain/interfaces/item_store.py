"""Interface for the catalog item store.

The store is the single source of truth for items and their processing
status. Implementations notify subscribers after every change.
"""

import abc
from typing import Callable, List, Optional

from ..models.catalog import CatalogItem
from ..models.common import ItemId

ChangeListener = Callable[[List[CatalogItem]], None]
Unsubscribe = Callable[[], None]


class ItemStore(abc.ABC):
    """Abstract Base Class for persisting catalog items."""

    @abc.abstractmethod
    async def list_items(self) -> List[CatalogItem]:
        """Returns a snapshot of all items in listing (insertion) order."""
        pass

    @abc.abstractmethod
    async def get_item(self, item_id: ItemId) -> Optional[CatalogItem]:
        pass

    @abc.abstractmethod
    async def add_item(self, item: CatalogItem) -> None:
        pass

    @abc.abstractmethod
    async def update_item(self, item: CatalogItem) -> None:
        """Replaces the stored item with the same id.

        Raises:
            ItemNotFoundError: If no item has that id.
        """
        pass

    @abc.abstractmethod
    async def delete_item(self, item_id: ItemId) -> None:
        pass

    @abc.abstractmethod
    def subscribe(self, listener: ChangeListener) -> Unsubscribe:
        """Registers a callback invoked with the full item list after each change."""
        pass
