"""Catalog management use cases: adding, importing, re-queueing and removing links."""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from linkhub.core.services.batch_enrichment import BatchEnrichmentClient
from linkhub.domain.interfaces.item_store import ItemStore
from linkhub.domain.models.catalog import (
    GENERIC_CATEGORIES,
    CatalogItem,
    ProcessingStatus,
    normalize_url,
)
from linkhub.domain.models.common import Clock, ImportStats, ItemId, system_clock
from linkhub.domain.models.errors import DuplicateItemError, ItemNotFoundError

logger = logging.getLogger(__name__)

_MARKDOWN_LINK_RE = re.compile(r"\[.*?\]\((.*?)\)")


def clean_import_url(raw_url: str) -> str:
    """Extracts the target of a markdown link and strips stray brackets."""
    match = _MARKDOWN_LINK_RE.search(raw_url or "")
    if match and match.group(1).strip():
        return match.group(1).strip()
    return re.sub(r"[\[\]()]", "", raw_url or "").strip()


class CatalogService:
    """Application service for catalog maintenance."""

    def __init__(
        self,
        item_store: ItemStore,
        client: Optional[BatchEnrichmentClient] = None,
        clock: Clock = system_clock,
    ):
        self.item_store = item_store
        self.client = client
        self.clock = clock

    async def find_by_url(self, url: str) -> Optional[CatalogItem]:
        wanted = normalize_url(url)
        for item in await self.item_store.list_items():
            if normalize_url(item.url) == wanted:
                return item
        return None

    async def add_link(self, url: str, name: Optional[str] = None) -> CatalogItem:
        """Adds a new pending link.

        Raises:
            ValueError: The URL is empty.
            DuplicateItemError: A link with the same normalized URL exists.
        """
        if not url or not url.strip():
            raise ValueError("URL must not be empty.")
        existing = await self.find_by_url(url)
        if existing is not None:
            raise DuplicateItemError(existing.url, existing.name)
        item = CatalogItem.create(url, now=self.clock(), name=name)
        await self.item_store.add_item(item)
        logger.info(f"Added link '{item.name}' ({item.url}) as {item.id}")
        return item

    async def import_text(self, raw: str) -> ImportStats:
        """Imports links from a JSON list, or from messy text recovered by the provider.

        Entries that already carry a description and a specific category are
        stored as done; everything else is queued for enrichment.
        """
        entries = self._parse_json_entries(raw)
        if entries is None:
            if self.client is None:
                raise ValueError("Input is not a JSON list and no enrichment client is configured to repair it.")
            logger.info("Input is not a valid JSON list; asking the provider to repair it.")
            entries = await self.client.repair_malformed_input(raw)

        stats = ImportStats(total=len(entries), added=0, duplicates=0, errors=0)
        seen = {normalize_url(item.url) for item in await self.item_store.list_items()}
        for entry in entries:
            url = clean_import_url(str(entry.get("url") or ""))
            if not url:
                stats["errors"] += 1
                continue
            key = normalize_url(url)
            if key in seen:
                stats["duplicates"] += 1
                continue
            item = self._item_from_entry(entry, url)
            await self.item_store.add_item(item)
            seen.add(key)
            stats["added"] += 1
        logger.info(
            f"Import finished: {stats['added']} added, {stats['duplicates']} duplicates, "
            f"{stats['errors']} errors out of {stats['total']}"
        )
        return stats

    @staticmethod
    def _parse_json_entries(raw: str) -> Optional[List[Dict[str, Any]]]:
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return None
        if not isinstance(data, list):
            return None
        return [entry for entry in data if isinstance(entry, dict)]

    def _item_from_entry(self, entry: Dict[str, Any], url: str) -> CatalogItem:
        item = CatalogItem.create(url, now=self.clock(), name=str(entry.get("name") or "") or None)
        description = str(entry.get("description") or "").strip()
        category = str(entry.get("category") or "").strip()
        tags = entry.get("tags")
        changes: Dict[str, Any] = {}
        if description:
            changes["description"] = description
        if category:
            changes["category"] = category
        if isinstance(tags, list):
            changes["tags"] = [str(t) for t in tags]
        already_enriched = bool(description) and category.lower() not in GENERIC_CATEGORIES
        status = ProcessingStatus.DONE if already_enriched else ProcessingStatus.PENDING
        return item.with_status(status, **changes)

    async def requeue(self, item_id: ItemId) -> CatalogItem:
        """Puts an item back in the automatic queue."""
        item = await self.item_store.get_item(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        updated = item.with_status(ProcessingStatus.PENDING, last_error_at=None)
        await self.item_store.update_item(updated)
        return updated

    async def remove(self, item_id: ItemId) -> None:
        await self.item_store.delete_item(item_id)
        logger.info(f"Removed item {item_id}")

    async def list_items(self, category: Optional[str] = None) -> List[CatalogItem]:
        items = await self.item_store.list_items()
        if category:
            items = [i for i in items if i.category.lower() == category.lower()]
        return items
