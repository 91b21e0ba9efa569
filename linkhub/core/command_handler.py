"""Command Handler: Orchestrates CLI command execution.

Receives commands from the main entry point (main.py) and delegates the work
to the catalog, search and queue services, reporting results through the
UserInterface.
"""

import asyncio
import logging
from collections import Counter
from typing import List, Optional

from linkhub.core.services.catalog_service import CatalogService
from linkhub.core.services.queue_scheduler import QueueScheduler, TickOutcome
from linkhub.core.services.search_service import SearchService
from linkhub.domain.interfaces.user_interface import UserInterface
from linkhub.domain.models.catalog import CatalogItem, ProcessingStatus
from linkhub.domain.models.common import ItemId
from linkhub.domain.models.errors import CatalogError, DispatchRefusedError, EnrichmentError, ItemNotFoundError
from linkhub.infrastructure.cache.result_cache import ResultCache
from linkhub.infrastructure.resilience.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class CommandHandler:
    """Handles incoming commands and delegates to appropriate services."""

    def __init__(
        self,
        catalog_service: CatalogService,
        scheduler: QueueScheduler,
        rate_limiter: RateLimiter,
        ui: UserInterface,
        search_service: Optional[SearchService] = None,
        cache: Optional[ResultCache] = None,
    ):
        self.catalog_service = catalog_service
        self.scheduler = scheduler
        self.rate_limiter = rate_limiter
        self.ui = ui
        self.search_service = search_service
        self.cache = cache

    async def resolve_id(self, prefix: str) -> ItemId:
        """Resolves a full id or a unique id prefix (as shown by `list`)."""
        items = await self.catalog_service.list_items()
        matches = [item.id for item in items if item.id == prefix]
        if not matches:
            matches = [item.id for item in items if item.id.startswith(prefix)]
        if len(matches) > 1:
            raise CatalogError(f"Id prefix '{prefix}' is ambiguous ({len(matches)} items match).")
        if not matches:
            raise ItemNotFoundError(prefix)
        return matches[0]

    async def handle_add(self, url: str, name: Optional[str] = None) -> None:
        logger.info(f"Handling 'add' command for url: {url}")
        try:
            item = await self.catalog_service.add_link(url, name=name)
            self.ui.display_success(f"Added '{item.name}' ({item.url}); queued for enrichment as {item.id[:8]}.")
        except (CatalogError, ValueError) as e:
            self.ui.display_error(str(e))

    async def handle_remove(self, id_prefix: str) -> None:
        try:
            item_id = await self.resolve_id(id_prefix)
            await self.catalog_service.remove(item_id)
            self.ui.display_success(f"Removed {item_id[:8]}.")
        except CatalogError as e:
            self.ui.display_error(str(e))

    async def handle_list(self, category: Optional[str] = None, status: Optional[str] = None) -> None:
        items = await self.catalog_service.list_items(category=category)
        if status:
            try:
                wanted = ProcessingStatus(status.lower())
            except ValueError:
                self.ui.display_error(f"Unknown status '{status}'. Use one of: {', '.join(s.value for s in ProcessingStatus)}.")
                return
            items = [i for i in items if i.processing_status is wanted]
        self.ui.display_items(items)

    async def handle_enrich(self, id_prefix: str) -> None:
        """Manually enriches one item, outside the automatic batch selection."""
        try:
            item_id = await self.resolve_id(id_prefix)
            item = await self.scheduler.enrich_item(item_id)
        except DispatchRefusedError as e:
            self.ui.display_warning(f"Enrichment refused: {e}")
            return
        except CatalogError as e:
            self.ui.display_error(str(e))
            return
        if item.processing_status is ProcessingStatus.ERROR:
            self.ui.display_error(f"Enrichment of '{item.name}' failed; it will be retried automatically.")
        elif item.processing_status is ProcessingStatus.QUEUED:
            self.ui.display_warning(f"Provider quota reached; '{item.name}' was put back in the queue.")
        else:
            self.ui.display_items([item], title="Enriched")

    async def handle_requeue(self, id_prefix: str) -> None:
        try:
            item = await self.catalog_service.requeue(await self.resolve_id(id_prefix))
            self.ui.display_success(f"'{item.name}' is pending enrichment again.")
        except CatalogError as e:
            self.ui.display_error(str(e))

    async def handle_process(self, watch: bool = False, max_cycles: int = 100) -> None:
        """Runs the enrichment queue in the foreground."""
        self.scheduler.add_listener(self.ui.display_event)
        if not watch:
            # Explicit request: run even when automatic processing is switched off
            self.scheduler.auto_processing = True
            outcome = await self.scheduler.run_until_idle(max_cycles=max_cycles)
            if outcome is TickOutcome.IDLE:
                self.ui.display_success("Queue drained: no items left to enrich.")
            else:
                self.ui.display_info(f"Stopped with queue state '{outcome.value}'.")
            return

        if not self.scheduler.auto_processing:
            self.ui.display_warning("Automatic processing is disabled (queue.auto_processing).")
            return
        self.ui.display_info("Watching the catalog; press Ctrl+C to stop.")
        self.scheduler.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.scheduler.stop()

    async def handle_status(self) -> None:
        items = await self.catalog_service.list_items()
        counts = Counter(item.processing_status for item in items)
        summary = ", ".join(f"{status.value}: {counts.get(status, 0)}" for status in ProcessingStatus)
        self.ui.display_info(f"{len(items)} item(s). {summary}. Next dispatch delay: {self.scheduler.delay:.0f}s.")
        self.ui.display_rate_limit(
            self.rate_limiter.state,
            self.rate_limiter.cooldown_remaining(),
            self.rate_limiter.max_requests,
        )

    async def handle_search(self, query: str) -> None:
        if self.search_service is None:
            self.ui.display_error("Semantic search requires a configured AI provider.")
            return
        try:
            ids = await self.search_service.semantic_search(query)
        except DispatchRefusedError as e:
            self.ui.display_warning(f"Search refused: {e}")
            return
        except EnrichmentError as e:
            self.ui.display_error(f"Search failed: {e}")
            return
        by_id = {item.id: item for item in await self.catalog_service.list_items()}
        results: List[CatalogItem] = [by_id[i] for i in ids if i in by_id]
        if not results:
            self.ui.display_info(f"No tools match '{query}'.")
            return
        self.ui.display_items(results, title=f"Results for '{query}'")

    async def handle_import_text(self, raw: str) -> None:
        try:
            stats = await self.catalog_service.import_text(raw)
        except (EnrichmentError, ValueError) as e:
            self.ui.display_error(f"Import failed: {e}")
            return
        self.ui.display_success(
            f"Imported {stats['added']} of {stats['total']} link(s) "
            f"({stats['duplicates']} duplicate(s), {stats['errors']} invalid)."
        )

    async def handle_clear_cache(self) -> None:
        if self.cache is None:
            self.ui.display_info("No result cache configured.")
            return
        self.cache.clear()
        self.ui.display_success("Result cache cleared.")

    async def handle_reset_limits(self) -> None:
        self.rate_limiter.reset()
        self.ui.display_success("Rate limit state reset.")
