"""Semantic search over the catalog through the enrichment provider.

Shares the rate limiter with the enrichment queue, so a search consumes one
request of the window and is refused while a cooldown is active.
"""

import json
import logging
from typing import List, Optional

from linkhub.core.services.batch_enrichment import BatchEnrichmentClient
from linkhub.domain.interfaces.item_store import ItemStore
from linkhub.domain.models.catalog import CatalogItem
from linkhub.domain.models.common import ItemId
from linkhub.domain.models.errors import DispatchRefusedError, MalformedResponseError
from linkhub.infrastructure.cache.result_cache import ResultCache, make_search_key
from linkhub.infrastructure.resilience.error_classifier import is_quota_error
from linkhub.infrastructure.resilience.rate_limiter import RateLimiter, format_cooldown

logger = logging.getLogger(__name__)

SEARCH_PROMPT_TEMPLATE = """User query: "{query}"

Select the ids of the tools in the list below that are most relevant to the query.
Understand the intent (e.g. "wifi" should match "wireless", "password" should match "credentials" or "dork").
Answer with JSON of this shape: {{"matched_ids": ["<id>", ...]}}

List:
{context}"""


class SearchService:
    """Answers natural-language queries with matching catalog item ids."""

    def __init__(
        self,
        client: BatchEnrichmentClient,
        rate_limiter: RateLimiter,
        item_store: ItemStore,
        cache: Optional[ResultCache] = None,
    ):
        self.client = client
        self.rate_limiter = rate_limiter
        self.item_store = item_store
        self.cache = cache

    @staticmethod
    def _build_prompt(query: str, items: List[CatalogItem]) -> str:
        # Compact context to save tokens
        context = [{"id": i.id, "txt": f"{i.name} ({i.category}): {i.description}"} for i in items]
        return SEARCH_PROMPT_TEMPLATE.format(query=query, context=json.dumps(context, ensure_ascii=False))

    async def semantic_search(self, query: str) -> List[ItemId]:
        """Returns the ids of relevant items, most relevant first.

        Raises:
            DispatchRefusedError: Cooldown active or request window exhausted.
            EnrichmentError: The provider call failed.
        """
        query = query.strip()
        if not query:
            return []
        items = await self.item_store.list_items()
        if not items:
            return []
        known = {str(i.id).lower(): i.id for i in items}

        key = make_search_key(query)
        if self.cache is not None:
            cached = self.cache.get(key)
            if isinstance(cached, list):
                return [known[str(c).lower()] for c in cached if str(c).lower() in known]

        if self.rate_limiter.is_in_cooldown():
            remaining = format_cooldown(self.rate_limiter.cooldown_remaining())
            raise DispatchRefusedError(f"Rate limit cooldown active ({remaining} left).")
        if not self.rate_limiter.can_dispatch():
            raise DispatchRefusedError("Request limit for this minute reached.")

        self.rate_limiter.record_dispatch()
        try:
            payload = await self.client.request_json(self._build_prompt(query, items))
        except Exception as e:
            self.rate_limiter.record_failure(is_quota_error(e))
            logger.error(f"Semantic search failed: {e}")
            raise
        self.rate_limiter.record_success()

        matched = payload.get("matched_ids") if isinstance(payload, dict) else payload
        if not isinstance(matched, list):
            raise MalformedResponseError("Search response has no 'matched_ids' list")
        ids = [known[str(m).lower()] for m in matched if str(m).lower() in known]
        if self.cache is not None:
            self.cache.set(key, list(ids))
        logger.info(f"Semantic search '{query}' matched {len(ids)} item(s).")
        return ids
