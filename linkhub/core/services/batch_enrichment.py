"""Batch enrichment client.

Builds one provider request per batch of catalog items, rotates through the
configured models on quota or model-unavailability failures, and parses the
JSON answer defensively into per-item EnrichmentResults.
"""

import json
import logging
import re
from typing import Any, Dict, List, Mapping, Optional

from linkhub.domain.interfaces.ai_model import AIModel
from linkhub.domain.models.ai import ModelRoute, StructuredAIResponse
from linkhub.domain.models.catalog import EnrichmentRequest, EnrichmentResult
from linkhub.domain.models.common import ItemId, PromptText
from linkhub.domain.models.errors import MalformedResponseError, ModelUnavailableError
from linkhub.infrastructure.optimization.token_estimator import BatchBudget
from linkhub.infrastructure.resilience.model_rotation import ModelRotation

logger = logging.getLogger(__name__)

MAX_REPAIR_INPUT_CHARS = 10000
_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

SYSTEM_PROMPT = (
    "You catalog security, pentesting and OSINT tools. "
    "Always answer with a single JSON object and nothing else."
)

BATCH_PROMPT_TEMPLATE = """Analyze each of the following tools.
For every tool give a concise description in {language} (max 25 words), one specific category
(e.g. Threat Intelligence, OSINT, Vulnerability Scanning, Dorks, Code Search) and 3-5 relevant tags.
If you cannot identify a tool, set "status" to "unknown" for it instead of guessing.

Answer with JSON of this shape:
{{"results": [{{"id": "<id>", "status": "ok", "description": "...", "category": "...", "tags": ["..."]}}]}}

Tools:
{tools}"""

REPAIR_PROMPT_TEMPLATE = """The user is importing a list of websites/tools but the JSON or text is messy.
Extract the valid entries. Each entry must have "name" and "url" and optionally "category".
Fix typos in the keys and ignore junk text.
Answer with JSON of this shape: {{"items": [{{"name": "...", "url": "...", "category": "..."}}]}}

Input data:
{raw}"""


def load_json_payload(content: str, model: Optional[str] = None) -> Any:
    """Parses provider output as JSON, tolerating markdown code fences."""
    text = _FENCE_RE.sub("", (content or "").strip()).strip()
    if not text:
        raise MalformedResponseError("Empty response from provider", model=model)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Response is not valid JSON: {e}", model=model) from e


def _coerce_tags(value: Any, model: Optional[str]) -> Optional[List[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        return [t.strip() for t in value.split(",") if t.strip()]
    if isinstance(value, list):
        return [str(t) for t in value if t is not None]
    raise MalformedResponseError(f"Invalid tags field: {value!r}", model=model)


def _optional_str(value: Any, field_name: str, model: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (str, int, float)):
        return str(value)
    raise MalformedResponseError(f"Invalid {field_name} field: {value!r}", model=model)


def parse_batch_results(
    payload: Any,
    requests: List[EnrichmentRequest],
    model: Optional[str] = None,
) -> Dict[ItemId, EnrichmentResult]:
    """Correlates provider entries with the requested items.

    Ids are matched case-insensitively; entries for unknown ids are dropped.
    Any structural problem fails the whole batch.
    """
    if isinstance(payload, dict) and isinstance(payload.get("results"), list):
        entries = payload["results"]
    elif isinstance(payload, list):
        entries = payload
    elif isinstance(payload, dict) and payload and all(isinstance(v, dict) for v in payload.values()):
        # Keyed by id: {"<id>": {...}}
        entries = [{"id": key, **value} for key, value in payload.items()]
    else:
        raise MalformedResponseError("Response JSON has no 'results' list", model=model)

    index = {str(r.id).lower(): r.id for r in requests}
    results: Dict[ItemId, EnrichmentResult] = {}
    for entry in entries:
        if not isinstance(entry, dict) or entry.get("id") is None:
            raise MalformedResponseError(f"Result entry without id: {entry!r}", model=model)
        item_id = index.get(str(entry["id"]).strip().lower())
        if item_id is None:
            logger.debug(f"Discarding result for unknown id '{entry['id']}'")
            continue
        results[item_id] = EnrichmentResult(
            description=_optional_str(entry.get("description"), "description", model),
            category=_optional_str(entry.get("category"), "category", model),
            tags=_coerce_tags(entry.get("tags"), model),
            status=_optional_str(entry.get("status"), "status", model),
        )
    return results


class BatchEnrichmentClient:
    """Submits grouped enrichment requests through the model rotation."""

    def __init__(
        self,
        providers: Mapping[str, AIModel],
        rotation: ModelRotation,
        budget: Optional[BatchBudget] = None,
        language: str = "English",
    ):
        """Initializes the client.

        Args:
            providers: Provider adapters by name ('groq', 'openai').
            rotation: Ordered model routes to try.
            budget: Optional token budget bounding the batch size.
            language: Language of generated descriptions.
        """
        self.providers = dict(providers)
        self.rotation = rotation
        self.budget = budget
        self.language = language
        logger.info(f"BatchEnrichmentClient initialized with providers: {', '.join(self.providers) or 'none'}")

    def max_batch_size(self, entries: List[EnrichmentRequest], cap: int) -> int:
        """Batch size allowed by the token budget of the current model, capped at ``cap``."""
        if not entries:
            return 0
        limit = min(cap, len(entries))
        if self.budget is None:
            return limit
        return min(limit, self.budget.max_items(entries, self.rotation.current.model))

    async def _call(self, route: ModelRoute, prompt: PromptText) -> StructuredAIResponse:
        provider = self.providers.get(route.provider)
        if provider is None:
            raise ModelUnavailableError(f"Provider '{route.provider}' is not configured", model=str(route))
        return await provider.complete_json(prompt, route.model, system_prompt=SYSTEM_PROMPT)

    async def request_json(self, prompt: str) -> Any:
        """Sends one prompt through the rotation and returns the parsed JSON payload."""
        response, route = await self.rotation.execute(lambda r: self._call(r, PromptText(prompt)))
        return load_json_payload(response.content, model=str(route))

    async def enrich_batch(self, entries: List[EnrichmentRequest]) -> Dict[ItemId, EnrichmentResult]:
        """Enriches all entries with a single provider request.

        Raises:
            QuotaExceededError: Every model is quota limited.
            ProviderUnavailableError: The provider failed or answered malformed JSON.
        """
        if not entries:
            return {}
        tools = "\n".join(
            json.dumps({
                "id": e.id,
                "name": e.name,
                "url": e.url,
                "current_description": e.current_description,
            }, ensure_ascii=False)
            for e in entries
        )
        prompt = BATCH_PROMPT_TEMPLATE.format(language=self.language, tools=tools)
        response, route = await self.rotation.execute(lambda r: self._call(r, PromptText(prompt)))
        payload = load_json_payload(response.content, model=str(route))
        results = parse_batch_results(payload, entries, model=str(route))
        logger.info(f"Batch of {len(entries)} enriched by {route}: {len(results)} result(s).")
        return results

    async def enrich_one(self, entry: EnrichmentRequest) -> Optional[EnrichmentResult]:
        results = await self.enrich_batch([entry])
        return results.get(entry.id)

    async def repair_malformed_input(self, raw_input: str) -> List[Dict[str, str]]:
        """Asks the provider to recover {name, url, category?} entries from messy input."""
        prompt = REPAIR_PROMPT_TEMPLATE.format(raw=raw_input[:MAX_REPAIR_INPUT_CHARS])
        payload = await self.request_json(prompt)
        if isinstance(payload, dict):
            payload = payload.get("items")
        if not isinstance(payload, list):
            return []
        recovered = []
        for entry in payload:
            if isinstance(entry, dict) and entry.get("url"):
                recovered.append({
                    "name": str(entry.get("name") or ""),
                    "url": str(entry["url"]),
                    "category": str(entry.get("category") or ""),
                })
        logger.info(f"Recovered {len(recovered)} entries from malformed input.")
        return recovered
