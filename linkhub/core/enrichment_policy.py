"""Acceptance rules for provider results.

Decides whether a result is a soft failure ("the model could not classify
this") and how an authoritative result is merged into an existing item
without regressing previously good data.
"""

import logging
from typing import Optional

from linkhub.domain.models.catalog import (
    GENERIC_CATEGORIES,
    MIN_DESCRIPTION_LENGTH,
    CatalogItem,
    EnrichmentResult,
    ProcessingStatus,
)

logger = logging.getLogger(__name__)

SOFT_FAILURE_STATUSES = frozenset({"unknown", "error", "unavailable"})

# Legacy fallback for providers that answer in prose instead of a status field.
# Whole sentinel values only; real descriptions may mention availability.
DESCRIPTION_SENTINELS = frozenset({
    "non disponibile",
    "descrizione non disponibile",
    "not available",
    "description not available",
    "unavailable",
    "could not classify",
    "unable to classify",
})
CATEGORY_SENTINELS = frozenset({"errore", "error"})


def _is_sentinel(text: Optional[str], sentinels: frozenset) -> bool:
    if not text:
        return False
    return text.strip().strip(".!").strip().lower() in sentinels


def is_soft_failure(result: EnrichmentResult) -> bool:
    """True if the provider answered but signalled it has nothing usable."""
    if result.status:
        return result.status.strip().lower() in SOFT_FAILURE_STATUSES
    return (
        _is_sentinel(result.description, DESCRIPTION_SENTINELS)
        or _is_sentinel(result.category, CATEGORY_SENTINELS)
    )


def merge_result(item: CatalogItem, result: EnrichmentResult) -> CatalogItem:
    """Applies a result to an item and marks it done.

    Soft failures keep every field. Otherwise each field is replaced only
    when the new value is meaningful.
    """
    if is_soft_failure(result):
        logger.debug(f"Soft failure for item {item.id}; keeping existing metadata.")
        return item.with_status(ProcessingStatus.DONE)

    description = item.description
    if result.description and len(result.description.strip()) > MIN_DESCRIPTION_LENGTH:
        description = result.description.strip()

    category = item.category
    if result.category and result.category.strip().lower() not in GENERIC_CATEGORIES:
        category = result.category.strip()

    tags = item.tags
    cleaned_tags = [t.strip() for t in result.tags or [] if t and t.strip()]
    if cleaned_tags:
        tags = cleaned_tags

    return item.with_status(ProcessingStatus.DONE, description=description, category=category, tags=tags)
