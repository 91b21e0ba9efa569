"""Exception types shared by the enrichment pipeline and the catalog.

Provider failures are translated into this taxonomy at the client boundary
so the scheduler only ever reasons about these classes.
"""

from typing import List, Optional


class EnrichmentError(Exception):
    """Base class for failures of an enrichment call."""

    def __init__(self, message: str, model: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.model = model
        self.status_code = status_code


class QuotaExceededError(EnrichmentError):
    """The provider signalled rate or quota limiting (HTTP 429 and friends)."""


class ProviderUnavailableError(EnrichmentError):
    """The provider could not serve the request (network, 5xx, auth...)."""


class ModelUnavailableError(ProviderUnavailableError):
    """The requested model identifier is unknown or decommissioned."""


class MalformedResponseError(ProviderUnavailableError):
    """The provider answered but the payload was not the expected JSON."""


class ModelsExhaustedError(QuotaExceededError):
    """Every configured model failed, at least one of them on quota."""

    def __init__(self, failures: List[EnrichmentError]):
        self.failures = failures
        tried = ", ".join(str(f.model) for f in failures)
        super().__init__(f"All models exhausted ({tried}). Last error: {failures[-1] if failures else 'n/a'}")


class DispatchRefusedError(EnrichmentError):
    """A manual enrichment request was rejected (busy, cooldown or window full)."""


class CatalogError(Exception):
    """Base class for catalog management errors."""


class DuplicateItemError(CatalogError):
    def __init__(self, url: str, existing_name: str):
        self.url = url
        self.existing_name = existing_name
        super().__init__(f"Link already present: {existing_name} ({url})")


class ItemNotFoundError(CatalogError):
    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"No catalog item with id '{item_id}'")


class CacheQuotaExceededError(Exception):
    """A cache backend ran out of storage while writing an entry."""
