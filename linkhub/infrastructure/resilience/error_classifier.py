"""Classification of provider failures into the enrichment error taxonomy.

Both provider adapters and the queue scheduler go through this module, so
the "is this a quota problem?" heuristic lives in exactly one place.
"""

import logging
from typing import Optional

from linkhub.domain.models.errors import (
    EnrichmentError,
    ModelUnavailableError,
    ProviderUnavailableError,
    QuotaExceededError,
)

logger = logging.getLogger(__name__)

QUOTA_STATUS_CODES = frozenset({429})
MODEL_UNAVAILABLE_STATUS_CODES = frozenset({404})
QUOTA_MARKERS = ("429", "rate limit", "rate_limit", "ratelimit", "too many requests", "quota", "resource_exhausted")
MODEL_UNAVAILABLE_MARKERS = ("model_not_found", "model_decommissioned", "does not exist", "decommissioned")


def _status_code(exc: BaseException) -> Optional[int]:
    # openai/groq SDK errors expose status_code; some wrap it in .response
    code = getattr(exc, "status_code", None)
    if code is None:
        response = getattr(exc, "response", None)
        code = getattr(response, "status_code", None)
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


def is_quota_error(exc: BaseException) -> bool:
    """Returns True if the failure signals rate or quota limiting."""
    if isinstance(exc, QuotaExceededError):
        return True
    if isinstance(exc, EnrichmentError):
        # Already classified as something else; only a transport 429 overrides it
        return exc.status_code in QUOTA_STATUS_CODES
    if _status_code(exc) in QUOTA_STATUS_CODES:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in QUOTA_MARKERS)


def is_model_unavailable(exc: BaseException) -> bool:
    if isinstance(exc, ModelUnavailableError):
        return True
    if isinstance(exc, EnrichmentError):
        return False
    if _status_code(exc) in MODEL_UNAVAILABLE_STATUS_CODES:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in MODEL_UNAVAILABLE_MARKERS)


def classify_provider_error(exc: BaseException, model: Optional[str] = None) -> EnrichmentError:
    """Maps any exception raised while calling a provider to an EnrichmentError.

    Already-classified errors are returned unchanged.
    """
    if isinstance(exc, EnrichmentError):
        return exc
    status_code = _status_code(exc)
    message = f"{type(exc).__name__}: {exc}"
    if is_quota_error(exc):
        return QuotaExceededError(message, model=model, status_code=status_code)
    if is_model_unavailable(exc):
        return ModelUnavailableError(message, model=model, status_code=status_code)
    return ProviderUnavailableError(message, model=model, status_code=status_code)
