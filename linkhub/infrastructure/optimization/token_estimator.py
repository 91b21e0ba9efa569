"""Service for estimating token counts and sizing enrichment batches.

Uses tokenizer libraries (like `tiktoken`) to estimate the cost of a batch
before sending it, so a single request stays inside the active model's
tokens-per-minute ceiling.
Bounded Context: Token Management
"""

import logging
from typing import Dict, List, Optional

import tiktoken

from linkhub.domain.models.catalog import EnrichmentRequest
from linkhub.domain.models.common import TokenCount

logger = logging.getLogger(__name__)

DEFAULT_TOKENIZER_MODEL = "cl100k_base"
APPROX_CHARS_PER_TOKEN = 4 # Fallback approximation

# Fixed instructions + JSON schema hint sent with every batch
PROMPT_OVERHEAD_TOKENS = 250
# Expected completion size per item (description + category + tags)
RESPONSE_TOKENS_PER_ITEM = 80
SAFETY_MARGIN = 0.7
ABSOLUTE_MAX_BATCH = 10

# Published tokens-per-minute ceilings of commonly used free-tier models
DEFAULT_TOKEN_LIMITS: Dict[str, int] = {
    "llama-3.1-8b-instant": 6000,
    "llama-3.3-70b-versatile": 12000,
    "gemma2-9b-it": 15000,
    "gpt-4o-mini": 200000,
}
DEFAULT_TOKENS_PER_MINUTE = 6000


class TokenEstimator:
    """Estimates token counts using tiktoken or approximation."""

    def __init__(self, tokenizer_model_name: Optional[str] = None, use_tiktoken: bool = True):
        """Initializes the TokenEstimator.

        Args:
            tokenizer_model_name: tiktoken encoding name.
            use_tiktoken: Set to False to always use the character approximation
                (tiktoken downloads encodings on first use).
        """
        self.tokenizer_name = tokenizer_model_name or DEFAULT_TOKENIZER_MODEL
        self.tokenizer = None
        if use_tiktoken:
            try:
                self.tokenizer = tiktoken.get_encoding(self.tokenizer_name)
                logger.info(f"TokenEstimator initialized with tiktoken model: {self.tokenizer_name}")
            except Exception as e:
                logger.error(f"Failed to load tiktoken model '{self.tokenizer_name}': {e}. Falling back to approximation.")
        else:
            logger.debug("TokenEstimator using character approximation.")

    def estimate_tokens(self, text: str) -> TokenCount:
        if not text:
            return TokenCount(0)
        if self.tokenizer:
            try:
                return TokenCount(len(self.tokenizer.encode(text)))
            except Exception as e:
                logger.warning(f"tiktoken encoding failed for text: '{text[:50]}...': {e}. Falling back to approx.")
        return TokenCount(max(1, len(text) // APPROX_CHARS_PER_TOKEN))

    def estimate_item_tokens(self, entry: EnrichmentRequest) -> TokenCount:
        """Estimated prompt + completion tokens one item adds to a batch."""
        line = f"{entry.id} {entry.name} {entry.url} {entry.current_description}"
        return TokenCount(self.estimate_tokens(line) + RESPONSE_TOKENS_PER_ITEM)


class BatchBudget:
    """Advisory upper bound on batch size derived from a model's token ceiling.

    Independent of the request-count window: this bounds tokens per request,
    the rate limiter bounds requests per minute.
    """

    def __init__(
        self,
        token_estimator: TokenEstimator,
        token_limits: Optional[Dict[str, int]] = None,
        safety_margin: float = SAFETY_MARGIN,
        absolute_max: int = ABSOLUTE_MAX_BATCH,
    ):
        self.token_estimator = token_estimator
        self.token_limits = dict(DEFAULT_TOKEN_LIMITS)
        if token_limits:
            self.token_limits.update(token_limits)
        self.safety_margin = safety_margin
        self.absolute_max = absolute_max

    def tokens_per_minute(self, model: str) -> int:
        return int(self.token_limits.get(model, DEFAULT_TOKENS_PER_MINUTE))

    def max_items(self, entries: List[EnrichmentRequest], model: str) -> int:
        """Largest prefix of ``entries`` that fits the model's budget (at least 1)."""
        if not entries:
            return 0
        budget = self.tokens_per_minute(model) * self.safety_margin - PROMPT_OVERHEAD_TOKENS
        used = 0
        count = 0
        for entry in entries[: self.absolute_max]:
            used += self.token_estimator.estimate_item_tokens(entry)
            if used > budget:
                break
            count += 1
        count = max(1, count)
        logger.debug(f"Token budget for {model}: {budget:.0f} tokens -> {count} item(s) per batch")
        return count
