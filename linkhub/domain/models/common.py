"""Defines common Value Objects used across different domain contexts.

These objects represent simple values like item identifiers, cache keys,
prompts and token counts, ensuring consistency and type safety.
"""

import time
from typing import Callable, NewType, TypedDict

# === Catalog Context ===
ItemId = NewType("ItemId", str)                # Stable identifier of a catalog item

# === Caching Context ===
CacheKey = NewType("CacheKey", str)            # Unique key for a cache entry

# === AI Interaction Context ===
PromptText = NewType("PromptText", str)        # Prompt sent to the provider

# === Token Management ===
TokenCount = NewType("TokenCount", int)        # Number of tokens

# Injectable wall clock (seconds since epoch)
Clock = Callable[[], float]


def system_clock() -> float:
    """Default clock used outside of tests."""
    return time.time()


class TokenUsage(TypedDict):
    """Represents token usage information from an AI call."""
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class ImportStats(TypedDict):
    """Outcome of a bulk import of links."""
    total: int
    added: int
    duplicates: int
    errors: int
