"""Domain models related to AI interactions.

Includes the structured response returned by provider adapters and the
routing of a configured model identifier to a provider.
"""

from dataclasses import dataclass
from typing import List, NamedTuple, Optional, TypedDict

from .common import TokenUsage


class ChatMessage(TypedDict):
    """Represents a message structure expected by chat completion APIs."""
    role: str
    content: str


@dataclass
class StructuredAIResponse:
    """Structured response from an AI model, including metadata."""
    content: str
    token_usage: Optional[TokenUsage] = None
    model_name: Optional[str] = None # Which model generated the response
    latency_ms: Optional[float] = None # Time taken for the API call


class ModelRoute(NamedTuple):
    """A configured model identifier resolved to its provider."""
    provider: str
    model: str

    @classmethod
    def parse(cls, identifier: str, default_provider: str) -> "ModelRoute":
        """Parses "provider:model" or a bare model id (served by the default provider)."""
        provider, sep, model = identifier.partition(":")
        if sep and provider and model:
            return cls(provider.strip().lower(), model.strip())
        return cls(default_provider, identifier.strip())

    def __str__(self) -> str:
        return f"{self.provider}:{self.model}"


def parse_model_routes(identifiers: List[str], default_provider: str) -> List[ModelRoute]:
    return [ModelRoute.parse(i, default_provider) for i in identifiers if i and i.strip()]
