"""Interface for AI Language Models (LLMs).

Defines the contract for sending a prompt that expects a JSON answer to a
provider (e.g., Groq, OpenAI). Adapters translate SDK exceptions into the
enrichment error taxonomy before they leave the adapter.
"""

import abc
from typing import Optional

from ..models.ai import StructuredAIResponse
from ..models.common import PromptText


class AIModel(abc.ABC):
    """Abstract Base Class for AI language model interactions."""

    provider_name: str = "unknown"

    @abc.abstractmethod
    async def complete_json(
        self,
        prompt: PromptText,
        model: str,
        system_prompt: Optional[str] = None,
    ) -> StructuredAIResponse:
        """Sends a prompt to the given model, requesting a JSON object response.

        Args:
            prompt: The user prompt.
            model: The provider-specific model identifier.
            system_prompt: Optional system instruction.

        Returns:
            A StructuredAIResponse whose content should be JSON text
            (not guaranteed; callers must parse defensively).

        Raises:
            QuotaExceededError: The model is rate or quota limited.
            ModelUnavailableError: The model identifier cannot be served.
            ProviderUnavailableError: Any other transport or API failure.
        """
        pass
