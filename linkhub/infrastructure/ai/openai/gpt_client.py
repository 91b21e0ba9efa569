"""Concrete implementation of the AIModel interface using the OpenAI API.

Hides the specifics of the OpenAI client library and translates requests/
responses between the domain model and the OpenAI API format.
"""

import asyncio
import logging
import os
import time
from typing import Any, List, Optional

from openai import OpenAI

from linkhub.domain.interfaces.ai_model import AIModel
from linkhub.domain.models.ai import ChatMessage, StructuredAIResponse
from linkhub.domain.models.common import PromptText, TokenUsage
from linkhub.domain.models.errors import MalformedResponseError
from linkhub.infrastructure.resilience.error_classifier import classify_provider_error

logger = logging.getLogger(__name__)


class GptClient(AIModel):
    """OpenAI implementation of the AIModel interface."""

    provider_name = "openai"

    def __init__(self, api_key: Optional[str] = None, timeout: float = 30.0, client: Any = None):
        """Initializes the OpenAI client.

        Args:
            api_key: OpenAI API key. Reads from OPENAI_API_KEY env var if None.
            timeout: Request timeout in seconds.
            client: Pre-built SDK client (used by tests).
        """
        if client is not None:
            self.client = client
        else:
            effective_api_key = api_key or os.getenv("OPENAI_API_KEY")
            if not effective_api_key:
                raise ValueError("OpenAI API key not provided and not found in environment variables.")
            try:
                self.client = OpenAI(api_key=effective_api_key, timeout=timeout, max_retries=0)
            except Exception as e:
                logger.error(f"Failed to initialize OpenAI client: {e}", exc_info=True)
                raise RuntimeError(f"OpenAI client initialization failed: {e}") from e
        logger.info("GptClient initialized.")

    def _parse_openai_response(self, response: Any, model: str) -> StructuredAIResponse:
        """Parses the response object from OpenAI API call."""
        try:
            choice = response.choices[0]
            token_usage = None
            if response.usage:
                token_usage = TokenUsage(
                    prompt_tokens=response.usage.prompt_tokens,
                    completion_tokens=response.usage.completion_tokens,
                    total_tokens=response.usage.total_tokens,
                )
            return StructuredAIResponse(
                content=choice.message.content or "",
                token_usage=token_usage,
                model_name=getattr(response, "model", None) or model,
            )
        except (AttributeError, IndexError, KeyError, TypeError) as e:
            logger.error(f"Failed to parse OpenAI response structure: {e}", exc_info=True)
            raise MalformedResponseError(f"Invalid response structure from OpenAI: {e}", model=model) from e

    async def complete_json(
        self,
        prompt: PromptText,
        model: str,
        system_prompt: Optional[str] = None,
    ) -> StructuredAIResponse:
        messages: List[ChatMessage] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        start_time = time.perf_counter()
        try:
            completion = await asyncio.to_thread(
                self.client.chat.completions.create,
                messages=messages,
                model=model,
                temperature=0.2,
                response_format={"type": "json_object"},
            )
        except Exception as e:
            error = classify_provider_error(e, model=f"openai:{model}")
            logger.warning(f"OpenAI call failed ({type(error).__name__}): {e}")
            raise error from e

        structured_response = self._parse_openai_response(completion, model)
        structured_response.latency_ms = (time.perf_counter() - start_time) * 1000
        logger.debug(f"Received response from OpenAI in {structured_response.latency_ms:.2f}ms")
        return structured_response
