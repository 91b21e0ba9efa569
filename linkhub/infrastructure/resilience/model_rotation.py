"""Model rotation for provider calls.

Runs the same request against an ordered list of interchangeable models:
try the current model, classify the failure, and either continue with the
next model (quota or model unavailability) or stop and raise. Only when
every model has failed does an error reach the caller.
"""

import logging
import time
from typing import Awaitable, Callable, List, Tuple, TypeVar

from linkhub.domain.models.ai import ModelRoute
from linkhub.domain.models.errors import (
    EnrichmentError,
    ModelsExhaustedError,
    ModelUnavailableError,
    ProviderUnavailableError,
    QuotaExceededError,
)
from linkhub.infrastructure.resilience.error_classifier import classify_provider_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ModelRotation:
    """Ordered, sticky rotation over model routes.

    The rotation remembers the last model that answered and starts there on
    the next call, wrapping around the list.
    """

    def __init__(self, routes: List[ModelRoute]):
        if not routes:
            raise ValueError("At least one model must be configured.")
        self.routes = list(routes)
        self._current = 0
        logger.info(f"ModelRotation initialized with models: {', '.join(str(r) for r in self.routes)}")

    @property
    def current(self) -> ModelRoute:
        return self.routes[self._current]

    async def execute(self, call: Callable[[ModelRoute], Awaitable[T]]) -> Tuple[T, ModelRoute]:
        """Executes ``call`` with each model in turn until one succeeds.

        Returns:
            The call's result and the route that produced it.

        Raises:
            ModelsExhaustedError: Every model failed, at least one on quota.
            ProviderUnavailableError: Every model failed without a quota error.
            EnrichmentError: A failure that rotating cannot fix (malformed
                response, network, auth) is raised immediately.
        """
        failures: List[EnrichmentError] = []
        for offset in range(len(self.routes)):
            index = (self._current + offset) % len(self.routes)
            route = self.routes[index]
            start_time = time.perf_counter()
            try:
                result = await call(route)
            except Exception as e:
                error = classify_provider_error(e, model=str(route))
                if error.model is None:
                    error.model = str(route)
                if isinstance(error, (QuotaExceededError, ModelUnavailableError)):
                    failures.append(error)
                    logger.warning(
                        f"Model {route} unusable ({type(error).__name__}); "
                        f"{len(self.routes) - offset - 1} model(s) left to try."
                    )
                    continue
                if error is e:
                    raise
                raise error from e

            latency_ms = (time.perf_counter() - start_time) * 1000
            if index != self._current:
                logger.info(f"Rotated to model {route} after {len(failures)} failure(s).")
            self._current = index
            logger.debug(f"Model {route} answered in {latency_ms:.2f}ms")
            return result, route

        if any(isinstance(f, QuotaExceededError) for f in failures):
            raise ModelsExhaustedError(failures)
        raise ProviderUnavailableError(
            f"No configured model is available ({', '.join(str(f.model) for f in failures)}).",
            model=str(self.current),
        )
