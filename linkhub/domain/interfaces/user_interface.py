"""Interface for presenting catalog and queue information to the user.

Allows the command handler to stay independent of the concrete console
rendering library.
"""

import abc
from typing import Any, List

from linkhub.domain.events.queue_events import DomainEvent
from linkhub.domain.models.catalog import CatalogItem
from linkhub.domain.models.rate_limit import RateLimitState


class UserInterface(abc.ABC):
    """Abstract Base Class for user interaction."""

    @abc.abstractmethod
    def display_items(self, items: List[CatalogItem], **kwargs: Any) -> None:
        """Displays catalog items.

        Args:
            items: Items to show, in listing order.
            **kwargs: Additional arguments for formatting (e.g. title).
        """
        pass

    @abc.abstractmethod
    def display_rate_limit(self, state: RateLimitState, cooldown_remaining: float, max_requests: int) -> None:
        """Displays the rate limiter state."""
        pass

    @abc.abstractmethod
    def display_error(self, error_message: str, **kwargs: Any) -> None:
        pass

    @abc.abstractmethod
    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        pass

    @abc.abstractmethod
    def display_info(self, info_message: str, **kwargs: Any) -> None:
        pass

    def display_success(self, message: str, **kwargs: Any) -> None:
        """Displays a confirmation. Defaults to an info message."""
        self.display_info(message, **kwargs)

    def display_event(self, event: DomainEvent) -> None:
        """Displays a queue event while the queue runs in the foreground."""
        pass
