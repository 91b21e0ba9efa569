"""Domain Events emitted by the enrichment queue.

Examples include events for when a batch is dispatched, completes, fails,
or when the queue enters a cooldown or changes its dispatch delay.
"""

from dataclasses import dataclass, field
import time
from typing import List, Optional


@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass


@dataclass
class BatchDispatched(DomainEvent):
    """A batch was marked processing and handed to the enrichment client."""
    item_ids: List[str]
    manual: bool = False
    timestamp: float = field(default_factory=time.time)


@dataclass
class BatchCompleted(DomainEvent):
    """The provider answered; items were merged, kept or marked missing."""
    updated: List[str]
    soft_failures: List[str]
    missing: List[str]
    cache_hits: List[str] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)


@dataclass
class BatchFailed(DomainEvent):
    """The enrichment call raised; items were reverted."""
    item_ids: List[str]
    error_type: str
    error_message: str
    quota_related: bool
    timestamp: float = field(default_factory=time.time)


@dataclass
class CooldownEntered(DomainEvent):
    """The rate limiter entered a cooldown period."""
    cooldown_until: float
    consecutive_errors: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class DelayAdjusted(DomainEvent):
    """The inter-batch delay changed."""
    previous_seconds: float
    current_seconds: float
    reason: Optional[str] = None
    timestamp: float = field(default_factory=time.time)
