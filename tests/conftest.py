from typing import Any, Callable, Optional

import pytest
from typer.testing import CliRunner

from helpers import FakeClock, FakeProvider
from linkhub.domain.models.ai import ModelRoute
from linkhub.domain.models.catalog import CatalogItem, ProcessingStatus
from linkhub.infrastructure.cache.result_cache import ResultCache
from linkhub.infrastructure.cache.stores import MemoryCacheStore
from linkhub.infrastructure.config.settings import QueueSettings, clear_test_config
from linkhub.infrastructure.resilience.model_rotation import ModelRotation
from linkhub.infrastructure.resilience.rate_limiter import RateLimiter
from linkhub.infrastructure.storage.item_store import InMemoryItemStore
from linkhub.infrastructure.storage.state_store import MemoryStateStore
from linkhub.core.services.batch_enrichment import BatchEnrichmentClient

@pytest.fixture(autouse=True)
def reset_test_config():
    yield
    clear_test_config()

@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()

@pytest.fixture
def queue_settings() -> QueueSettings:
    return QueueSettings()

@pytest.fixture
def make_item(clock) -> Callable[..., CatalogItem]:
    counter = {"n": 0}

    def factory(
        status: ProcessingStatus = ProcessingStatus.PENDING,
        url: Optional[str] = None,
        **changes: Any,
    ) -> CatalogItem:
        counter["n"] += 1
        item = CatalogItem.create(url or f"https://tool{counter['n']}.example.com", now=clock())
        return item.with_status(status, **changes)

    return factory

@pytest.fixture
def item_store() -> InMemoryItemStore:
    return InMemoryItemStore()

@pytest.fixture
def state_store() -> MemoryStateStore:
    return MemoryStateStore()

@pytest.fixture
def rate_limiter(state_store, clock) -> RateLimiter:
    return RateLimiter(state_store=state_store, clock=clock)

@pytest.fixture
def result_cache(clock) -> ResultCache:
    return ResultCache(MemoryCacheStore(), clock=clock)

@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()

@pytest.fixture
def batch_client(provider) -> BatchEnrichmentClient:
    rotation = ModelRotation([ModelRoute("groq", "m1"), ModelRoute("groq", "m2")])
    return BatchEnrichmentClient(providers={"groq": provider}, rotation=rotation)
