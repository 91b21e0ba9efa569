import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from linkhub.core.services.batch_enrichment import BatchEnrichmentClient
from linkhub.core.services.catalog_service import CatalogService, clean_import_url
from linkhub.domain.models.catalog import PLACEHOLDER_DESCRIPTION, ProcessingStatus
from linkhub.domain.models.errors import DuplicateItemError, ItemNotFoundError


@pytest.fixture
def mock_client():
    client = MagicMock(spec=BatchEnrichmentClient)
    client.repair_malformed_input = AsyncMock(return_value=[])
    return client


@pytest.fixture
def catalog(item_store, mock_client, clock):
    return CatalogService(item_store, client=mock_client, clock=clock)


def test_add_link_creates_pending_item(catalog, item_store, clock):
    item = asyncio.run(catalog.add_link("www.shodan.io"))
    assert item.url == "https://www.shodan.io"
    assert item.name == "Shodan"
    assert item.processing_status is ProcessingStatus.PENDING
    assert item.added_at == clock()
    assert asyncio.run(item_store.list_items()) == [item]


def test_add_link_rejects_normalized_duplicates(catalog):
    asyncio.run(catalog.add_link("https://shodan.io/", name="Shodan"))
    with pytest.raises(DuplicateItemError, match="Shodan"):
        asyncio.run(catalog.add_link("http://www.shodan.io"))


def test_add_link_rejects_empty_url(catalog):
    with pytest.raises(ValueError):
        asyncio.run(catalog.add_link("   "))


@pytest.mark.parametrize("raw,expected", [
    ("[Shodan](https://shodan.io)", "https://shodan.io"),
    ("(https://censys.io)", "https://censys.io"),
    ("https://crt.sh", "https://crt.sh"),
])
def test_clean_import_url(raw, expected):
    assert clean_import_url(raw) == expected


def test_import_json_list_without_provider(catalog, item_store, mock_client):
    asyncio.run(catalog.add_link("https://shodan.io"))
    raw = json.dumps([
        {"name": "Shodan", "url": "https://shodan.io"},
        {"name": "Censys", "url": "[Censys](https://censys.io)", "description": "Internet scan data", "category": "OSINT"},
        {"name": "crt.sh", "url": "crt.sh"},
        {"name": "Broken"},
    ])

    stats = asyncio.run(catalog.import_text(raw))

    assert stats == {"total": 4, "added": 2, "duplicates": 1, "errors": 1}
    mock_client.repair_malformed_input.assert_not_called()
    items = {i.name: i for i in asyncio.run(item_store.list_items())}
    assert items["Censys"].processing_status is ProcessingStatus.DONE
    assert items["crt.sh"].processing_status is ProcessingStatus.PENDING
    assert items["crt.sh"].description == PLACEHOLDER_DESCRIPTION


def test_import_messy_text_uses_repair(catalog, item_store, mock_client):
    mock_client.repair_malformed_input.return_value = [
        {"name": "Shodan", "url": "https://shodan.io", "category": ""},
        {"name": "Shodan again", "url": "shodan.io", "category": ""},
    ]

    stats = asyncio.run(catalog.import_text("shodan -> shodan.io, and shodan.io again"))

    mock_client.repair_malformed_input.assert_awaited_once()
    assert stats["added"] == 1
    assert stats["duplicates"] == 1


def test_import_messy_text_without_client_fails(item_store, clock):
    with pytest.raises(ValueError):
        asyncio.run(CatalogService(item_store, clock=clock).import_text("not json"))


def test_requeue_resets_status(catalog, item_store, make_item, clock):
    item = make_item(ProcessingStatus.ERROR, last_error_at=clock())
    asyncio.run(item_store.add_item(item))

    requeued = asyncio.run(catalog.requeue(item.id))

    assert requeued.processing_status is ProcessingStatus.PENDING
    assert requeued.last_error_at is None


def test_requeue_and_remove_unknown_item(catalog):
    with pytest.raises(ItemNotFoundError):
        asyncio.run(catalog.requeue("missing"))
    with pytest.raises(ItemNotFoundError):
        asyncio.run(catalog.remove("missing"))


def test_list_items_filters_by_category(catalog, item_store, make_item):
    osint = make_item(ProcessingStatus.DONE, category="OSINT")
    other = make_item(ProcessingStatus.DONE, category="Dorks")
    asyncio.run(item_store.add_item(osint))
    asyncio.run(item_store.add_item(other))
    assert asyncio.run(catalog.list_items(category="osint")) == [osint]
