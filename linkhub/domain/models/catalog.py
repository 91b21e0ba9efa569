"""Domain models for the link catalog.

Includes the catalog item entity, its processing state machine and the
structures exchanged with the enrichment provider.
"""

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from .common import ItemId

PLACEHOLDER_DESCRIPTION = "Pending automatic enrichment..."
PLACEHOLDER_CATEGORY = "Awaiting classification"
UNCATEGORIZED = "Uncategorized"

# Descriptions this short are treated as degenerate provider output
MIN_DESCRIPTION_LENGTH = 5

# Generic categories that never overwrite an existing one
GENERIC_CATEGORIES = frozenset({
    "uncategorized",
    "non categorizzato",
    "awaiting classification",
    "",
})


class ProcessingStatus(str, Enum):
    """Enrichment state of a catalog item."""
    PENDING = "pending"
    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


def normalize_url(url: str) -> str:
    """Normalizes a URL for duplicate detection (scheme, www and trailing slash ignored)."""
    value = url.strip().lower()
    for prefix in ("https://", "http://"):
        if value.startswith(prefix):
            value = value[len(prefix):]
            break
    if value.startswith("www."):
        value = value[4:]
    return value.rstrip("/")


def ensure_scheme(url: str) -> str:
    url = url.strip()
    if not url.lower().startswith(("http://", "https://")):
        url = "https://" + url
    return url


def name_from_url(url: str) -> str:
    """Derives a display name from the hostname, e.g. https://www.shodan.io -> Shodan."""
    try:
        hostname = urlparse(url).hostname or ""
    except ValueError:
        hostname = ""
    if not hostname:
        return url
    if hostname.startswith("www."):
        hostname = hostname[4:]
    first = hostname.split(".")[0]
    return first[:1].upper() + first[1:]


@dataclass
class CatalogItem:
    """A link in the catalog together with its enrichment payload."""
    id: ItemId
    name: str
    url: str
    description: str = PLACEHOLDER_DESCRIPTION
    category: str = PLACEHOLDER_CATEGORY
    tags: List[str] = field(default_factory=list)
    added_at: float = 0.0
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    last_error_at: Optional[float] = None

    @classmethod
    def create(cls, url: str, now: float, name: Optional[str] = None) -> "CatalogItem":
        """Creates a new pending item for the given URL."""
        full_url = ensure_scheme(url)
        return cls(
            id=ItemId(str(uuid.uuid4())),
            name=name or name_from_url(full_url),
            url=full_url,
            added_at=now,
        )

    def with_status(self, status: ProcessingStatus, **changes: Any) -> "CatalogItem":
        return replace(self, processing_status=status, **changes)

    def has_usable_description(self) -> bool:
        text = (self.description or "").strip()
        return len(text) > MIN_DESCRIPTION_LENGTH and text != PLACEHOLDER_DESCRIPTION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "description": self.description,
            "category": self.category,
            "tags": list(self.tags),
            "added_at": self.added_at,
            "processing_status": self.processing_status.value,
            "last_error_at": self.last_error_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CatalogItem":
        return cls(
            id=ItemId(str(data["id"])),
            name=str(data.get("name", "")),
            url=str(data.get("url", "")),
            description=data.get("description") or "",
            category=data.get("category") or UNCATEGORIZED,
            tags=[str(t) for t in data.get("tags") or []],
            added_at=float(data.get("added_at") or 0.0),
            processing_status=ProcessingStatus(data.get("processing_status") or ProcessingStatus.PENDING.value),
            last_error_at=data.get("last_error_at"),
        )


@dataclass(frozen=True)
class EnrichmentRequest:
    """One entry of a batch sent to the provider."""
    id: ItemId
    name: str
    url: str
    current_description: str = ""

    @classmethod
    def from_item(cls, item: CatalogItem) -> "EnrichmentRequest":
        return cls(id=item.id, name=item.name, url=item.url, current_description=item.description)


@dataclass
class EnrichmentResult:
    """Metadata proposed by the provider for one item.

    A None field means "keep the existing value". ``status`` is the
    structured outcome reported by the provider, when it reports one.
    """
    description: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "category": self.category,
            "tags": self.tags,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EnrichmentResult":
        tags = data.get("tags")
        return cls(
            description=data.get("description"),
            category=data.get("category"),
            tags=[str(t) for t in tags] if isinstance(tags, list) else None,
            status=data.get("status"),
        )
