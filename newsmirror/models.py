"""Data models for the news mirror."""
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType


@dataclass
class Channel:
    """Remote feed subscription.

    The channel row doubles as the grouping term: every entity fetched
    through it is linked back to ``id`` via the ownership table.
    """

    id: int
    url: str
    name: str | None
    is_active: bool = True


@dataclass(frozen=True)
class RemoteRecord:
    """One item of an API response, normalized."""

    entity_type: str
    api_id: str
    translation_id: str
    title: str
    body: str
    excerpt: str
    image_url: str | None
    youtube_id: str | None
    category_id: str | None
    language: str | None
    meta: Mapping = field(default_factory=dict)

    def __post_init__(self):
        # Read-only view over a private copy; the record stays immutable
        object.__setattr__(self, "meta", MappingProxyType(dict(self.meta)))

    @property
    def identity_key(self) -> tuple[str, str, str]:
        return (self.entity_type, self.api_id, self.translation_id)


@dataclass
class LocalEntity:
    """Locally persisted copy of a remote item."""

    id: int | None
    entity_type: str
    api_id: str
    translation_id: str
    title: str = ""
    body: str = ""
    excerpt: str = ""
    image_url: str | None = None
    meta: dict = field(default_factory=dict)
    categories: list[int] = field(default_factory=list)

    @property
    def identity_key(self) -> tuple[str, str, str]:
        return (self.entity_type, self.api_id, self.translation_id)


@dataclass
class Term:
    """Local category, optionally tagged with a remote category id."""

    id: int
    name: str
    remote_category_id: str | None = None


@dataclass(frozen=True)
class CategoryLink:
    """Remote category id resolved to a local category."""

    remote_category_id: str
    term_id: int


class SyncState(Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    RECONCILING = "reconciling"
    FAILED = "failed"


@dataclass
class SkippedRecord:
    """A record that could not be mirrored during a sync pass."""

    position: int
    api_id: str | None
    error: str


@dataclass
class SyncResult:
    """Outcome of one channel sync pass."""

    channel_url: str
    created: int = 0
    updated: int = 0
    skipped: list[SkippedRecord] = field(default_factory=list)
    error: str | None = None

    @property
    def reconciled(self) -> int:
        return self.created + self.updated
