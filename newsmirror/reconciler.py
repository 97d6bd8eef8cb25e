"""Merge a fetched record into its local entity."""
import re
from dataclasses import replace

from newsmirror.entity_types import EntityType, get_entity_type
from newsmirror.models import LocalEntity, RemoteRecord

YOUTUBE_THUMBNAIL_URL = "https://img.youtube.com/vi/{}/default.jpg"

MAX_SUBTITLE_LENGTH = 80

# Some excerpts start with a short sentence followed by <br />, or are a
# single short paragraph; either one makes a usable subtitle.
SUBTITLE_PATTERNS = [
    re.compile(rf"^(.{{1,{MAX_SUBTITLE_LENGTH}}})<br"),
    re.compile(rf"^<p>(.{{1,{MAX_SUBTITLE_LENGTH}}})</p>"),
]


def extract_subtitle(excerpt: str | None) -> str | None:
    """Extract a short leading subtitle from an excerpt, or None."""
    if not excerpt or not isinstance(excerpt, str):
        return None
    for pattern in SUBTITLE_PATTERNS:
        match = pattern.match(excerpt)
        if match:
            return match.group(1).strip() or None
    return None


def image_url_for(record: RemoteRecord) -> str | None:
    """Thumbnail for a record; YouTube videos use YouTube's own."""
    if record.youtube_id:
        return YOUTUBE_THUMBNAIL_URL.format(record.youtube_id)
    return record.image_url


class FieldReconciler:
    """Overwrite the managed fields of an entity from a remote record.

    Categories and meta keys outside the managed set are left as they
    are. ``subtitle_key`` enables subtitle extraction; when None, any
    existing subtitle is left alone.
    """

    def __init__(self, subtitle_key: str | None = None):
        self.subtitle_key = subtitle_key

    def reconcile(self, entity: LocalEntity, record: RemoteRecord) -> LocalEntity:
        if entity.identity_key != record.identity_key:
            raise ValueError(
                f"Record {record.identity_key} does not match entity {entity.identity_key}"
            )
        entity_type = get_entity_type(record.entity_type)

        return replace(
            entity,
            title=record.title,
            body=record.body,
            excerpt=record.excerpt,
            image_url=image_url_for(record),
            meta=self._reconcile_meta(entity.meta, record, entity_type),
            categories=list(entity.categories),
        )

    def _reconcile_meta(
        self, current: dict, record: RemoteRecord, entity_type: EntityType
    ) -> dict:
        meta = {
            key: value for key, value in current.items()
            if key not in entity_type.managed_meta_keys
        }
        meta.update(record.meta)
        if record.youtube_id:
            meta["youtube_id"] = record.youtube_id

        if self.subtitle_key:
            subtitle = extract_subtitle(record.excerpt)
            if subtitle and subtitle != record.title:
                meta[self.subtitle_key] = subtitle
            elif subtitle:
                # Would only repeat the title
                meta.pop(self.subtitle_key, None)
        return meta
