"""Turn raw API items into RemoteRecord objects."""
import re
from collections.abc import Mapping

from newsmirror.entity_types import EntityType
from newsmirror.models import RemoteRecord

YOUTUBE_EMBED_PATTERN = re.compile(r"youtube\.com/embed/([^/?]+)")


class MalformedRecord(ValueError):
    """Raised when an API item lacks the fields needed to identify it."""

    def __init__(self, message: str, raw: object = None):
        self.raw = raw
        super().__init__(message)


def _as_id(value) -> str:
    return "" if value is None else str(value).strip()


def _as_text(raw: Mapping, key: str) -> str:
    value = raw.get(key)
    if value is None or value is False:
        return ""
    if isinstance(value, (dict, list)):
        raise MalformedRecord(f"Field {key!r} should be text, got {type(value).__name__}", raw)
    return value if isinstance(value, str) else str(value)


def extract_youtube_id(video: str | None) -> str | None:
    """Return the video id of a YouTube embed URL, if any."""
    if not video or not isinstance(video, str):
        return None
    match = YOUTUBE_EMBED_PATTERN.search(video)
    return match.group(1) if match else None


def parse_record(raw: Mapping, entity_type: EntityType) -> RemoteRecord:
    """Normalize one raw API item.

    Raises:
        MalformedRecord: if ``raw`` is not a mapping, has no API id, or
            has a JSON object or array where text is expected
    """
    if not isinstance(raw, Mapping):
        raise MalformedRecord(f"Expected a JSON object, got {type(raw).__name__}", raw)

    api_id = _as_id(raw.get(entity_type.api_id_key))
    if not api_id:
        raise MalformedRecord(f"Missing required field {entity_type.api_id_key!r}", raw)

    body = _as_text(raw, entity_type.content_key)
    youtube_id = extract_youtube_id(raw.get(entity_type.video_key)) or extract_youtube_id(body)
    category_id = _as_id(raw.get(entity_type.category_key)) or None
    meta = {key: raw[key] for key in entity_type.meta_keys if raw.get(key)}

    return RemoteRecord(
        entity_type=entity_type.tag,
        api_id=api_id,
        translation_id=_as_id(raw.get(entity_type.translation_id_key)),
        title=_as_text(raw, entity_type.title_key),
        body=body,
        excerpt=_as_text(raw, entity_type.excerpt_key),
        image_url=_as_text(raw, entity_type.image_url_key) or None,
        youtube_id=youtube_id,
        category_id=category_id,
        language=_as_text(raw, entity_type.language_key) or None,
        meta=meta,
    )
