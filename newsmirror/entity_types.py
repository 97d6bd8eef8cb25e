"""Field mappings for each kind of mirrored content."""
from dataclasses import dataclass


@dataclass(frozen=True)
class EntityType:
    """How the fields of one API translate onto a local entity."""

    tag: str
    post_type: str
    api_id_key: str
    image_url_key: str
    translation_id_key: str = "translation_id"
    title_key: str = "title"
    content_key: str = "text"
    excerpt_key: str = "subtitle"
    category_key: str = "news_category_id"
    language_key: str = "language"
    video_key: str = "video"
    # Extra API fields copied verbatim into entity meta
    meta_keys: tuple[str, ...] = ()

    @property
    def managed_meta_keys(self) -> frozenset[str]:
        """Meta keys rewritten on every sync."""
        return frozenset(self.meta_keys) | {"youtube_id"}


ACTU = EntityType(
    tag="actu",
    post_type="epfl-actu",
    api_id_key="news_id",
    image_url_key="news_thumbnail_absolute_url",
    meta_keys=("video", "news_has_video", "visual_and_thumbnail_description"),
)

ENTITY_TYPES = {ACTU.tag: ACTU}


def get_entity_type(tag: str) -> EntityType:
    """Look up a registered entity type by tag."""
    try:
        return ENTITY_TYPES[tag]
    except KeyError:
        raise ValueError(f"Unknown entity type: {tag!r}") from None
