"""Find the local entity that mirrors a remote record."""
import logging
import threading
from collections.abc import Callable

from newsmirror.database import Database
from newsmirror.models import LocalEntity, RemoteRecord

logger = logging.getLogger(__name__)


class IdentityResolver:
    """Identity-key index over the entities of the database.

    Keys are (entity_type, api_id, translation_id); the same api_id in
    another translation is a different entity.
    """

    def __init__(self, db: Database):
        self._db = db
        self._index: dict[tuple[str, str, str], int] = {}
        self._loaded_types: set[str] = set()
        self._write_lock = threading.Lock()

    def _ensure_loaded(self, entity_type: str) -> None:
        if entity_type in self._loaded_types:
            return
        for (api_id, translation_id), entity_id in self._db.identity_index(entity_type).items():
            self._index[(entity_type, api_id, translation_id)] = entity_id
        self._loaded_types.add(entity_type)

    def resolve(self, record: RemoteRecord) -> LocalEntity | None:
        """Return the entity stored for the record's identity key, if any."""
        self._ensure_loaded(record.entity_type)
        entity_id = self._index.get(record.identity_key)
        if entity_id is not None:
            entity = self._db.get_entity(entity_id)
            if entity is not None:
                return entity
            # Deleted behind our back (e.g. by prune)
            del self._index[record.identity_key]

        entity = self._db.load_by_identity(*record.identity_key)
        if entity is not None:
            self._index[record.identity_key] = entity.id
        return entity

    def resolve_or_create(
        self,
        record: RemoteRecord,
        create: Callable[[RemoteRecord], LocalEntity],
    ) -> tuple[LocalEntity, bool]:
        """Resolve the record, creating its entity if there is none.

        ``create`` must persist the new entity and return it with its id
        set. Returns the entity and whether it was just created.
        """
        entity = self.resolve(record)
        if entity is not None:
            return entity, False

        with self._write_lock:
            # Another writer may have won the race
            entity = self.resolve(record)
            if entity is not None:
                return entity, False
            entity = create(record)
            self._index[record.identity_key] = entity.id
            logger.debug(f"Indexed new entity {entity.id} for {record.identity_key}")
            return entity, True

