"""Channel sync: fetch a feed and mirror each item locally."""
import functools
import logging

from newsmirror.categories import CategoryMatcher, TermTranslations
from newsmirror.database import Database
from newsmirror.entity_types import EntityType, get_entity_type
from newsmirror.fetcher import ApiFetcher, FetchError
from newsmirror.models import Channel, LocalEntity, RemoteRecord, SkippedRecord, SyncResult, SyncState
from newsmirror.parser import MalformedRecord, parse_record
from newsmirror.reconciler import FieldReconciler
from newsmirror.resolver import IdentityResolver

logger = logging.getLogger(__name__)


class SyncEngine:
    """Mirror the items of remote channels into the database.

    A pass over one channel goes Idle -> Fetching -> Reconciling -> Idle,
    or Idle -> Fetching -> Failed -> Idle when the feed cannot be read.
    Items that fail to parse or reconcile are skipped; the rest of the
    batch still goes through.
    """

    def __init__(
        self,
        db: Database,
        fetcher: ApiFetcher,
        entity_type: EntityType,
        matcher: CategoryMatcher | None = None,
        reconciler: FieldReconciler | None = None,
        resolver: IdentityResolver | None = None,
    ):
        self.db = db
        self.fetcher = fetcher
        self.entity_type = entity_type
        self.matcher = matcher or CategoryMatcher(db)
        self.reconciler = reconciler or FieldReconciler()
        self.resolver = resolver or IdentityResolver(db)
        self._states: dict[str, SyncState] = {}

    def state(self, channel: Channel) -> SyncState:
        return self._states.get(channel.url, SyncState.IDLE)

    def sync_channel(self, channel: Channel) -> SyncResult:
        """Run one sync pass over a channel.

        Raises:
            FetchError: if the feed cannot be fetched. Nothing stored is
                modified in that case.
        """
        result = SyncResult(channel_url=channel.url)
        run_id = self.db.record_run_start(channel.id)

        self._states[channel.url] = SyncState.FETCHING
        logger.info(f"[SYNC] Fetching {channel.name or channel.url}")
        try:
            raw_items = self.fetcher.fetch(channel.url)
        except FetchError as e:
            self._states[channel.url] = SyncState.FAILED
            logger.error(f"[SYNC] ✗ Fetch failed for {channel.url}: {e.reason}")
            self.db.record_run_failed(run_id, str(e))
            result.error = str(e)
            self._states[channel.url] = SyncState.IDLE
            raise

        self._states[channel.url] = SyncState.RECONCILING
        for position, raw in enumerate(raw_items, start=1):
            try:
                created = self._sync_item(raw, channel)
            except MalformedRecord as e:
                logger.warning(f"[SYNC] Skipping item #{position}: {e}")
                self._skip(result, run_id, position, raw, str(e))
                continue
            except Exception as e:
                logger.exception(f"[SYNC] ✗ Item #{position} failed")
                self._skip(result, run_id, position, raw, f"{type(e).__name__}: {e}")
                continue

            if created:
                result.created += 1
            else:
                result.updated += 1

        self.db.record_run_complete(
            run_id,
            fetched=len(raw_items),
            created=result.created,
            updated=result.updated,
            skipped=len(result.skipped),
        )
        self.db.mark_channel_synced(channel.id)
        self._states[channel.url] = SyncState.IDLE

        logger.info(
            f"[SYNC] ✓ {channel.url}: {result.created} created, "
            f"{result.updated} updated, {len(result.skipped)} skipped"
        )
        return result

    def sync_all(self) -> list[SyncResult]:
        """Sync every active channel, one after the other.

        A channel whose feed fails is reported in its result and does not
        stop the others.
        """
        results = []
        for channel in self.db.list_channels(active_only=True):
            try:
                results.append(self.sync_channel(channel))
            except FetchError as e:
                results.append(SyncResult(channel_url=channel.url, error=str(e)))
        return results

    def _sync_item(self, raw, channel: Channel) -> bool:
        """Mirror one raw item; returns True if a new entity was created."""
        record = parse_record(raw, self.entity_type)
        entity, created = self.resolver.resolve_or_create(
            record, functools.partial(self._create_entity, channel=channel)
        )

        if not created:
            updated = self.reconciler.reconcile(entity, record)
            self.db.save_entity(updated)
            self.db.set_ownership(updated.id, channel.id)

        logger.debug(
            f"[SYNC] {'Created' if created else 'Updated'} "
            f"{record.api_id}/{record.translation_id or '-'}: {record.title}"
        )
        return created

    def _create_entity(self, record: RemoteRecord, channel: Channel) -> LocalEntity:
        # Categories are only chosen at creation; later syncs keep them
        link = self.matcher.match_record(record)
        blank = LocalEntity(
            id=None,
            entity_type=record.entity_type,
            api_id=record.api_id,
            translation_id=record.translation_id,
            categories=[link.term_id] if link else [],
        )
        # Reconcile before inserting so a failure leaves no half-written row
        entity = self.reconciler.reconcile(blank, record)
        return self.db.create_entity(entity, channel_id=channel.id)

    def _skip(self, result: SyncResult, run_id: int, position: int, raw, error: str) -> None:
        api_id = None
        if isinstance(raw, dict) and raw.get(self.entity_type.api_id_key) is not None:
            api_id = str(raw[self.entity_type.api_id_key])
        result.skipped.append(SkippedRecord(position=position, api_id=api_id, error=error))
        self.db.record_skip(run_id, position, api_id, error)


def build_engine(db: Database, config: dict, fetcher: ApiFetcher | None = None) -> SyncEngine:
    """Wire a SyncEngine from configuration."""
    api = config["api"]
    if fetcher is None:
        fetcher = ApiFetcher(
            timeout=api["request_timeout"],
            user_agent=api["user_agent"],
            max_pages=api["max_pages"],
        )

    translator = TermTranslations(db) if config["translations"]["enabled"] else None
    subtitles = config["subtitles"]
    subtitle_key = subtitles["meta_key"] if subtitles["enabled"] else None

    return SyncEngine(
        db,
        fetcher,
        get_entity_type(config["entity_type"]),
        matcher=CategoryMatcher(db, translator=translator),
        reconciler=FieldReconciler(subtitle_key=subtitle_key),
    )
