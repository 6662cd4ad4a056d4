"""
Reconciliation loop: decide for every scraped item whether it is a post we
already track (update metrics only) or a new one (create a synced record).

Per item:
  dedup index hit       -> metrics updated
  matcher finds record  -> metrics updated, external_id linked, body untouched
  nothing               -> cover migrated, synced record created

Every item yields an explicit outcome; one failing item never stops the batch.
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field, replace

import httpx
from sqlalchemy.exc import SQLAlchemyError

from creatorsync.errors import DuplicateExternalIdError, RecordLinkedElsewhereError
from creatorsync.models import ContentOrigin
from creatorsync.schemas import ExternalItem
from creatorsync.services.content_store import ContentStore, RecordRef
from creatorsync.services.dedup_index import DedupIndex
from creatorsync.services.media_migrator import AssetMigrator
from creatorsync.services.similarity import MatchPolicy, match

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 100
TITLE_MIN_LENGTH = 3
HOOK_MAX_LENGTH = 50
DEFAULT_HOOK_TEXT = "New synced post"
_TITLE_END_RE = re.compile(r"[\n#]")

VIA_DEDUP_INDEX = "dedup_index"
VIA_CONSTRAINT_RACE = "constraint_race"


@dataclass(frozen=True)
class Created:
    external_id: str
    record_id: int
    cover_migrated: bool = False


@dataclass(frozen=True)
class Updated:
    external_id: str
    record_id: int
    via: str
    confidence: float = 1.0


@dataclass(frozen=True)
class Skipped:
    external_id: str
    reason: str


ItemOutcome = Created | Updated | Skipped


@dataclass
class ReconcileReport:
    outcomes: list[ItemOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def created(self) -> int:
        return sum(1 for o in self.outcomes if isinstance(o, Created))

    @property
    def updated(self) -> int:
        return sum(1 for o in self.outcomes if isinstance(o, Updated))

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if isinstance(o, Skipped))


def derive_title(raw_text: str) -> str | None:
    """First caption line, cut at the first hashtag."""
    head = _TITLE_END_RE.split(raw_text.lstrip(), maxsplit=1)[0].strip()
    if len(head) > TITLE_MIN_LENGTH:
        return head[:TITLE_MAX_LENGTH]
    return None


class ContentReconciler:
    def __init__(
        self,
        store: ContentStore,
        migrator: AssetMigrator,
        *,
        policy: MatchPolicy | None = None,
        concurrency: int = 4,
    ) -> None:
        self.store = store
        self.migrator = migrator
        self.policy = policy or MatchPolicy()
        self.concurrency = max(1, concurrency)

    async def reconcile(
        self,
        profile_id: int,
        items: list[ExternalItem],
        *,
        cancel_event: asyncio.Event | None = None,
        report: ReconcileReport | None = None,
    ) -> ReconcileReport:
        """Reconcile `items` in order of input.

        A caller-supplied `report` is filled in as items finish, so it holds
        the outcomes so far even if this coroutine is cancelled; unfinished
        positions stay None until the run completes.
        """
        report = report if report is not None else ReconcileReport()
        report.outcomes = [None] * len(items)
        records = await self.store.list_profile_records(profile_id)
        index = DedupIndex.from_records(records)
        candidates: dict[int, RecordRef] = {r.id: r for r in records if r.origin != ContentOrigin.synced}
        logger.info(
            f"[reconcile] profile={profile_id}: {len(items)} items, "
            f"{len(index)} linked records, {len(candidates)} candidates"
        )

        semaphore = asyncio.Semaphore(self.concurrency)
        outcomes = report.outcomes

        async def worker(position: int, item: ExternalItem) -> None:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    outcomes[position] = Skipped(item.external_id, "cancelled")
                    return
                outcomes[position] = await self._reconcile_item(profile_id, item, index, candidates)

        await asyncio.gather(*(worker(i, item) for i, item in enumerate(items)))

        report.outcomes = [o for o in outcomes if o is not None]
        report.cancelled = cancel_event is not None and cancel_event.is_set()
        logger.info(
            f"[reconcile] profile={profile_id} done: {report.created} created, "
            f"{report.updated} updated, {report.skipped} skipped"
        )
        return report

    async def _reconcile_item(
        self,
        profile_id: int,
        item: ExternalItem,
        index: DedupIndex,
        candidates: dict[int, RecordRef],
    ) -> ItemOutcome:
        external_id = item.external_id
        async with index.lock_for(external_id):
            try:
                known_id = index.get(external_id)
                if known_id is not None:
                    await self.store.update_metrics(known_id, item.engagement)
                    return Updated(external_id, known_id, VIA_DEDUP_INDEX)

                # Each lost link race takes one candidate out of the pool
                while True:
                    result = match(item, candidates.values(), policy=self.policy)
                    if not result.matched:
                        return await self._create(profile_id, item, index)
                    try:
                        return await self._update_matched(profile_id, item, result, index, candidates)
                    except RecordLinkedElsewhereError as exc:
                        self._release_claim(item, exc, index, candidates)
            except (SQLAlchemyError, httpx.HTTPError) as exc:
                logger.error(f"[reconcile] Item {external_id} failed: {exc}")
                return Skipped(external_id, f"write failed: {exc.__class__.__name__}")
            except Exception as exc:
                logger.exception(f"[reconcile] Item {external_id} failed unexpectedly")
                return Skipped(external_id, f"unexpected error: {exc.__class__.__name__}")

    async def _update_matched(self, profile_id, item, result, index, candidates) -> ItemOutcome:
        external_id = item.external_id
        record_id = result.record_id
        candidate = candidates[record_id]
        # Claim before awaiting so no other worker text-matches this record
        if not candidate.external_id:
            candidates[record_id] = replace(candidate, external_id=external_id)
        index.add(external_id, record_id)

        try:
            await self.store.link_and_update_metrics(record_id, profile_id, external_id, item.engagement)
        except DuplicateExternalIdError:
            return await self._recover_duplicate(profile_id, item, index)

        logger.info(
            f"[reconcile] Matched {external_id} -> record {record_id} "
            f"({result.strategy.value}, {result.confidence:.2f})"
        )
        return Updated(external_id, record_id, result.strategy.value, result.confidence)

    @staticmethod
    def _release_claim(item, exc, index, candidates) -> None:
        record_id = exc.record_id
        index.discard(item.external_id, record_id)
        if exc.linked_external_id is None:
            candidates.pop(record_id, None)
        else:
            candidates[record_id] = replace(candidates[record_id], external_id=exc.linked_external_id)
            index.add(exc.linked_external_id, record_id)
        logger.warning(
            f"[reconcile] Record {record_id} was linked to {exc.linked_external_id} elsewhere, "
            f"re-matching {item.external_id}"
        )

    async def _create(self, profile_id: int, item: ExternalItem, index: DedupIndex) -> ItemOutcome:
        external_id = item.external_id
        source_cover = item.cover_url
        permanent_cover = await self.migrator.migrate(source_cover, folder=f"covers/{profile_id}")
        if source_cover and permanent_cover is None:
            logger.warning(f"[reconcile] Cover for {external_id} not migrated, keeping source URL")

        try:
            record_id = await self.store.create_synced(
                profile_id,
                item,
                title=derive_title(item.raw_text),
                hook_text=item.raw_text[:HOOK_MAX_LENGTH] or DEFAULT_HOOK_TEXT,
                cover_media_url=permanent_cover or source_cover,
            )
        except DuplicateExternalIdError:
            return await self._recover_duplicate(profile_id, item, index)

        index.add(external_id, record_id)
        return Created(external_id, record_id, cover_migrated=permanent_cover not in (None, source_cover))

    async def _recover_duplicate(self, profile_id: int, item: ExternalItem, index: DedupIndex) -> ItemOutcome:
        """Another run linked or created this external id first: update its record."""
        external_id = item.external_id
        existing_id = await self.store.find_by_external_id(profile_id, external_id)
        if existing_id is None:
            return Skipped(external_id, "duplicate external id could not be resolved")
        await self.store.update_metrics(existing_id, item.engagement)
        index.add(external_id, existing_id)
        logger.info(f"[reconcile] {external_id} already stored as record {existing_id}, metrics updated")
        return Updated(external_id, existing_id, VIA_CONSTRAINT_RACE)
