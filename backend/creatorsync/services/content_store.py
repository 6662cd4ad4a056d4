from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from creatorsync.errors import DuplicateExternalIdError, RecordLinkedElsewhereError
from creatorsync.models import METRIC_FIELDS, ContentOrigin, ContentRecord
from creatorsync.schemas import EngagementCounters, ExternalItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordRef:
    """The slice of a content record the reconciler needs."""

    id: int
    external_id: str | None
    origin: ContentOrigin
    body: str | None
    published_at: datetime | None


def _metric_values(counters: EngagementCounters) -> dict:
    values = {name: getattr(counters, name) for name in METRIC_FIELDS}
    values["metrics_updated_at"] = datetime.now(timezone.utc)
    return values


class ContentStore:
    """Content record persistence. Every call runs in its own short session,
    so calls from concurrent workers never share a session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_profile_records(self, profile_id: int) -> list[RecordRef]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(
                    ContentRecord.id,
                    ContentRecord.external_id,
                    ContentRecord.origin,
                    ContentRecord.body,
                    ContentRecord.published_at,
                ).where(ContentRecord.profile_id == profile_id)
            )
            return [
                RecordRef(
                    id=row.id,
                    external_id=row.external_id,
                    origin=ContentOrigin(row.origin),
                    body=row.body,
                    published_at=row.published_at,
                )
                for row in result.all()
            ]

    async def find_by_external_id(self, profile_id: int, external_id: str) -> int | None:
        async with self._session_factory() as session:
            return await session.scalar(
                select(ContentRecord.id).where(
                    ContentRecord.profile_id == profile_id,
                    ContentRecord.external_id == external_id,
                )
            )

    async def create_synced(
        self,
        profile_id: int,
        item: ExternalItem,
        *,
        title: str | None,
        hook_text: str,
        cover_media_url: str | None,
    ) -> int:
        record = ContentRecord(
            profile_id=profile_id,
            external_id=item.external_id,
            origin=ContentOrigin.synced.value,
            status="published",
            title=title,
            hook_text=hook_text,
            body=item.raw_text,
            published_at=item.published_at or datetime.now(timezone.utc),
            cover_media_url=cover_media_url,
            video_url=item.permalink,
            **_metric_values(item.engagement),
        )
        async with self._session_factory() as session:
            session.add(record)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateExternalIdError(profile_id, item.external_id) from exc
            return record.id

    async def update_metrics(self, record_id: int, counters: EngagementCounters) -> None:
        """Overwrite the metric columns; nothing else on the record is touched."""
        async with self._session_factory() as session:
            await session.execute(
                update(ContentRecord).where(ContentRecord.id == record_id).values(**_metric_values(counters))
            )
            await session.commit()

    async def link_and_update_metrics(
        self,
        record_id: int,
        profile_id: int,
        external_id: str,
        counters: EngagementCounters,
    ) -> None:
        """Set external_id if the record has none yet, then overwrite metrics.

        Raises RecordLinkedElsewhereError without writing anything when the
        record is gone or already carries a different external_id.
        """
        async with self._session_factory() as session:
            try:
                linked = await session.execute(
                    update(ContentRecord)
                    .where(ContentRecord.id == record_id, ContentRecord.external_id.is_(None))
                    .values(external_id=external_id)
                )
                if linked.rowcount == 0:
                    current = await session.scalar(
                        select(ContentRecord.external_id).where(ContentRecord.id == record_id)
                    )
                    if current != external_id:
                        await session.rollback()
                        raise RecordLinkedElsewhereError(record_id, current)
                await session.execute(
                    update(ContentRecord).where(ContentRecord.id == record_id).values(**_metric_values(counters))
                )
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateExternalIdError(profile_id, external_id) from exc

    async def metric_totals(self, profile_id: int) -> dict[str, int]:
        async with self._session_factory() as session:
            row = (
                await session.execute(
                    select(
                        func.coalesce(func.sum(ContentRecord.views), 0).label("views"),
                        func.coalesce(func.sum(ContentRecord.likes), 0).label("likes"),
                    ).where(ContentRecord.profile_id == profile_id)
                )
            ).one()
            return {"total_views": int(row.views), "total_likes": int(row.likes)}
