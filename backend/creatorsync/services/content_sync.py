"""
Full sync run for one creator profile:

  1. config checks (profile, Apify token, username)     -> SyncConfigError
  2. scrape the profile's posts                          -> ProviderError = success false
  3. keep the top-N posts by views
  4. refresh profile stats and avatar
  5. reconcile posts against stored records
  6. record daily snapshots (followers, total_views, total_likes)

last_sync_at only moves on a run that finished within SYNC_TIMEOUT_SEC, so a
failed or timed-out profile is retried by the next auto-sync tick.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from datetime import date, datetime, timedelta, timezone
from typing import Awaitable, Callable

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from creatorsync.errors import ProviderError, SyncConfigError
from creatorsync.models import CreatorProfile
from creatorsync.schemas import AutoSyncResult, ExternalItem, SyncResult
from creatorsync.services.budget import clamp_sync_limit, select_top_items
from creatorsync.services.content_store import ContentStore
from creatorsync.services.media_migrator import AssetMigrator
from creatorsync.services.media_store import MediaStore, build_media_store
from creatorsync.services.reconciler import ContentReconciler, ReconcileReport, Skipped
from creatorsync.services.scraper import fetch_profile_items
from creatorsync.services.similarity import MatchPolicy
from creatorsync.services.snapshots import record_snapshots
from creatorsync.settings import Settings, get_settings

logger = logging.getLogger(__name__)

FetchItems = Callable[..., Awaitable[list[ExternalItem]]]

SYNC_STATUS_OK = "ok"
SYNC_STATUS_PARTIAL = "partial"
SYNC_STATUS_ERROR = "error"

# Extra time granted to in-flight items after the soft deadline stops new ones
HARD_TIMEOUT_GRACE_S = 30.0


def _profile_handle(profile: CreatorProfile) -> str | None:
    handle = (profile.username or profile.display_name or "").strip().lstrip("@")
    return handle or None


async def _load_profile(session: AsyncSession, profile_id: int) -> CreatorProfile:
    profile = await session.get(CreatorProfile, profile_id)
    if profile is None:
        raise SyncConfigError(f"Profile {profile_id} not found", status_code=404)
    return profile


async def _mark_failed(session_factory: async_sessionmaker[AsyncSession], profile_id: int, message: str) -> None:
    async with session_factory() as session:
        profile = await session.get(CreatorProfile, profile_id)
        if profile is None:
            return
        profile.sync_status = SYNC_STATUS_ERROR
        profile.sync_error = message
        await session.commit()


async def _relay_cancel(source: asyncio.Event, target: asyncio.Event) -> None:
    await source.wait()
    target.set()


async def _reconcile_with_deadline(
    reconciler: ContentReconciler,
    profile_id: int,
    items: list[ExternalItem],
    *,
    timeout_s: float,
    cancel_event: asyncio.Event | None,
):
    """Stop starting new items at the deadline; hard-stop shortly after.

    Returns (report, timed_out). After a hard stop the report keeps the
    outcomes of finished items and marks the rest as skipped.
    """
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    deadline = loop.call_later(timeout_s, stop.set)
    relay = asyncio.create_task(_relay_cancel(cancel_event, stop)) if cancel_event is not None else None
    progress = ReconcileReport()
    try:
        report = await asyncio.wait_for(
            reconciler.reconcile(profile_id, items, cancel_event=stop, report=progress),
            timeout=timeout_s + HARD_TIMEOUT_GRACE_S,
        )
    except asyncio.TimeoutError:
        logger.error(
            f"[content_sync] Reconcile for profile={profile_id} hard-stopped "
            f"after {timeout_s + HARD_TIMEOUT_GRACE_S}s"
        )
        outcomes = progress.outcomes or [None] * len(items)
        progress.outcomes = [
            outcome or Skipped(item.external_id, "timed out") for outcome, item in zip(outcomes, items)
        ]
        progress.cancelled = True
        return progress, True
    finally:
        deadline.cancel()
        if relay is not None:
            relay.cancel()
            with suppress(asyncio.CancelledError):
                await relay
    timed_out = report.cancelled and not (cancel_event is not None and cancel_event.is_set())
    return report, timed_out


async def _refresh_profile(
    session_factory: async_sessionmaker[AsyncSession],
    profile_id: int,
    items: list[ExternalItem],
    migrator: AssetMigrator,
) -> int | None:
    """Update display name, stats and avatar from the first item with author data."""
    source = next((item for item in items if item.author is not None), None)
    if source is None:
        raise ProviderError("Scraped posts carry no author metadata")

    avatar = await migrator.migrate(source.author.avatar_url, folder=f"avatars/{profile_id}")
    async with session_factory() as session:
        profile = await _load_profile(session, profile_id)
        profile.display_name = source.author.name or profile.display_name
        if source.author_stats.followers is not None:
            profile.followers_count = source.author_stats.followers
        if source.author_stats.total_likes is not None:
            profile.likes_count = source.author_stats.total_likes
        if avatar:
            profile.avatar_url = avatar
        elif source.author.avatar_url:
            logger.warning(f"[content_sync] Avatar for profile={profile_id} not migrated, keeping stored avatar")
        await session.commit()
        return profile.followers_count


async def sync_profile(
    session_factory: async_sessionmaker[AsyncSession],
    profile_id: int,
    *,
    cancel_event: asyncio.Event | None = None,
    fetch_items: FetchItems = fetch_profile_items,
    media_store: MediaStore | None = None,
    media_client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
    today: date | None = None,
) -> SyncResult:
    """Scrape a profile's posts and reconcile them with stored content.

    Raises SyncConfigError before any external call when the profile cannot be
    synced at all. Provider failures come back as ``success=False``.
    """
    settings = settings or get_settings()

    async with session_factory() as session:
        profile = await _load_profile(session, profile_id)
        token = profile.apify_token or settings.apify_token
        handle = _profile_handle(profile)
        limit = clamp_sync_limit(profile.sync_post_limit, default=settings.sync_default_post_limit)
    if not token:
        raise SyncConfigError("Apify token is not configured")
    if not handle:
        raise SyncConfigError(f"Profile {profile_id} has no username")
    store = media_store or build_media_store(settings)

    logger.info(f"[content_sync] Sync started for profile={profile_id} (@{handle}, limit={limit})")
    try:
        items = await fetch_items(handle, token=token, result_limit=limit)
        if not items:
            raise ProviderError("Scraping provider returned no posts", username=handle)
        top_items = select_top_items(items, limit)

        async with AssetMigrator(
            store,
            client=media_client,
            timeout_s=settings.media_fetch_timeout_sec,
            retries=settings.media_fetch_retries,
        ) as migrator:
            followers = await _refresh_profile(session_factory, profile_id, items, migrator)
            content_store = ContentStore(session_factory)
            reconciler = ContentReconciler(
                content_store,
                migrator,
                policy=MatchPolicy.from_settings(settings),
                concurrency=settings.sync_concurrency,
            )
            report, timed_out = await _reconcile_with_deadline(
                reconciler,
                profile_id,
                top_items,
                timeout_s=settings.sync_timeout_sec,
                cancel_event=cancel_event,
            )
    except ProviderError as exc:
        logger.error(f"[content_sync] Provider failure for profile={profile_id}: {exc.message}")
        await _mark_failed(session_factory, profile_id, exc.message)
        return SyncResult(success=False, error=exc.message)
    finally:
        if media_store is None:
            await store.aclose()

    totals = await content_store.metric_totals(profile_id)
    async with session_factory() as session:
        await record_snapshots(
            session,
            profile_id,
            {"followers": followers, **totals},
            today or datetime.now(timezone.utc).date(),
        )
        profile = await _load_profile(session, profile_id)
        if timed_out:
            profile.sync_status = SYNC_STATUS_PARTIAL
            profile.sync_error = f"Sync stopped after {settings.sync_timeout_sec}s"
        else:
            profile.sync_status = SYNC_STATUS_PARTIAL if report.cancelled else SYNC_STATUS_OK
            profile.sync_error = None
            profile.last_sync_at = datetime.now(timezone.utc)
        await session.commit()

    logger.info(
        f"[content_sync] Sync finished for profile={profile_id}: "
        f"{report.created} new, {report.updated} updated, {report.skipped} skipped"
        + (" (cancelled)" if report.cancelled else "")
    )
    return SyncResult(
        success=not timed_out,
        new_records=report.created,
        updated_records=report.updated,
        skipped_records=report.skipped,
        cancelled=report.cancelled and not timed_out,
        error=profile.sync_error,
    )


def sync_due(last_sync_at: datetime | None, interval: timedelta, now: datetime | None = None) -> bool:
    if last_sync_at is None:
        return True
    if last_sync_at.tzinfo is None:
        last_sync_at = last_sync_at.replace(tzinfo=timezone.utc)
    return (now or datetime.now(timezone.utc)) - last_sync_at >= interval


async def check_and_auto_sync(
    session_factory: async_sessionmaker[AsyncSession],
    profile_id: int,
    *,
    settings: Settings | None = None,
    now: datetime | None = None,
    **sync_kwargs,
) -> AutoSyncResult:
    """Sync the profile only if its last successful sync is old enough."""
    settings = settings or get_settings()
    now = now or datetime.now(timezone.utc)

    async with session_factory() as session:
        profile = await session.get(CreatorProfile, profile_id)
        if profile is None:
            return AutoSyncResult(synced=False, skipped=True, reason="no-profile")
        if not (profile.apify_token or settings.apify_token):
            return AutoSyncResult(synced=False, skipped=True, reason="no-apify-key")
        if not _profile_handle(profile):
            return AutoSyncResult(synced=False, skipped=True, reason="no-username")
        last_sync_at = profile.last_sync_at

    if not sync_due(last_sync_at, timedelta(hours=settings.auto_sync_interval_hours), now):
        if last_sync_at.tzinfo is None:
            last_sync_at = last_sync_at.replace(tzinfo=timezone.utc)
        minutes_ago = round((now - last_sync_at).total_seconds() / 60)
        return AutoSyncResult(synced=False, skipped=True, reason=f"synced-{minutes_ago}min-ago")

    logger.info(f"[content_sync] Auto-sync triggered for profile={profile_id} (last sync: {last_sync_at or 'never'})")
    try:
        result = await sync_profile(session_factory, profile_id, settings=settings, **sync_kwargs)
    except SyncConfigError as exc:
        return AutoSyncResult(synced=False, skipped=True, reason=exc.message)

    if not result.success:
        return AutoSyncResult(synced=False, skipped=True, reason=result.error)
    return AutoSyncResult(
        synced=True,
        skipped=False,
        new_records=result.new_records,
        updated_records=result.updated_records,
    )
