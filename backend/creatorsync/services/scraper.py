from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from creatorsync.integrations.apify_client import run_and_get_dataset_items
from creatorsync.schemas import AuthorMeta, AuthorStats, EngagementCounters, ExternalItem
from creatorsync.settings import get_settings

logger = logging.getLogger(__name__)

MAX_DATASET_ITEMS = 1000


def _parse_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None


def _parse_int(val: Any) -> int | None:
    try:
        return int(val)
    except (TypeError, ValueError):
        return None


def _parse_unix(val: Any) -> datetime | None:
    ts = _parse_int(val)
    if ts is None:
        return None
    try:
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _first_int(data: dict, *keys: str) -> int | None:
    for key in keys:
        value = _parse_int(data.get(key))
        if value is not None:
            return value
    return None


def _counter(item: dict, stats: dict, *keys: str) -> int:
    for key in keys:
        value = _parse_int(item.get(key))
        if value is None:
            value = _parse_int(stats.get(key))
        if value is not None:
            return value
    return 0


def _media_urls(item: dict) -> tuple[str, ...]:
    video_meta = item.get("videoMeta") or {}
    urls: list[str] = []
    covers = item.get("covers")
    if isinstance(covers, str):
        covers = [covers]
    for url in covers if isinstance(covers, list) else []:
        if isinstance(url, str) and url:
            urls.append(url)
    for url in (
        video_meta.get("coverUrl"),
        video_meta.get("originalCoverUrl"),
        video_meta.get("cover"),
    ):
        if url and url not in urls:
            urls.append(url)
    return tuple(urls)


def parse_tiktok_item(item: dict) -> ExternalItem | None:
    """Map one raw TikTok scraper record onto an ExternalItem.

    Returns None for records without a provider id.
    """
    raw_id = item.get("id") or item.get("video_id")
    if not raw_id:
        return None

    stats = item.get("stats") or {}
    author_data = item.get("authorMeta") or item.get("author") or {}
    author = None
    if author_data.get("name") or author_data.get("uniqueId"):
        author = AuthorMeta(
            name=author_data.get("name") or author_data.get("uniqueId"),
            avatar_url=author_data.get("avatar") or author_data.get("avatarThumb"),
        )

    return ExternalItem(
        external_id=str(raw_id),
        raw_text=item.get("text") or item.get("desc") or "",
        published_at=(
            _parse_unix(item.get("createTime"))
            or _parse_dt(item.get("createTimeISO"))
        ),
        author=author,
        author_stats=AuthorStats(
            followers=_first_int(author_data, "fans", "followerCount"),
            total_likes=_first_int(author_data, "heart", "heartCount"),
        ),
        engagement=EngagementCounters(
            views=_counter(item, stats, "playCount", "viewCount"),
            likes=_counter(item, stats, "diggCount", "heartCount"),
            comments=_counter(item, stats, "commentCount"),
            shares=_counter(item, stats, "shareCount"),
            saves=_counter(item, stats, "collectCount"),
        ),
        media_urls=_media_urls(item),
        permalink=item.get("webVideoUrl") or item.get("shareUrl"),
    )


def parse_tiktok_items(raw_items: list[dict]) -> list[ExternalItem]:
    items: list[ExternalItem] = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            continue
        try:
            parsed = parse_tiktok_item(raw)
        except ValidationError as exc:
            logger.warning(f"[scraper] Dropping malformed item {raw.get('id')!r}: {exc}")
            continue
        if parsed is not None:
            items.append(parsed)
    return items


async def fetch_profile_items(username: str, *, token: str | None, result_limit: int, **kwargs: Any) -> list[ExternalItem]:
    """Scrape a creator's posts and return them as ExternalItems."""
    settings = get_settings()
    payload = {
        "profiles": [username.strip().lstrip("@")],
        "resultsPerPage": result_limit,
        "shouldDownloadSlideshowImages": True,
    }
    raw_items, meta = await run_and_get_dataset_items(
        payload,
        token=token,
        actor_id=settings.apify_actor_id,
        task_id=settings.apify_task_id,
        limit=MAX_DATASET_ITEMS,
        timeout_s=settings.apify_timeout_sec,
        **kwargs,
    )
    items = parse_tiktok_items(raw_items)
    logger.info(f"[scraper] {len(raw_items)} raw items, {len(items)} usable (run={meta.get('runId')})")
    return items
