"""
Sync budget: keep only the creator's most viewed posts.

The scraper is billed per item, so the run spends its budget on the best
performers instead of whatever order the provider returned.
"""
from __future__ import annotations

from collections.abc import Sequence

from creatorsync.schemas import ExternalItem

MIN_SYNC_LIMIT = 10
MAX_SYNC_LIMIT = 200
DEFAULT_SYNC_LIMIT = 50


def clamp_sync_limit(limit: int | None, default: int = DEFAULT_SYNC_LIMIT) -> int:
    if not limit:
        limit = default
    return max(MIN_SYNC_LIMIT, min(MAX_SYNC_LIMIT, int(limit)))


def select_top_items(items: Sequence[ExternalItem], limit: int) -> list[ExternalItem]:
    """Sort by views descending and keep the first `limit`.

    Python's sort is stable, so ties keep the provider's order.
    """
    if limit <= 0:
        return []
    ranked = sorted(items, key=lambda item: item.engagement.views, reverse=True)
    return ranked[:limit]
