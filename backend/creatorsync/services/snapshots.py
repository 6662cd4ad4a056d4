"""
Daily metric snapshots for trend charts.

One row per (profile, metric, day); re-running a sync on the same day
overwrites the value instead of adding a row.
"""
from __future__ import annotations

import logging
from datetime import date, timedelta

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from creatorsync.models import MetricSnapshot

logger = logging.getLogger(__name__)

TRACKED_METRICS = ("followers", "total_views", "total_likes")

_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


async def record_snapshot(session: AsyncSession, profile_id: int, metric: str, value: int, day: date) -> None:
    """Upsert a snapshot value. The caller commits."""
    dialect = session.get_bind().dialect.name
    insert = _INSERTS.get(dialect)
    if insert is None:
        raise RuntimeError(f"Snapshot upsert is not supported on {dialect}")

    stmt = insert(MetricSnapshot).values(profile_id=profile_id, metric=metric, day=day, value=value)
    stmt = stmt.on_conflict_do_update(
        index_elements=["profile_id", "metric", "day"],
        set_={"value": stmt.excluded.value},
    )
    await session.execute(stmt)


async def record_snapshots(session: AsyncSession, profile_id: int, values: dict[str, int | None], day: date) -> int:
    recorded = 0
    for metric in TRACKED_METRICS:
        value = values.get(metric)
        if value is None:
            continue
        await record_snapshot(session, profile_id, metric, value, day)
        recorded += 1
    logger.info(f"[snapshots] profile={profile_id}: {recorded} metrics recorded for {day.isoformat()}")
    return recorded


async def get_metric_history(
    session: AsyncSession,
    profile_id: int,
    metric: str,
    *,
    days: int = 30,
    today: date | None = None,
) -> list[MetricSnapshot]:
    since = (today or date.today()) - timedelta(days=days - 1)
    result = await session.execute(
        select(MetricSnapshot)
        .where(
            MetricSnapshot.profile_id == profile_id,
            MetricSnapshot.metric == metric,
            MetricSnapshot.day >= since,
        )
        .order_by(MetricSnapshot.day)
    )
    return list(result.scalars().all())
