from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from creatorsync.db import get_session, get_session_factory
from creatorsync.models import CreatorProfile
from creatorsync.schemas import AutoSyncResult, MetricHistoryRead, MetricPoint, SyncResult
from creatorsync.services.content_sync import check_and_auto_sync, sync_profile
from creatorsync.services.snapshots import get_metric_history

router = APIRouter(prefix="/api", tags=["sync"])

SessionDep = Depends(get_session)
SessionFactoryDep = Depends(get_session_factory)


@router.post("/profiles/{profile_id}/sync", response_model=SyncResult)
async def run_sync(profile_id: int, session_factory: async_sessionmaker[AsyncSession] = SessionFactoryDep):
    return await sync_profile(session_factory, profile_id)


@router.post("/profiles/{profile_id}/auto-sync", response_model=AutoSyncResult, response_model_exclude_none=True)
async def run_auto_sync(profile_id: int, session_factory: async_sessionmaker[AsyncSession] = SessionFactoryDep):
    return await check_and_auto_sync(session_factory, profile_id)


@router.get("/profiles/{profile_id}/metrics/{metric}", response_model=MetricHistoryRead)
async def metric_history(
    profile_id: int,
    metric: str,
    days: int = Query(default=30, ge=1, le=365),
    session: AsyncSession = SessionDep,
):
    profile = await session.get(CreatorProfile, profile_id)
    if not profile:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")
    snapshots = await get_metric_history(session, profile_id, metric, days=days)
    return MetricHistoryRead(
        profile_id=profile_id,
        metric=metric,
        points=[MetricPoint.model_validate(s) for s in snapshots],
    )
