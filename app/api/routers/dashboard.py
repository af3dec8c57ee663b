# app/api/routers/dashboard.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_app_settings, get_session, require_capability
from app.api.routers.dashboard_schemas import BottleneckItemOut, DailyMovementOut, StageStatsOut
from app.core.config import AppSettings
from app.services.capabilities import Actor, Capability
from app.services.dashboard_stats_service import (
    BOTTLENECK_LIMIT_MAX,
    bottleneck_items,
    movement_stats,
    stage_stats,
)
from app.services.workflow_repo import load_topology

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/movement-stats", response_model=List[DailyMovementOut])
async def get_movement_stats(
    days: int = Query(90, ge=1, le=366, description="统计天数（默认 90）"),
    actor: Actor = Depends(require_capability(Capability.VIEW)),
    session: AsyncSession = Depends(get_session),
) -> List[DailyMovementOut]:
    rows = await movement_stats(session, organization_id=actor.organization_id, days=days)
    return [DailyMovementOut.model_validate(r) for r in rows]


@router.get("/bottleneck-items", response_model=List[BottleneckItemOut])
async def get_bottleneck_items(
    limit: int = Query(10, ge=1, description=f"返回条数（上限 {BOTTLENECK_LIMIT_MAX}）"),
    actor: Actor = Depends(require_capability(Capability.VIEW)),
    session: AsyncSession = Depends(get_session),
    settings: AppSettings = Depends(get_app_settings),
) -> List[BottleneckItemOut]:
    topology = await load_topology(session, organization_id=actor.organization_id)
    rows = await bottleneck_items(
        session,
        organization_id=actor.organization_id,
        topology=topology,
        completed_stage_name=settings.COMPLETED_STAGE_NAME,
        limit=limit,
    )
    return [BottleneckItemOut.model_validate(r) for r in rows]


@router.get("/stats", response_model=StageStatsOut)
async def get_stage_stats(
    actor: Actor = Depends(require_capability(Capability.VIEW)),
    session: AsyncSession = Depends(get_session),
    settings: AppSettings = Depends(get_app_settings),
) -> StageStatsOut:
    topology = await load_topology(session, organization_id=actor.organization_id)
    stats = await stage_stats(
        session,
        organization_id=actor.organization_id,
        topology=topology,
        completed_stage_name=settings.COMPLETED_STAGE_NAME,
    )
    return StageStatsOut.model_validate(stats)
