# app/services/workflow_repo.py
from __future__ import annotations

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.workflow_stage import WorkflowStage
from app.models.workflow_sub_stage import WorkflowSubStage
from app.services.workflow_errors import NotFoundError
from app.services.workflow_topology import WorkflowTopology


async def list_stages(
    session: AsyncSession,
    *,
    organization_id: str,
    for_update: bool = False,
) -> List[WorkflowStage]:
    """组织下全部工序（含子工序），按 (sequence_order, id) 升序。"""
    stmt = (
        select(WorkflowStage)
        .options(selectinload(WorkflowStage.sub_stages))
        .where(WorkflowStage.organization_id == organization_id)
        .order_by(WorkflowStage.sequence_order.asc(), WorkflowStage.id.asc())
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    rows = list((await session.execute(stmt)).scalars().all())
    for r in rows:
        r.sub_stages.sort(key=lambda ss: (ss.sequence_order, ss.id))
    return rows


async def load_topology(session: AsyncSession, *, organization_id: str) -> WorkflowTopology:
    return WorkflowTopology.from_models(await list_stages(session, organization_id=organization_id))


async def get_stage(
    session: AsyncSession,
    *,
    organization_id: str,
    stage_id: str,
    for_update: bool = False,
) -> WorkflowStage:
    stmt = (
        select(WorkflowStage)
        .options(selectinload(WorkflowStage.sub_stages))
        .where(WorkflowStage.id == stage_id, WorkflowStage.organization_id == organization_id)
    )
    if for_update:
        stmt = stmt.with_for_update()
    stage: Optional[WorkflowStage] = (await session.execute(stmt)).scalars().first()
    if stage is None:
        raise NotFoundError(f"Stage {stage_id} not found or access denied.")
    return stage


async def get_sub_stage(
    session: AsyncSession,
    *,
    organization_id: str,
    sub_stage_id: str,
    for_update: bool = False,
) -> WorkflowSubStage:
    stmt = select(WorkflowSubStage).where(
        WorkflowSubStage.id == sub_stage_id,
        WorkflowSubStage.organization_id == organization_id,
    )
    if for_update:
        stmt = stmt.with_for_update()
    sub: Optional[WorkflowSubStage] = (await session.execute(stmt)).scalars().first()
    if sub is None:
        raise NotFoundError(f"Sub-stage {sub_stage_id} not found or access denied.")
    return sub
