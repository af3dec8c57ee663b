# app/api/routers/workflow_settings.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Path, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_session, require_capability
from app.api.routers.workflow_schemas import (
    ReorderIn,
    StageCreateIn,
    StageOut,
    StageUpdateIn,
    SubStageOut,
)
from app.services.capabilities import Actor, Capability
from app.services.workflow_admin_service import WorkflowAdminService

router = APIRouter(prefix="/settings/workflow", tags=["workflow-settings"])

_manage = require_capability(Capability.MANAGE_WORKFLOW)


async def _commit(session: AsyncSession) -> None:
    try:
        await session.commit()
    except Exception:
        await session.rollback()
        raise


# ---------------- 工序 ----------------


@router.post("/stages", response_model=StageOut, status_code=201)
async def create_stage(
    payload: StageCreateIn,
    actor: Actor = Depends(_manage),
    session: AsyncSession = Depends(get_session),
) -> StageOut:
    stage = await WorkflowAdminService(session).create_stage(
        organization_id=actor.organization_id,
        name=payload.name,
        location=payload.location,
    )
    await _commit(session)
    return StageOut.model_validate(stage)


@router.patch("/stages/{stage_id}", response_model=StageOut)
async def update_stage(
    payload: StageUpdateIn,
    stage_id: str = Path(...),
    actor: Actor = Depends(_manage),
    session: AsyncSession = Depends(get_session),
) -> StageOut:
    stage = await WorkflowAdminService(session).update_stage(
        organization_id=actor.organization_id,
        stage_id=stage_id,
        name=payload.name,
        location=payload.location,
    )
    await _commit(session)
    return StageOut.model_validate(stage)


@router.delete("/stages/{stage_id}", status_code=204)
async def delete_stage(
    stage_id: str = Path(...),
    actor: Actor = Depends(_manage),
    session: AsyncSession = Depends(get_session),
) -> Response:
    """
    工序上仍有分配（含其子工序上的分配）→ 409 stage_in_use。
    """
    await WorkflowAdminService(session).delete_stage(organization_id=actor.organization_id, stage_id=stage_id)
    await _commit(session)
    return Response(status_code=204)


@router.post("/stages/{stage_id}/reorder", response_model=List[StageOut])
async def reorder_stage(
    payload: ReorderIn,
    stage_id: str = Path(...),
    actor: Actor = Depends(_manage),
    session: AsyncSession = Depends(get_session),
) -> List[StageOut]:
    stages = await WorkflowAdminService(session).reorder_stage(
        organization_id=actor.organization_id,
        stage_id=stage_id,
        direction=payload.direction,
    )
    await _commit(session)
    return [StageOut.model_validate(s) for s in stages]


# ---------------- 子工序 ----------------


@router.post("/stages/{stage_id}/sub-stages", response_model=SubStageOut, status_code=201)
async def create_sub_stage(
    payload: StageCreateIn,
    stage_id: str = Path(...),
    actor: Actor = Depends(_manage),
    session: AsyncSession = Depends(get_session),
) -> SubStageOut:
    sub = await WorkflowAdminService(session).create_sub_stage(
        organization_id=actor.organization_id,
        stage_id=stage_id,
        name=payload.name,
        location=payload.location,
    )
    await _commit(session)
    return SubStageOut.model_validate(sub)


@router.patch("/sub-stages/{sub_stage_id}", response_model=SubStageOut)
async def update_sub_stage(
    payload: StageUpdateIn,
    sub_stage_id: str = Path(...),
    actor: Actor = Depends(_manage),
    session: AsyncSession = Depends(get_session),
) -> SubStageOut:
    sub = await WorkflowAdminService(session).update_sub_stage(
        organization_id=actor.organization_id,
        sub_stage_id=sub_stage_id,
        name=payload.name,
        location=payload.location,
    )
    await _commit(session)
    return SubStageOut.model_validate(sub)


@router.delete("/sub-stages/{sub_stage_id}", status_code=204)
async def delete_sub_stage(
    sub_stage_id: str = Path(...),
    actor: Actor = Depends(_manage),
    session: AsyncSession = Depends(get_session),
) -> Response:
    await WorkflowAdminService(session).delete_sub_stage(
        organization_id=actor.organization_id, sub_stage_id=sub_stage_id
    )
    await _commit(session)
    return Response(status_code=204)


@router.post("/sub-stages/{sub_stage_id}/reorder", response_model=List[SubStageOut])
async def reorder_sub_stage(
    payload: ReorderIn,
    sub_stage_id: str = Path(...),
    actor: Actor = Depends(_manage),
    session: AsyncSession = Depends(get_session),
) -> List[SubStageOut]:
    subs = await WorkflowAdminService(session).reorder_sub_stage(
        organization_id=actor.organization_id,
        sub_stage_id=sub_stage_id,
        direction=payload.direction,
    )
    await _commit(session)
    return [SubStageOut.model_validate(s) for s in subs]
