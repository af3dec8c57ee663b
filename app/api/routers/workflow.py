# app/api/routers/workflow.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_app_settings, get_session, require_capability
from app.api.routers.workflow_schemas import (
    PositionCheckOut,
    StageItemOut,
    StageOut,
    SubsequentPositionOut,
    WorkflowOut,
)
from app.core.config import AppSettings
from app.services.capabilities import Actor, Capability
from app.services.item_service import ItemService
from app.services.workflow_admin_service import WorkflowAdminService
from app.services.workflow_repo import load_topology
from app.services.workflow_topology import Position

router = APIRouter(prefix="/workflow", tags=["workflow"])


@router.get("", response_model=WorkflowOut)
async def get_workflow(
    actor: Actor = Depends(require_capability(Capability.VIEW)),
    session: AsyncSession = Depends(get_session),
) -> WorkflowOut:
    stages = await WorkflowAdminService(session).get_workflow(organization_id=actor.organization_id)
    return WorkflowOut(stages=[StageOut.model_validate(s) for s in stages])


@router.get("/stages/{stage_id}/subsequent", response_model=List[SubsequentPositionOut])
async def get_subsequent_positions(
    stage_id: str = Path(..., description="当前工序"),
    sub_stage_id: Optional[str] = Query(None, description="当前子工序"),
    actor: Actor = Depends(require_capability(Capability.VIEW)),
    session: AsyncSession = Depends(get_session),
) -> List[SubsequentPositionOut]:
    """
    当前位置之后的全部位置（前移可选目标）。
    """
    topology = await load_topology(session, organization_id=actor.organization_id)
    if sub_stage_id:
        current = topology.resolve_target(stage_id, sub_stage_id)
    else:
        current = Position(topology.stage(stage_id).id, None)
    return [SubsequentPositionOut.model_validate(p) for p in topology.subsequent_positions(current)]


@router.get("/stages/{stage_id}/previous", response_model=List[SubsequentPositionOut])
async def get_previous_positions(
    stage_id: str = Path(..., description="当前工序"),
    sub_stage_id: Optional[str] = Query(None, description="当前子工序"),
    actor: Actor = Depends(require_capability(Capability.VIEW)),
    session: AsyncSession = Depends(get_session),
) -> List[SubsequentPositionOut]:
    """
    当前位置之前的全部位置（返工可选目标）。
    """
    topology = await load_topology(session, organization_id=actor.organization_id)
    if sub_stage_id:
        current = topology.resolve_target(stage_id, sub_stage_id)
    else:
        current = Position(topology.stage(stage_id).id, None)
    return [SubsequentPositionOut.model_validate(p) for p in topology.previous_positions(current)]


@router.get("/stages/{stage_id}/items", response_model=List[StageItemOut])
async def get_items_in_stage(
    stage_id: str = Path(..., description="工序"),
    sub_stage_id: Optional[str] = Query(None, description="子工序；为空时返回整个工序"),
    actor: Actor = Depends(require_capability(Capability.VIEW)),
    session: AsyncSession = Depends(get_session),
) -> List[StageItemOut]:
    topology = await load_topology(session, organization_id=actor.organization_id)
    if sub_stage_id:
        position = topology.resolve_target(stage_id, sub_stage_id)
    else:
        position = Position(topology.stage(stage_id).id, None)
    rows = await ItemService(session).items_in_stage(organization_id=actor.organization_id, position=position)
    return [StageItemOut.model_validate(r) for r in rows]


@router.get("/positions/check", response_model=PositionCheckOut)
async def check_position(
    stage_id: str = Query(...),
    sub_stage_id: Optional[str] = Query(None),
    actor: Actor = Depends(require_capability(Capability.VIEW)),
    session: AsyncSession = Depends(get_session),
    settings: AppSettings = Depends(get_app_settings),
) -> PositionCheckOut:
    """
    某位置的相邻位置，以及是否为 Completed 之前的最后一个位置。
    """
    topology = await load_topology(session, organization_id=actor.organization_id)
    position = topology.resolve_target(stage_id, sub_stage_id)
    nxt = topology.next_position(position)
    prev = topology.previous_position(position)
    return PositionCheckOut(
        stage_id=position.stage_id,
        sub_stage_id=position.sub_stage_id,
        is_last_workflow_stage=topology.is_last_workflow_stage(position, settings.COMPLETED_STAGE_NAME),
        next_stage_id=nxt.stage_id if nxt else None,
        next_sub_stage_id=nxt.sub_stage_id if nxt else None,
        previous_stage_id=prev.stage_id if prev else None,
        previous_sub_stage_id=prev.sub_stage_id if prev else None,
    )
