# app/services/workflow_admin_service.py
"""
工序配置（Owner）：

- 工序/子工序 新建、改名、删除、上移/下移
- 上移/下移 = 与相邻行交换 sequence_order；交换在同一事务内、先锁住组织全部工序行
- 被分配行引用的工序/子工序禁止删除（StageInUse）

本服务不提交事务，由调用方 commit / rollback。
"""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.item_stage_allocation import ItemStageAllocation
from app.models.workflow_stage import WorkflowStage
from app.models.workflow_sub_stage import WorkflowSubStage
from app.services.workflow_errors import InvalidRequest, StageInUse
from app.services.workflow_repo import get_stage, get_sub_stage, list_stages

log = logging.getLogger("stageflow.workflow")

DIRECTION_UP = "up"
DIRECTION_DOWN = "down"


def _clean_name(name: Optional[str], *, what: str) -> str:
    text = (name or "").strip()
    if not text:
        raise InvalidRequest(f"{what} name is required.")
    return text


def _clean_location(location: Optional[str]) -> Optional[str]:
    if location is None:
        return None
    text = location.strip()
    return text or None


def _swap_neighbor(rows: Sequence, row_id: str, direction: str, *, what: str):
    """返回 (当前行, 相邻行)；到头了抛 InvalidRequest。"""
    if direction not in (DIRECTION_UP, DIRECTION_DOWN):
        raise InvalidRequest(f"Invalid direction {direction!r}; expected 'up' or 'down'.")
    idx = next((i for i, r in enumerate(rows) if r.id == row_id), None)
    if idx is None:
        raise InvalidRequest(f"{what} {row_id} is not part of this workflow.")
    if direction == DIRECTION_UP and idx == 0:
        raise InvalidRequest(f"Cannot move {what.lower()} {rows[idx].name!r} up; it is already first.")
    if direction == DIRECTION_DOWN and idx == len(rows) - 1:
        raise InvalidRequest(f"Cannot move {what.lower()} {rows[idx].name!r} down; it is already last.")
    other = rows[idx - 1] if direction == DIRECTION_UP else rows[idx + 1]
    return rows[idx], other


def _swap_orders(rows: Sequence, a, b) -> None:
    # 同序号时先整体重排为稠密序号，否则交换无效果
    if a.sequence_order == b.sequence_order:
        for i, r in enumerate(rows):
            r.sequence_order = i
    a.sequence_order, b.sequence_order = b.sequence_order, a.sequence_order


class WorkflowAdminService:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ------------------------------------------------------------------
    # 读
    # ------------------------------------------------------------------

    async def get_workflow(self, *, organization_id: str) -> List[WorkflowStage]:
        return await list_stages(self.session, organization_id=organization_id)

    async def _count_allocations(
        self,
        *,
        stage_id: Optional[str] = None,
        sub_stage_id: Optional[str] = None,
        stage_level_only: bool = False,
    ) -> int:
        stmt = select(func.count()).select_from(ItemStageAllocation)
        if stage_id is not None:
            stmt = stmt.where(ItemStageAllocation.stage_id == stage_id)
        if sub_stage_id is not None:
            stmt = stmt.where(ItemStageAllocation.sub_stage_id == sub_stage_id)
        if stage_level_only:
            stmt = stmt.where(ItemStageAllocation.sub_stage_id.is_(None))
        return int((await self.session.execute(stmt)).scalar_one())

    # ------------------------------------------------------------------
    # 工序
    # ------------------------------------------------------------------

    async def create_stage(
        self,
        *,
        organization_id: str,
        name: str,
        location: Optional[str] = None,
    ) -> WorkflowStage:
        stages = await list_stages(self.session, organization_id=organization_id, for_update=True)
        next_seq = max((s.sequence_order for s in stages), default=-1) + 1
        stage = WorkflowStage(
            organization_id=organization_id,
            name=_clean_name(name, what="Stage"),
            location=_clean_location(location),
            sequence_order=next_seq,
            sub_stages=[],
        )
        self.session.add(stage)
        await self.session.flush()
        log.info("stage created org=%s id=%s name=%r seq=%s", organization_id, stage.id, stage.name, next_seq)
        return stage

    async def update_stage(
        self,
        *,
        organization_id: str,
        stage_id: str,
        name: Optional[str] = None,
        location: Optional[str] = None,
    ) -> WorkflowStage:
        stage = await get_stage(self.session, organization_id=organization_id, stage_id=stage_id, for_update=True)
        if name is not None:
            stage.name = _clean_name(name, what="Stage")
        if location is not None:
            stage.location = _clean_location(location)
        await self.session.flush()
        return stage

    async def delete_stage(self, *, organization_id: str, stage_id: str) -> None:
        stage = await get_stage(self.session, organization_id=organization_id, stage_id=stage_id, for_update=True)
        in_use = await self._count_allocations(stage_id=stage.id)
        if in_use > 0:
            raise StageInUse(
                f'Cannot delete stage "{stage.name}" because {in_use} item(s) are currently in it. '
                f"Move them to another stage first.",
                context={"stage_id": stage.id, "allocations": in_use},
            )
        await self.session.delete(stage)
        await self.session.flush()
        log.info("stage deleted org=%s id=%s name=%r", organization_id, stage.id, stage.name)

    async def reorder_stage(self, *, organization_id: str, stage_id: str, direction: str) -> List[WorkflowStage]:
        stages = await list_stages(self.session, organization_id=organization_id, for_update=True)
        if not any(s.id == stage_id for s in stages):
            # 统一 404 文案
            await get_stage(self.session, organization_id=organization_id, stage_id=stage_id)
        current, other = _swap_neighbor(stages, stage_id, direction, what="Stage")
        _swap_orders(stages, current, other)
        await self.session.flush()
        return sorted(stages, key=lambda s: (s.sequence_order, s.id))

    # ------------------------------------------------------------------
    # 子工序
    # ------------------------------------------------------------------

    async def create_sub_stage(
        self,
        *,
        organization_id: str,
        stage_id: str,
        name: str,
        location: Optional[str] = None,
    ) -> WorkflowSubStage:
        stage = await get_stage(self.session, organization_id=organization_id, stage_id=stage_id, for_update=True)
        if not stage.sub_stages:
            held = await self._count_allocations(stage_id=stage.id, stage_level_only=True)
            if held > 0:
                raise StageInUse(
                    f'Cannot add a sub-stage to stage "{stage.name}" while {held} item(s) sit directly in it. '
                    f"Move them out of the stage first.",
                    context={"stage_id": stage.id, "allocations": held},
                )
        next_seq = max((ss.sequence_order for ss in stage.sub_stages), default=-1) + 1
        sub = WorkflowSubStage(
            stage_id=stage.id,
            organization_id=organization_id,
            name=_clean_name(name, what="Sub-stage"),
            location=_clean_location(location),
            sequence_order=next_seq,
        )
        stage.sub_stages.append(sub)
        await self.session.flush()
        log.info("sub-stage created stage=%s id=%s name=%r seq=%s", stage.id, sub.id, sub.name, next_seq)
        return sub

    async def update_sub_stage(
        self,
        *,
        organization_id: str,
        sub_stage_id: str,
        name: Optional[str] = None,
        location: Optional[str] = None,
    ) -> WorkflowSubStage:
        sub = await get_sub_stage(
            self.session, organization_id=organization_id, sub_stage_id=sub_stage_id, for_update=True
        )
        if name is not None:
            sub.name = _clean_name(name, what="Sub-stage")
        if location is not None:
            sub.location = _clean_location(location)
        await self.session.flush()
        return sub

    async def delete_sub_stage(self, *, organization_id: str, sub_stage_id: str) -> None:
        sub = await get_sub_stage(
            self.session, organization_id=organization_id, sub_stage_id=sub_stage_id, for_update=True
        )
        in_use = await self._count_allocations(sub_stage_id=sub.id)
        if in_use > 0:
            raise StageInUse(
                f'Cannot delete sub-stage "{sub.name}" because {in_use} item(s) are currently in it. '
                f"Move them to another stage first.",
                context={"sub_stage_id": sub.id, "allocations": in_use},
            )
        await self.session.delete(sub)
        await self.session.flush()
        log.info("sub-stage deleted stage=%s id=%s name=%r", sub.stage_id, sub.id, sub.name)

    async def reorder_sub_stage(
        self,
        *,
        organization_id: str,
        sub_stage_id: str,
        direction: str,
    ) -> List[WorkflowSubStage]:
        sub = await get_sub_stage(self.session, organization_id=organization_id, sub_stage_id=sub_stage_id)
        stage = await get_stage(
            self.session, organization_id=organization_id, stage_id=sub.stage_id, for_update=True
        )
        siblings = sorted(stage.sub_stages, key=lambda ss: (ss.sequence_order, ss.id))
        current, other = _swap_neighbor(siblings, sub.id, direction, what="Sub-stage")
        _swap_orders(siblings, current, other)
        await self.session.flush()
        return sorted(siblings, key=lambda ss: (ss.sequence_order, ss.id))
