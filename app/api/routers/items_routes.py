# app/api/routers/items_routes.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_app_settings, get_session, require_capability
from app.api.routers.items_schemas import HistoryEntryOut, ItemSummaryOut
from app.core.config import AppSettings
from app.services.capabilities import Actor, Capability
from app.services.item_service import ItemService
from app.services.movement_history import list_item_history
from app.services.workflow_repo import load_topology


def register(router: APIRouter) -> None:
    @router.get("/{item_id}", response_model=ItemSummaryOut)
    async def get_item_summary(
        item_id: str = Path(..., description="条目 ID"),
        actor: Actor = Depends(require_capability(Capability.VIEW)),
        session: AsyncSession = Depends(get_session),
        settings: AppSettings = Depends(get_app_settings),
    ) -> ItemSummaryOut:
        """
        条目概览：各位置分配、new pool、已完成 / 剩余数量。
        """
        topology = await load_topology(session, organization_id=actor.organization_id)
        summary = await ItemService(session).item_summary(
            organization_id=actor.organization_id,
            item_id=item_id,
            topology=topology,
            completed_stage_name=settings.COMPLETED_STAGE_NAME,
        )
        return ItemSummaryOut.model_validate(summary)

    @router.get("/{item_id}/history", response_model=List[HistoryEntryOut])
    async def get_item_history(
        item_id: str = Path(..., description="条目 ID"),
        actor: Actor = Depends(require_capability(Capability.VIEW)),
        session: AsyncSession = Depends(get_session),
    ) -> List[HistoryEntryOut]:
        # 先确认条目属于当前组织（不存在 → 404）
        await ItemService(session).get_item(organization_id=actor.organization_id, item_id=item_id)
        topology = await load_topology(session, organization_id=actor.organization_id)
        entries = await list_item_history(
            session,
            organization_id=actor.organization_id,
            item_id=item_id,
            topology=topology,
        )
        return [HistoryEntryOut.model_validate(e) for e in entries]
