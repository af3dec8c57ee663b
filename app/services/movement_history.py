# app/services/movement_history.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.item_movement_history import ItemMovementHistory
from app.services.workflow_topology import Position, WorkflowTopology

DIRECTION_ENTRY = "entry"
DIRECTION_FORWARD = "forward"
DIRECTION_REWORK = "rework"


async def append_movement(
    session: AsyncSession,
    *,
    organization_id: str,
    item_id: str,
    from_position: Optional[Position],
    to_position: Position,
    quantity: int,
    moved_at: datetime,
    moved_by: Optional[str],
    rework_reason: Optional[str] = None,
) -> ItemMovementHistory:
    """
    追加一条流转历史（只增不改）。

    from_position 为空表示从 new pool 首次进入工序。
    不在此处 flush，由调用方统一落库。
    """
    row = ItemMovementHistory(
        item_id=item_id,
        organization_id=organization_id,
        from_stage_id=from_position.stage_id if from_position else None,
        from_sub_stage_id=from_position.sub_stage_id if from_position else None,
        to_stage_id=to_position.stage_id,
        to_sub_stage_id=to_position.sub_stage_id,
        quantity=int(quantity),
        moved_at=moved_at,
        moved_by=moved_by,
        rework_reason=rework_reason,
    )
    session.add(row)
    return row


@dataclass
class HistoryEntry:
    id: str
    item_id: str
    direction: str
    from_stage_id: Optional[str]
    from_sub_stage_id: Optional[str]
    from_label: Optional[str]
    to_stage_id: str
    to_sub_stage_id: Optional[str]
    to_label: str
    quantity: int
    moved_at: datetime
    moved_by: Optional[str]
    rework_reason: Optional[str]


def movement_direction(row: ItemMovementHistory) -> str:
    if row.from_stage_id is None:
        return DIRECTION_ENTRY
    if row.rework_reason:
        return DIRECTION_REWORK
    return DIRECTION_FORWARD


async def list_item_history(
    session: AsyncSession,
    *,
    organization_id: str,
    item_id: str,
    topology: WorkflowTopology,
) -> List[HistoryEntry]:
    stmt = (
        select(ItemMovementHistory)
        .where(
            ItemMovementHistory.organization_id == organization_id,
            ItemMovementHistory.item_id == item_id,
        )
        .order_by(ItemMovementHistory.moved_at.asc(), ItemMovementHistory.id.asc())
    )
    rows = (await session.execute(stmt)).scalars().all()

    out: List[HistoryEntry] = []
    for r in rows:
        from_pos = Position(r.from_stage_id, r.from_sub_stage_id) if r.from_stage_id else None
        out.append(
            HistoryEntry(
                id=r.id,
                item_id=r.item_id,
                direction=movement_direction(r),
                from_stage_id=r.from_stage_id,
                from_sub_stage_id=r.from_sub_stage_id,
                from_label=topology.describe(from_pos) if from_pos else None,
                to_stage_id=r.to_stage_id,
                to_sub_stage_id=r.to_sub_stage_id,
                to_label=topology.describe(Position(r.to_stage_id, r.to_sub_stage_id)),
                quantity=int(r.quantity),
                moved_at=r.moved_at,
                moved_by=r.moved_by,
                rework_reason=r.rework_reason,
            )
        )
    return out
