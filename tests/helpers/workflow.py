# tests/helpers/workflow.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.item import Item
from app.models.item_movement_history import ItemMovementHistory
from app.models.item_stage_allocation import ItemStageAllocation
from app.models.order import Order
from app.models.workflow_stage import WorkflowStage
from app.models.workflow_sub_stage import WorkflowSubStage
from app.services.capabilities import Actor

UTC = timezone.utc
ORG = "org-test"


def uniq_ref(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:8]}"


def owner(org: str = ORG) -> Actor:
    return Actor(user_id="user-owner", organization_id=org, role="Owner")


def worker(org: str = ORG) -> Actor:
    return Actor(user_id="user-worker", organization_id=org, role="Worker")


def headers(role: str = "Owner", org: str = ORG, user_id: str = "user-1") -> Dict[str, str]:
    return {"X-User-Id": user_id, "X-Organization-Id": org, "X-Role": role}


class Ticker:
    """单调递增时钟：每次调用前进 1 秒，保证“最近创建”可判定。"""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 1, 5, 8, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now


@dataclass
class Topo:
    """A(1) → B(2: B1, B2) → C(3, 'Completed')"""

    a: str
    b: str
    b1: str
    b2: str
    c: str


async def seed_topology(session: AsyncSession, org: str = ORG) -> Topo:
    a = WorkflowStage(organization_id=org, name="Cutting", sequence_order=1, sub_stages=[])
    b = WorkflowStage(organization_id=org, name="Sewing", sequence_order=2, sub_stages=[])
    c = WorkflowStage(organization_id=org, name="Completed", sequence_order=3, sub_stages=[])
    b1 = WorkflowSubStage(organization_id=org, name="Stitch", sequence_order=1)
    b2 = WorkflowSubStage(organization_id=org, name="Hem", sequence_order=2)
    b.sub_stages.extend([b1, b2])
    session.add_all([a, b, c])
    await session.flush()
    return Topo(a=a.id, b=b.id, b1=b1.id, b2=b2.id, c=c.id)


async def make_item(
    session: AsyncSession,
    *,
    total: int = 10,
    org: str = ORG,
    sku: Optional[str] = None,
    order_number: Optional[str] = None,
) -> Item:
    order = Order(organization_id=org, order_number=order_number or uniq_ref("SO"), items=[])
    item = Item(organization_id=org, sku=sku or uniq_ref("SKU"), total_quantity=total)
    order.items.append(item)
    session.add(order)
    await session.flush()
    return item


async def put_allocation(
    session: AsyncSession,
    item: Item,
    *,
    stage_id: str,
    sub_stage_id: Optional[str] = None,
    quantity: int,
    created_at: Optional[datetime] = None,
) -> ItemStageAllocation:
    at = created_at or datetime(2026, 1, 1, 8, 0, tzinfo=UTC)
    row = ItemStageAllocation(
        item_id=item.id,
        organization_id=item.organization_id,
        stage_id=stage_id,
        sub_stage_id=sub_stage_id,
        quantity=quantity,
        created_at=at,
        updated_at=at,
    )
    session.add(row)
    await session.flush()
    return row


async def allocations_of(maker: async_sessionmaker[AsyncSession], item_id: str) -> Dict[tuple, int]:
    """{(stage_id, sub_stage_id): quantity}（新会话读已提交数据）"""
    async with maker() as s:
        rows = (
            await s.execute(select(ItemStageAllocation).where(ItemStageAllocation.item_id == item_id))
        ).scalars().all()
    return {(r.stage_id, r.sub_stage_id): int(r.quantity) for r in rows}


async def allocation_rows(maker: async_sessionmaker[AsyncSession], item_id: str) -> List[tuple]:
    """[(stage_id, sub_stage_id, quantity)]，不合并重复行"""
    async with maker() as s:
        rows = (
            await s.execute(select(ItemStageAllocation).where(ItemStageAllocation.item_id == item_id))
        ).scalars().all()
    return [(r.stage_id, r.sub_stage_id, int(r.quantity)) for r in rows]


async def history_of(maker: async_sessionmaker[AsyncSession], item_id: str):
    async with maker() as s:
        rows = (
            await s.execute(
                select(ItemMovementHistory)
                .where(ItemMovementHistory.item_id == item_id)
                .order_by(ItemMovementHistory.moved_at.asc())
            )
        ).scalars().all()
    return list(rows)
