# app/services/dashboard_stats_service.py
"""
看板统计（只读）：

- movement_stats：按天汇总前移 / 返工数量（new pool 进入计为前移）
- bottleneck_items：在当前位置停留最久的分配（不含 Completed）
- stage_stats：各工序数量 + 在制 / 完成 / new pool 合计
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.item import Item
from app.models.item_movement_history import ItemMovementHistory
from app.models.item_stage_allocation import ItemStageAllocation
from app.models.order import Order
from app.services.workflow_topology import WorkflowTopology

BOTTLENECK_LIMIT_MAX = 50
WAITING_THRESHOLD = timedelta(days=7)


def _as_utc(dt: datetime) -> datetime:
    # sqlite 读回 naive，按 UTC 处理
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def humanize_duration(delta: timedelta) -> str:
    """'3 days, 4h' / '1 day' / '5 hours' / '< 1 hour'。"""
    total_hours = int(delta.total_seconds() // 3600)
    days, hours = divmod(max(total_hours, 0), 24)
    if days > 0:
        text = "1 day" if days == 1 else f"{days} days"
        if hours > 0:
            text += f", {hours}h"
        return text
    if hours > 0:
        return "1 hour" if hours == 1 else f"{hours} hours"
    return "< 1 hour"


@dataclass
class DailyMovement:
    date: date
    forward: int = 0
    rework: int = 0


@dataclass
class BottleneckItem:
    item_id: str
    sku: str
    order_number: str
    current_stage_name: str
    current_sub_stage_name: Optional[str]
    time_in_current_stage: str
    stage_entry_time: datetime
    quantity: int


@dataclass
class StageQuantity:
    stage_id: str
    stage_name: str
    sequence_order: int
    quantity: int
    sub_stages: Dict[str, int] = field(default_factory=dict)


@dataclass
class StageStats:
    stages: List[StageQuantity]
    total_quantity: int
    in_workflow_quantity: int
    completed_quantity: int
    new_pool_quantity: int
    active_orders: int
    items_in_rework: int
    items_waiting_over_7_days: int


async def movement_stats(
    session: AsyncSession,
    *,
    organization_id: str,
    days: int,
    today: Optional[date] = None,
) -> List[DailyMovement]:
    """[today - days, today] 每天一行（含无流转的日期，数量为 0），日期按 UTC。"""
    end_day = today or datetime.now(timezone.utc).date()
    start_day = end_day - timedelta(days=max(int(days), 0))
    start_at = datetime.combine(start_day, datetime.min.time(), tzinfo=timezone.utc)
    end_at = datetime.combine(end_day + timedelta(days=1), datetime.min.time(), tzinfo=timezone.utc)

    buckets: Dict[date, DailyMovement] = {}
    d = start_day
    while d <= end_day:
        buckets[d] = DailyMovement(date=d)
        d += timedelta(days=1)

    stmt = (
        select(ItemMovementHistory.moved_at, ItemMovementHistory.rework_reason, ItemMovementHistory.quantity)
        .where(
            ItemMovementHistory.organization_id == organization_id,
            ItemMovementHistory.moved_at >= start_at,
            ItemMovementHistory.moved_at < end_at,
        )
        .order_by(ItemMovementHistory.moved_at.asc())
    )
    for moved_at, reason, qty in (await session.execute(stmt)).all():
        bucket = buckets.get(_as_utc(moved_at).date())
        if bucket is None:
            continue
        if reason:
            bucket.rework += int(qty)
        else:
            bucket.forward += int(qty)

    return list(buckets.values())


async def bottleneck_items(
    session: AsyncSession,
    *,
    organization_id: str,
    topology: WorkflowTopology,
    completed_stage_name: str,
    limit: int = 10,
    now: Optional[datetime] = None,
) -> List[BottleneckItem]:
    limit = max(1, min(int(limit), BOTTLENECK_LIMIT_MAX))
    now = now or datetime.now(timezone.utc)
    completed = topology.completed_stage(completed_stage_name)

    stmt = (
        select(ItemStageAllocation, Item.sku, Order.order_number)
        .join(Item, Item.id == ItemStageAllocation.item_id)
        .join(Order, Order.id == Item.order_id)
        .where(ItemStageAllocation.organization_id == organization_id)
        .order_by(ItemStageAllocation.created_at.asc(), ItemStageAllocation.id.asc())
        .limit(limit)
    )
    if completed is not None:
        stmt = stmt.where(ItemStageAllocation.stage_id != completed.id)

    out: List[BottleneckItem] = []
    for alloc, sku, order_number in (await session.execute(stmt)).all():
        stage = topology.find_stage(alloc.stage_id)
        sub_name: Optional[str] = None
        if alloc.sub_stage_id is not None:
            found = topology.find_sub_stage(alloc.sub_stage_id)
            sub_name = found[1].name if found else None
        entered = _as_utc(alloc.created_at)
        out.append(
            BottleneckItem(
                item_id=alloc.item_id,
                sku=sku,
                order_number=order_number,
                current_stage_name=stage.name if stage else str(alloc.stage_id),
                current_sub_stage_name=sub_name,
                time_in_current_stage=humanize_duration(now - entered),
                stage_entry_time=entered,
                quantity=int(alloc.quantity),
            )
        )
    return out


async def stage_stats(
    session: AsyncSession,
    *,
    organization_id: str,
    topology: WorkflowTopology,
    completed_stage_name: str,
    now: Optional[datetime] = None,
) -> StageStats:
    now = now or datetime.now(timezone.utc)
    completed = topology.completed_stage(completed_stage_name)
    completed_id = completed.id if completed else None

    per_stage: Dict[str, StageQuantity] = {
        s.id: StageQuantity(
            stage_id=s.id,
            stage_name=s.name,
            sequence_order=s.sequence_order,
            quantity=0,
            sub_stages={ss.id: 0 for ss in s.sub_stages},
        )
        for s in topology.stages
    }

    alloc_rows = (
        await session.execute(
            select(
                ItemStageAllocation.item_id,
                ItemStageAllocation.stage_id,
                ItemStageAllocation.sub_stage_id,
                ItemStageAllocation.quantity,
                ItemStageAllocation.created_at,
            ).where(ItemStageAllocation.organization_id == organization_id)
        )
    ).all()

    allocated_by_item: Dict[str, int] = defaultdict(int)
    completed_by_item: Dict[str, int] = defaultdict(int)
    waiting_items = set()
    in_workflow = 0
    completed_qty = 0
    for item_id, stage_id, sub_stage_id, qty, created_at in alloc_rows:
        qty = int(qty)
        allocated_by_item[item_id] += qty
        bucket = per_stage.get(stage_id)
        if bucket is not None:
            bucket.quantity += qty
            if sub_stage_id is not None and sub_stage_id in bucket.sub_stages:
                bucket.sub_stages[sub_stage_id] += qty
        if stage_id == completed_id:
            completed_qty += qty
            completed_by_item[item_id] += qty
            continue
        in_workflow += qty
        if now - _as_utc(created_at) > WAITING_THRESHOLD:
            waiting_items.add(item_id)

    item_rows = (
        await session.execute(
            select(Item.id, Item.order_id, Item.total_quantity).where(Item.organization_id == organization_id)
        )
    ).all()
    total = 0
    new_pool = 0
    active_orders = set()
    for item_id, order_id, total_qty in item_rows:
        total_qty = int(total_qty)
        total += total_qty
        new_pool += total_qty - allocated_by_item.get(item_id, 0)
        if total_qty - completed_by_item.get(item_id, 0) > 0:
            active_orders.add(order_id)

    # 每个条目最近一条历史是否为返工
    latest = (
        select(
            ItemMovementHistory.item_id,
            func.max(ItemMovementHistory.moved_at).label("last_at"),
        )
        .where(ItemMovementHistory.organization_id == organization_id)
        .group_by(ItemMovementHistory.item_id)
        .subquery()
    )
    rework_stmt = (
        select(ItemMovementHistory.item_id, ItemMovementHistory.rework_reason)
        .join(
            latest,
            (latest.c.item_id == ItemMovementHistory.item_id)
            & (latest.c.last_at == ItemMovementHistory.moved_at),
        )
        .where(ItemMovementHistory.organization_id == organization_id)
    )
    in_rework = {item_id for item_id, reason in (await session.execute(rework_stmt)).all() if reason}

    return StageStats(
        stages=sorted(per_stage.values(), key=lambda s: (s.sequence_order, s.stage_id)),
        total_quantity=total,
        in_workflow_quantity=in_workflow,
        completed_quantity=completed_qty,
        new_pool_quantity=new_pool,
        active_orders=len(active_orders),
        items_in_rework=len(in_rework),
        items_waiting_over_7_days=len(waiting_items),
    )
