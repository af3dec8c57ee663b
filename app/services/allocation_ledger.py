# app/services/allocation_ledger.py
"""
分配账（item_stage_allocations）：

- 来源分配选择：LatestAllocationStrategy / ExplicitTargetStrategy
- apply_move：拆分/删除来源 → 合并/新建目标 → 追加历史，同一事务内完成
- verify_item_ledger：Σ allocations + new pool == total_quantity

所有写操作都假定调用方已在事务内锁住 Item 行（见 lock_item）。
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.item import Item
from app.models.item_movement_history import ItemMovementHistory
from app.models.item_stage_allocation import ItemStageAllocation
from app.services.movement_history import append_movement
from app.services.workflow_errors import (
    DataInconsistency,
    InsufficientQuantity,
    NoEligibleSource,
    NotFoundError,
    OrderingViolation,
)
from app.services.workflow_topology import Position, WorkflowTopology

log = logging.getLogger("stageflow.ledger")


def position_of(alloc: ItemStageAllocation) -> Position:
    return Position(alloc.stage_id, alloc.sub_stage_id)


def _naive_utc(dt: Optional[datetime]) -> datetime:
    # sqlite 读回的是 naive 时间；统一成 naive UTC 再比较
    if dt is None:
        return datetime.min
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


# ----------------------------------------------------------------------
# 来源选择策略
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class LatestAllocationStrategy:
    """
    未指定目标：取最近创建的分配，目标由拓扑推导为其下一个位置。
    source_stage_id 给出时只在该工序内挑选。
    """

    source_stage_id: Optional[str] = None


@dataclass(frozen=True)
class ExplicitTargetStrategy:
    """指定目标：在目标之前、数量足够的分配里挑选。"""

    target_stage_id: Optional[str] = None
    target_sub_stage_id: Optional[str] = None
    preferred_source_stage_id: Optional[str] = None


SourceStrategy = Union[LatestAllocationStrategy, ExplicitTargetStrategy]


def forward_ordering_error(
    topology: WorkflowTopology, item_id: str, source: Position, target: Position
) -> OrderingViolation:
    """目标不在来源之后时的统一报错文案。"""
    src_label = topology.describe(source)
    tgt_label = topology.describe(target)
    if source == target:
        return OrderingViolation(
            f"Cannot move item {item_id} to the same position ({src_label}).", item_id=item_id
        )
    if source.stage_id == target.stage_id:
        return OrderingViolation(
            f"Sub-stage progression invalid for item {item_id}: target {tgt_label} "
            f"is not after the current sub-stage {src_label}.",
            item_id=item_id,
        )
    src_stage = topology.stage(source.stage_id)
    tgt_stage = topology.stage(target.stage_id)
    return OrderingViolation(
        f"Target stage {tgt_stage.name!r} (sequence: {tgt_stage.sequence_order}) is before the current "
        f"stage {src_stage.name!r} (sequence: {src_stage.sequence_order}) of item {item_id}.",
        item_id=item_id,
    )


def ensure_forward(topology: WorkflowTopology, item_id: str, source: Position, target: Position) -> None:
    if not topology.rank(source) < topology.rank(target):
        raise forward_ordering_error(topology, item_id, source, target)


def select_latest_allocation(
    allocations: Sequence[ItemStageAllocation],
    *,
    item_id: str,
    source_stage_id: Optional[str] = None,
) -> ItemStageAllocation:
    pool = list(allocations)
    if not pool:
        raise NoEligibleSource(
            f"Item {item_id} has no allocation in the workflow; allocate it from the new pool first.",
            item_id=item_id,
        )
    if source_stage_id is not None:
        pool = [a for a in pool if a.stage_id == source_stage_id]
        if not pool:
            raise NoEligibleSource(
                f"Item {item_id} has no allocation in source stage {source_stage_id}.",
                item_id=item_id,
            )
    return max(pool, key=lambda a: (_naive_utc(a.created_at), str(a.id)))


def select_source_allocation(
    allocations: Sequence[ItemStageAllocation],
    *,
    item_id: str,
    requested_quantity: int,
    topology: WorkflowTopology,
    target: Position,
    preferred_source_stage_id: Optional[str] = None,
) -> ItemStageAllocation:
    """
    指定目标时的来源选择：

      1) 只看位置严格早于目标的分配
      2) 单行数量必须覆盖 requested_quantity（不跨行拆取）
      3) preferred_source_stage_id 命中则优先
      4) 否则取最早的位置，先清空靠前工序
    """
    target_rank = topology.rank(target)
    target_label = topology.describe(target)

    known = [a for a in allocations if topology.contains(position_of(a))]
    before = [a for a in known if topology.rank(position_of(a)) < target_rank]
    candidates = [a for a in before if int(a.quantity) >= int(requested_quantity)]

    def _key(a: ItemStageAllocation):
        return topology.rank(position_of(a))

    if not candidates:
        if before:
            raise InsufficientQuantity(
                f"Sufficient quantity ({requested_quantity}) not found in any single allocation "
                f"of item {item_id} before target {target_label}.",
                item_id=item_id,
                context={"requested": int(requested_quantity), "largest": max(int(a.quantity) for a in before)},
            )
        if not known:
            raise NoEligibleSource(
                f"No allocation for item {item_id} found in a position before target {target_label}.",
                item_id=item_id,
            )
        # 全部分配都在目标处或之后：按“当前位置”报次序错误
        current = min(known, key=_key)
        if preferred_source_stage_id is not None:
            preferred_rows = [a for a in known if a.stage_id == preferred_source_stage_id]
            if preferred_rows:
                current = min(preferred_rows, key=_key)
        raise forward_ordering_error(topology, item_id, position_of(current), target)

    if preferred_source_stage_id is not None:
        preferred = [a for a in candidates if a.stage_id == preferred_source_stage_id]
        if preferred:
            return min(preferred, key=_key)

    return min(candidates, key=_key)


# ----------------------------------------------------------------------
# 读取 / 加锁
# ----------------------------------------------------------------------


async def lock_item(session: AsyncSession, *, organization_id: str, item_id: str) -> Item:
    """
    锁住 Item 行（SELECT ... FOR UPDATE）：同一条目的并发流转在此串行化。
    """
    stmt = (
        select(Item)
        .where(Item.id == item_id, Item.organization_id == organization_id)
        .with_for_update()
    )
    item = (await session.execute(stmt)).scalars().first()
    if item is None:
        raise NotFoundError(f"Item {item_id} not found.", item_id=item_id)
    return item


async def load_allocations(session: AsyncSession, *, item_id: str) -> List[ItemStageAllocation]:
    stmt = (
        select(ItemStageAllocation)
        .where(ItemStageAllocation.item_id == item_id)
        .order_by(ItemStageAllocation.created_at.asc(), ItemStageAllocation.id.asc())
    )
    return list((await session.execute(stmt)).scalars().all())


async def find_allocation(
    session: AsyncSession, *, item_id: str, position: Position
) -> Optional[ItemStageAllocation]:
    stmt = select(ItemStageAllocation).where(
        ItemStageAllocation.item_id == item_id,
        ItemStageAllocation.stage_id == position.stage_id,
    )
    if position.sub_stage_id is None:
        stmt = stmt.where(ItemStageAllocation.sub_stage_id.is_(None))
    else:
        stmt = stmt.where(ItemStageAllocation.sub_stage_id == position.sub_stage_id)
    return (await session.execute(stmt.limit(1))).scalars().first()


# ----------------------------------------------------------------------
# 写：一次流转
# ----------------------------------------------------------------------


@dataclass
class AppliedMove:
    source: Optional[Position]
    target: Position
    quantity: int
    source_deleted: bool
    target_created: bool
    history: ItemMovementHistory


async def apply_move(
    session: AsyncSession,
    *,
    item: Item,
    source: Optional[ItemStageAllocation],
    quantity: int,
    target: Position,
    actor_id: Optional[str],
    now: datetime,
    rework_reason: Optional[str] = None,
) -> AppliedMove:
    """
    source 为空表示从 new pool 进入（数量上限由调用方校验）。

    1) 整行移走则删除来源，否则扣减（结果必 > 0）
    2) 目标位置已有行则累加，否则新建
    3) 追加历史
    来源改动落库后，2/3 任一失败抛 DataInconsistency（事务随之回滚）。
    """
    qty = int(quantity)
    source_pos = position_of(source) if source is not None else None
    source_deleted = False

    if source is not None:
        if source_pos == target:
            raise OrderingViolation(
                f"Cannot move item {item.id} to its current position.", item_id=item.id
            )
        if qty > int(source.quantity):
            raise InsufficientQuantity(
                f"Requested quantity ({qty}) exceeds available quantity ({source.quantity}) "
                f"in the selected source allocation of item {item.id}.",
                item_id=item.id,
            )
        if qty == int(source.quantity):
            await session.delete(source)
            source_deleted = True
        else:
            source.quantity = int(source.quantity) - qty
            source.updated_at = now
        await session.flush()

    try:
        target_row = await find_allocation(session, item_id=item.id, position=target)
        target_created = target_row is None
        if target_row is not None:
            target_row.quantity = int(target_row.quantity) + qty
            target_row.updated_at = now
            target_row.moved_by = actor_id
        else:
            session.add(
                ItemStageAllocation(
                    item_id=item.id,
                    organization_id=item.organization_id,
                    stage_id=target.stage_id,
                    sub_stage_id=target.sub_stage_id,
                    quantity=qty,
                    created_at=now,
                    updated_at=now,
                    moved_by=actor_id,
                )
            )

        history = await append_movement(
            session,
            organization_id=item.organization_id,
            item_id=item.id,
            from_position=source_pos,
            to_position=target,
            quantity=qty,
            moved_at=now,
            moved_by=actor_id,
            rework_reason=rework_reason,
        )
        await session.flush()
    except SQLAlchemyError as exc:
        if source is None:
            raise
        log.error(
            "DATA_INCONSISTENCY item=%s source=%s target=%s qty=%s",
            item.id,
            source_pos,
            target,
            qty,
            exc_info=True,
        )
        raise DataInconsistency(
            f"Source allocation of item {item.id} was modified but the target allocation or "
            f"movement history could not be written; the item's ledger needs reconciliation.",
            item_id=item.id,
        ) from exc

    return AppliedMove(
        source=source_pos,
        target=target,
        quantity=qty,
        source_deleted=source_deleted,
        target_created=target_created,
        history=history,
    )


# ----------------------------------------------------------------------
# 不变量
# ----------------------------------------------------------------------


@dataclass
class LedgerSnapshot:
    item_id: str
    total_quantity: int
    allocated_quantity: int
    rows: List[Tuple[Position, int]] = field(default_factory=list)

    @property
    def new_pool_quantity(self) -> int:
        return self.total_quantity - self.allocated_quantity


def check_ledger(item: Item, allocations: Sequence[ItemStageAllocation]) -> LedgerSnapshot:
    """违反不变量时抛 DataInconsistency。"""
    seen = set()
    rows: List[Tuple[Position, int]] = []
    for a in allocations:
        pos = position_of(a)
        if pos in seen:
            raise DataInconsistency(
                f"Item {item.id} has duplicate allocations at {pos}.", item_id=item.id
            )
        seen.add(pos)
        if int(a.quantity) <= 0:
            raise DataInconsistency(
                f"Item {item.id} has a non-positive allocation ({a.quantity}) at {pos}.",
                item_id=item.id,
            )
        rows.append((pos, int(a.quantity)))

    allocated = sum(q for _, q in rows)
    if allocated > int(item.total_quantity):
        raise DataInconsistency(
            f"Item {item.id} has {allocated} allocated but only {item.total_quantity} ordered.",
            item_id=item.id,
        )
    return LedgerSnapshot(
        item_id=item.id,
        total_quantity=int(item.total_quantity),
        allocated_quantity=allocated,
        rows=rows,
    )


async def verify_item_ledger(session: AsyncSession, *, item: Item) -> LedgerSnapshot:
    return check_ledger(item, await load_allocations(session, item_id=item.id))
