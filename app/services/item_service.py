# app/services/item_service.py
"""
订单 / 条目：

- create_order / get_order / add_item
- item_summary：各位置分配 + new pool + completed / remaining
- items_in_stage：某位置上的全部分配（带 sku / 订单号）

instance_details 只做形状校验（string → 标量），不参与分配账不变量。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.item import Item
from app.models.item_stage_allocation import ItemStageAllocation
from app.models.order import Order
from app.services.allocation_ledger import check_ledger, load_allocations, position_of
from app.services.workflow_errors import InvalidRequest, NotFoundError
from app.services.workflow_topology import Position, WorkflowTopology

_SCALAR_TYPES = (str, int, float, bool)


def validate_instance_details(details: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    if details is None:
        return None
    if not isinstance(details, Mapping):
        raise InvalidRequest("instance_details must be an object of key/value pairs.")
    out: Dict[str, Any] = {}
    for key, value in details.items():
        if not isinstance(key, str) or not key.strip():
            raise InvalidRequest("instance_details keys must be non-empty strings.")
        if value is not None and not isinstance(value, _SCALAR_TYPES):
            raise InvalidRequest(
                f"instance_details[{key!r}] must be a string, number, boolean or null."
            )
        out[key.strip()] = value
    return out


@dataclass
class NewItem:
    sku: str
    total_quantity: int
    instance_details: Optional[Dict[str, Any]] = None


@dataclass
class AllocationView:
    id: str
    stage_id: str
    sub_stage_id: Optional[str]
    stage_name: Optional[str]
    sub_stage_name: Optional[str]
    label: str
    quantity: int
    created_at: datetime
    updated_at: datetime
    moved_by: Optional[str]


@dataclass
class ItemSummary:
    id: str
    order_id: str
    sku: str
    total_quantity: int
    instance_details: Optional[Dict[str, Any]]
    quantity_in_new_pool: int
    completed_quantity: int
    remaining_quantity: int
    allocations: List[AllocationView] = field(default_factory=list)


@dataclass
class StageItemView:
    allocation_id: str
    item_id: str
    sku: str
    order_id: str
    order_number: str
    quantity: int
    stage_id: str
    sub_stage_id: Optional[str]
    entered_at: datetime


def _allocation_view(topology: WorkflowTopology, alloc: ItemStageAllocation) -> AllocationView:
    pos = position_of(alloc)
    stage = topology.find_stage(pos.stage_id)
    sub_name: Optional[str] = None
    if pos.sub_stage_id is not None:
        found = topology.find_sub_stage(pos.sub_stage_id)
        sub_name = found[1].name if found else None
    return AllocationView(
        id=alloc.id,
        stage_id=alloc.stage_id,
        sub_stage_id=alloc.sub_stage_id,
        stage_name=stage.name if stage else None,
        sub_stage_name=sub_name,
        label=topology.describe(pos),
        quantity=int(alloc.quantity),
        created_at=alloc.created_at,
        updated_at=alloc.updated_at,
        moved_by=alloc.moved_by,
    )


class ItemService:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ------------------------------------------------------------------
    # 订单
    # ------------------------------------------------------------------

    async def create_order(
        self,
        *,
        organization_id: str,
        order_number: str,
        customer_name: Optional[str] = None,
        items: Sequence[NewItem] = (),
    ) -> Order:
        number = (order_number or "").strip()
        if not number:
            raise InvalidRequest("order_number is required.")
        order = Order(
            organization_id=organization_id,
            order_number=number,
            customer_name=(customer_name or "").strip() or None,
            items=[],
        )
        for line in items:
            order.items.append(self._build_item(organization_id, line))
        self.session.add(order)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise InvalidRequest(f"Order number {number!r} already exists.") from e
        return order

    async def get_order(self, *, organization_id: str, order_id: str) -> Order:
        stmt = select(Order).where(Order.id == order_id, Order.organization_id == organization_id)
        order = (await self.session.execute(stmt)).scalars().first()
        if order is None:
            raise NotFoundError(f"Order {order_id} not found.")
        return order

    # ------------------------------------------------------------------
    # 条目
    # ------------------------------------------------------------------

    @staticmethod
    def _build_item(organization_id: str, line: NewItem) -> Item:
        sku = (line.sku or "").strip()
        if not sku:
            raise InvalidRequest("sku is required.")
        if int(line.total_quantity) <= 0:
            raise InvalidRequest(f"total_quantity for {sku} must be a positive number.")
        return Item(
            organization_id=organization_id,
            sku=sku,
            total_quantity=int(line.total_quantity),
            instance_details=validate_instance_details(line.instance_details),
        )

    async def add_item(self, *, organization_id: str, order_id: str, line: NewItem) -> Item:
        order = await self.get_order(organization_id=organization_id, order_id=order_id)
        item = self._build_item(organization_id, line)
        order.items.append(item)
        await self.session.flush()
        return item

    async def get_item(self, *, organization_id: str, item_id: str) -> Item:
        stmt = select(Item).where(Item.id == item_id, Item.organization_id == organization_id)
        item = (await self.session.execute(stmt)).scalars().first()
        if item is None:
            raise NotFoundError(f"Item {item_id} not found.", item_id=item_id)
        return item

    async def item_summary(
        self,
        *,
        organization_id: str,
        item_id: str,
        topology: WorkflowTopology,
        completed_stage_name: str,
    ) -> ItemSummary:
        item = await self.get_item(organization_id=organization_id, item_id=item_id)
        allocations = await load_allocations(self.session, item_id=item.id)
        snapshot = check_ledger(item, allocations)

        completed = topology.completed_stage(completed_stage_name)
        completed_qty = 0
        if completed is not None:
            completed_qty = sum(int(a.quantity) for a in allocations if a.stage_id == completed.id)

        known = [a for a in allocations if topology.contains(position_of(a))]
        known.sort(key=lambda a: topology.rank(position_of(a)))
        unknown = [a for a in allocations if not topology.contains(position_of(a))]

        return ItemSummary(
            id=item.id,
            order_id=item.order_id,
            sku=item.sku,
            total_quantity=int(item.total_quantity),
            instance_details=item.instance_details,
            quantity_in_new_pool=snapshot.new_pool_quantity,
            completed_quantity=completed_qty,
            remaining_quantity=int(item.total_quantity) - completed_qty,
            allocations=[_allocation_view(topology, a) for a in known + unknown],
        )

    async def items_in_stage(
        self,
        *,
        organization_id: str,
        position: Position,
    ) -> List[StageItemView]:
        """
        某位置上的分配；position.sub_stage_id 为空时返回整个工序（含其子工序）。
        按进入时间升序（最早进入的在前）。
        """
        stmt = (
            select(ItemStageAllocation, Item, Order)
            .join(Item, Item.id == ItemStageAllocation.item_id)
            .join(Order, Order.id == Item.order_id)
            .where(
                ItemStageAllocation.organization_id == organization_id,
                ItemStageAllocation.stage_id == position.stage_id,
            )
            .order_by(ItemStageAllocation.created_at.asc(), ItemStageAllocation.id.asc())
        )
        if position.sub_stage_id is not None:
            stmt = stmt.where(ItemStageAllocation.sub_stage_id == position.sub_stage_id)

        rows = (await self.session.execute(stmt)).all()
        return [
            StageItemView(
                allocation_id=alloc.id,
                item_id=item.id,
                sku=item.sku,
                order_id=order.id,
                order_number=order.order_number,
                quantity=int(alloc.quantity),
                stage_id=alloc.stage_id,
                sub_stage_id=alloc.sub_stage_id,
                entered_at=alloc.created_at,
            )
            for alloc, item, order in rows
        ]
