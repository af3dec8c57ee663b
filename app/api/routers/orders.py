# app/api/routers/orders.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_session, require_capability
from app.api.routers.orders_schemas import ItemCreateIn, ItemOut, OrderCreateIn, OrderOut
from app.services.capabilities import Actor, Capability
from app.services.item_service import ItemService, NewItem

router = APIRouter(prefix="/orders", tags=["orders"])


def _new_item(payload: ItemCreateIn) -> NewItem:
    return NewItem(
        sku=payload.sku,
        total_quantity=payload.total_quantity,
        instance_details=payload.instance_details,
    )


@router.post("", response_model=OrderOut, status_code=201)
async def create_order(
    payload: OrderCreateIn,
    actor: Actor = Depends(require_capability(Capability.MANAGE_ORDERS)),
    session: AsyncSession = Depends(get_session),
) -> OrderOut:
    svc = ItemService(session)
    try:
        order = await svc.create_order(
            organization_id=actor.organization_id,
            order_number=payload.order_number,
            customer_name=payload.customer_name,
            items=[_new_item(i) for i in payload.items],
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    return OrderOut.model_validate(order)


@router.get("/{order_id}", response_model=OrderOut)
async def get_order(
    order_id: str = Path(..., description="订单 ID"),
    actor: Actor = Depends(require_capability(Capability.VIEW)),
    session: AsyncSession = Depends(get_session),
) -> OrderOut:
    order = await ItemService(session).get_order(organization_id=actor.organization_id, order_id=order_id)
    return OrderOut.model_validate(order)


@router.post("/{order_id}/items", response_model=ItemOut, status_code=201)
async def add_order_item(
    payload: ItemCreateIn,
    order_id: str = Path(..., description="订单 ID"),
    actor: Actor = Depends(require_capability(Capability.MANAGE_ORDERS)),
    session: AsyncSession = Depends(get_session),
) -> ItemOut:
    svc = ItemService(session)
    try:
        item = await svc.add_item(
            organization_id=actor.organization_id,
            order_id=order_id,
            line=_new_item(payload),
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    return ItemOut.model_validate(item)
