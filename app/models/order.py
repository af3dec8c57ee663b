# app/models/order.py
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.workflow_stage import _utcnow, _uuid

if TYPE_CHECKING:
    from app.models.item import Item


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(sa.String(36), nullable=False, index=True)
    order_number: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    customer_name: Mapped[Optional[str]] = mapped_column(sa.String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow
    )

    items: Mapped[List["Item"]] = relationship(
        "Item",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        sa.UniqueConstraint("organization_id", "order_number", name="uq_orders_org_order_number"),
    )
