# app/models/item.py
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.workflow_stage import _utcnow, _uuid

if TYPE_CHECKING:
    from app.models.order import Order


class Item(Base):
    """
    订单行：total_quantity 创建后不变。
    未分配到任何工序的数量（new pool）= total_quantity - Σ allocations.quantity，不单独落库。
    """

    __tablename__ = "items"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=_uuid)
    order_id: Mapped[str] = mapped_column(
        sa.String(36), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    organization_id: Mapped[str] = mapped_column(sa.String(36), nullable=False, index=True)
    sku: Mapped[str] = mapped_column(sa.String(128), nullable=False)
    total_quantity: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    # 自由属性（重量/尺寸/箱规…），只校验形状，不参与流转不变量
    instance_details: Mapped[Optional[Dict[str, Any]]] = mapped_column(sa.JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow
    )

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    __table_args__ = (sa.CheckConstraint("total_quantity > 0", name="ck_items_total_quantity_pos"),)

    def __repr__(self) -> str:
        return f"<Item {self.sku} total={self.total_quantity} id={self.id}>"
