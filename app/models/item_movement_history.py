# app/models/item_movement_history.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.workflow_stage import _uuid


class ItemMovementHistory(Base):
    """
    流转历史（只增不改）

    - from_* 为空：从 new pool 首次进入工序
    - rework_reason 非空：返工
    - 工序列不挂外键：工序删除后历史仍需保留原 id
    """

    __tablename__ = "item_movement_history"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=_uuid)
    item_id: Mapped[str] = mapped_column(
        sa.String(36), sa.ForeignKey("items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    organization_id: Mapped[str] = mapped_column(sa.String(36), nullable=False, index=True)

    from_stage_id: Mapped[Optional[str]] = mapped_column(sa.String(36), nullable=True)
    from_sub_stage_id: Mapped[Optional[str]] = mapped_column(sa.String(36), nullable=True)
    to_stage_id: Mapped[str] = mapped_column(sa.String(36), nullable=False)
    to_sub_stage_id: Mapped[Optional[str]] = mapped_column(sa.String(36), nullable=True)

    quantity: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    moved_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    moved_by: Mapped[Optional[str]] = mapped_column(sa.String(36), nullable=True)
    rework_reason: Mapped[Optional[str]] = mapped_column(sa.String(255), nullable=True)

    __table_args__ = (
        sa.CheckConstraint("quantity > 0", name="ck_item_movement_history_qty_pos"),
        sa.Index("ix_item_movement_history_org_moved_at", "organization_id", "moved_at"),
    )

    @property
    def is_rework(self) -> bool:
        return bool(self.rework_reason)

    def __repr__(self) -> str:
        return (
            f"<Movement item={self.item_id} {self.from_stage_id}/{self.from_sub_stage_id}"
            f" -> {self.to_stage_id}/{self.to_sub_stage_id} qty={self.quantity}>"
        )
