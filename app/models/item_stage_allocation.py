# app/models/item_stage_allocation.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.workflow_stage import _utcnow, _uuid


class ItemStageAllocation(Base):
    """
    分配行：某条目当前在 (stage, sub_stage) 上的数量。

    - quantity > 0；归零即删除，不落 0
    - (item_id, stage_id, sub_stage_id) 唯一；sub_stage_id 为 NULL 时用部分唯一索引单独约束
    """

    __tablename__ = "item_stage_allocations"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=_uuid)
    item_id: Mapped[str] = mapped_column(
        sa.String(36), sa.ForeignKey("items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    organization_id: Mapped[str] = mapped_column(sa.String(36), nullable=False, index=True)
    stage_id: Mapped[str] = mapped_column(
        sa.String(36), sa.ForeignKey("workflow_stages.id"), nullable=False, index=True
    )
    sub_stage_id: Mapped[Optional[str]] = mapped_column(
        sa.String(36), sa.ForeignKey("workflow_sub_stages.id"), nullable=True, index=True
    )
    quantity: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow
    )
    moved_by: Mapped[Optional[str]] = mapped_column(sa.String(36), nullable=True)

    __table_args__ = (
        sa.CheckConstraint("quantity > 0", name="ck_item_stage_allocations_qty_pos"),
        sa.Index(
            "uq_item_stage_allocations_item_stage_sub",
            "item_id",
            "stage_id",
            "sub_stage_id",
            unique=True,
            postgresql_where=sa.text("sub_stage_id IS NOT NULL"),
            sqlite_where=sa.text("sub_stage_id IS NOT NULL"),
        ),
        sa.Index(
            "uq_item_stage_allocations_item_stage_nosub",
            "item_id",
            "stage_id",
            unique=True,
            postgresql_where=sa.text("sub_stage_id IS NULL"),
            sqlite_where=sa.text("sub_stage_id IS NULL"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Allocation item={self.item_id} stage={self.stage_id} "
            f"sub={self.sub_stage_id} qty={self.quantity}>"
        )
