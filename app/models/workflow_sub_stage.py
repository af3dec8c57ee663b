# app/models/workflow_sub_stage.py
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.workflow_stage import _utcnow, _uuid

if TYPE_CHECKING:
    from app.models.workflow_stage import WorkflowStage


class WorkflowSubStage(Base):
    """子工序：序号只在父工序内部有意义。"""

    __tablename__ = "workflow_sub_stages"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=_uuid)
    stage_id: Mapped[str] = mapped_column(
        sa.String(36),
        sa.ForeignKey("workflow_stages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    organization_id: Mapped[str] = mapped_column(sa.String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(sa.String(128), nullable=False)
    sequence_order: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    location: Mapped[Optional[str]] = mapped_column(sa.String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow
    )

    stage: Mapped["WorkflowStage"] = relationship("WorkflowStage", back_populates="sub_stages")

    def __repr__(self) -> str:
        return f"<WorkflowSubStage {self.name!r} seq={self.sequence_order} stage={self.stage_id}>"
