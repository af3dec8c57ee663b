# app/models/workflow_stage.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base

if TYPE_CHECKING:
    from app.models.workflow_sub_stage import WorkflowSubStage


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowStage(Base):
    """
    工序（组织级）：
    - sequence_order 决定先后；同序号时以 id 作稳定次序
    - 存在子工序时，该工序本身不再直接承载分配
    """

    __tablename__ = "workflow_stages"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(sa.String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(sa.String(128), nullable=False)
    sequence_order: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    location: Mapped[Optional[str]] = mapped_column(sa.String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow
    )

    sub_stages: Mapped[List["WorkflowSubStage"]] = relationship(
        "WorkflowSubStage",
        back_populates="stage",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    __table_args__ = (sa.Index("ix_workflow_stages_org_seq", "organization_id", "sequence_order"),)

    def __repr__(self) -> str:
        return f"<WorkflowStage {self.name!r} seq={self.sequence_order} id={self.id}>"
