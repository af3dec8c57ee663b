# app/api/routers/item_moves_schemas.py
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.services.movement_engine import BatchOutcome, ItemMoveFailure, ItemMoveResult


class MoveItemIn(BaseModel):
    id: str = Field(..., min_length=1, description="条目 ID")
    quantity: int = Field(..., gt=0, description="本次流转数量（>0）")


class ForwardMoveIn(BaseModel):
    items: List[MoveItemIn] = Field(..., min_length=1)
    target_stage_id: Optional[str] = Field(
        None,
        description="目标工序；为空时按条目最近的分配推导下一位置",
    )
    target_sub_stage_id: Optional[str] = Field(None, description="目标子工序")
    source_stage_id: Optional[str] = Field(
        None,
        description="优先从该工序取来源分配（可选）",
    )


class ReworkItemIn(BaseModel):
    id: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)
    source_stage_id: str = Field(..., min_length=1, description="条目当前所在工序")
    source_sub_stage_id: Optional[str] = Field(None, description="条目当前所在子工序")


class ReworkMoveIn(BaseModel):
    items: List[ReworkItemIn] = Field(..., min_length=1)
    rework_reason: str = Field(..., min_length=3, max_length=255)
    target_rework_stage_id: str = Field(..., min_length=1)
    target_rework_sub_stage_id: Optional[str] = None


class AllocateIn(BaseModel):
    items: List[MoveItemIn] = Field(..., min_length=1)
    target_stage_id: Optional[str] = Field(
        None,
        description="进入的工序；为空时进入工作流的第一个位置",
    )
    target_sub_stage_id: Optional[str] = None


class MoveResultOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    item_id: str = Field(..., alias="itemId")
    status: str = "success"
    quantity: int
    next_stage_id: str = Field(..., alias="nextStageId")
    next_sub_stage_id: Optional[str] = Field(None, alias="nextSubStageId")
    from_stage_id: Optional[str] = Field(None, alias="fromStageId")
    from_sub_stage_id: Optional[str] = Field(None, alias="fromSubStageId")

    @classmethod
    def from_result(cls, r: ItemMoveResult) -> "MoveResultOut":
        return cls(
            item_id=r.item_id,
            quantity=r.quantity,
            next_stage_id=r.stage_id,
            next_sub_stage_id=r.sub_stage_id,
            from_stage_id=r.from_stage_id,
            from_sub_stage_id=r.from_sub_stage_id,
        )


class MoveErrorOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    item_id: str = Field(..., alias="itemId")
    error: str
    error_code: str

    @classmethod
    def from_failure(cls, f: ItemMoveFailure) -> "MoveErrorOut":
        return cls(item_id=f.item_id, error=f.message, error_code=f.code)


class MoveBatchOut(BaseModel):
    message: str
    status: str
    results: List[MoveResultOut]
    errors: List[MoveErrorOut]

    @classmethod
    def from_outcome(cls, outcome: BatchOutcome) -> "MoveBatchOut":
        return cls(
            message=outcome.message,
            status=outcome.status.value,
            results=[MoveResultOut.from_result(r) for r in outcome.results],
            errors=[MoveErrorOut.from_failure(f) for f in outcome.errors],
        )
