# app/api/routers/workflow_schemas.py
from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class SubStageOut(BaseModel):
    id: str
    stage_id: str
    name: str
    sequence_order: int
    location: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class StageOut(BaseModel):
    id: str
    name: str
    sequence_order: int
    location: Optional[str] = None
    sub_stages: List[SubStageOut] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class WorkflowOut(BaseModel):
    stages: List[StageOut]


class SubsequentPositionOut(BaseModel):
    id: str
    stage_id: str
    sub_stage_id: Optional[str]
    name: str = Field(..., description="展示名：'Stage' 或 'Stage > Sub-stage'")
    is_sub_stage: bool
    parent_stage_id: Optional[str] = None
    parent_stage_name: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class StageItemOut(BaseModel):
    allocation_id: str
    item_id: str
    sku: str
    order_id: str
    order_number: str
    quantity: int
    stage_id: str
    sub_stage_id: Optional[str]
    entered_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PositionCheckOut(BaseModel):
    stage_id: str
    sub_stage_id: Optional[str]
    is_last_workflow_stage: bool
    next_stage_id: Optional[str] = None
    next_sub_stage_id: Optional[str] = None
    previous_stage_id: Optional[str] = None
    previous_sub_stage_id: Optional[str] = None


# ---------------- 配置写入 ----------------


class StageCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    location: Optional[str] = Field(None, max_length=128)


class StageUpdateIn(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=128)
    location: Optional[str] = Field(None, max_length=128)


class ReorderIn(BaseModel):
    direction: Literal["up", "down"]
