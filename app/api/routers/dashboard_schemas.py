# app/api/routers/dashboard_schemas.py
from __future__ import annotations

from datetime import date as _date
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class DailyMovementOut(BaseModel):
    # 类型用 _date，字段名仍叫 date
    date: _date = Field(..., description="统计日期（UTC，自然日）")
    forward: int = Field(..., description="当天前移数量（含 new pool 进入）")
    rework: int = Field(..., description="当天返工数量")

    model_config = ConfigDict(from_attributes=True)


class BottleneckItemOut(BaseModel):
    item_id: str
    sku: str
    order_number: str
    current_stage_name: str
    current_sub_stage_name: Optional[str]
    time_in_current_stage: str = Field(..., description="停留时长（可读文本）")
    stage_entry_time: datetime
    quantity: int

    model_config = ConfigDict(from_attributes=True)


class StageQuantityOut(BaseModel):
    stage_id: str
    stage_name: str
    sequence_order: int
    quantity: int
    sub_stages: Dict[str, int] = Field(default_factory=dict, description="sub_stage_id → 数量")

    model_config = ConfigDict(from_attributes=True)


class StageStatsOut(BaseModel):
    stages: List[StageQuantityOut]
    total_quantity: int
    in_workflow_quantity: int
    completed_quantity: int
    new_pool_quantity: int
    active_orders: int
    items_in_rework: int
    items_waiting_over_7_days: int

    model_config = ConfigDict(from_attributes=True)
