# app/api/routers/items_schemas.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class AllocationOut(BaseModel):
    id: str
    stage_id: str
    sub_stage_id: Optional[str]
    stage_name: Optional[str]
    sub_stage_name: Optional[str]
    label: str
    quantity: int
    created_at: datetime
    updated_at: datetime
    moved_by: Optional[str]

    model_config = ConfigDict(from_attributes=True)


class ItemSummaryOut(BaseModel):
    id: str
    order_id: str
    sku: str
    total_quantity: int
    instance_details: Optional[Dict[str, Any]] = None
    quantity_in_new_pool: int
    completed_quantity: int
    remaining_quantity: int
    allocations: List[AllocationOut] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class HistoryEntryOut(BaseModel):
    id: str
    item_id: str
    direction: str = Field(..., description="entry / forward / rework")
    from_stage_id: Optional[str]
    from_sub_stage_id: Optional[str]
    from_label: Optional[str]
    to_stage_id: str
    to_sub_stage_id: Optional[str]
    to_label: str
    quantity: int
    moved_at: datetime
    moved_by: Optional[str]
    rework_reason: Optional[str]

    model_config = ConfigDict(from_attributes=True)

    @computed_field  # type: ignore[misc]
    @property
    def is_rework(self) -> bool:
        return self.direction == "rework"
