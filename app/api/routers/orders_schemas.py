# app/api/routers/orders_schemas.py
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# instance_details：string → 标量，只校验形状
DetailValue = Optional[Union[str, int, float, bool]]


class ItemCreateIn(BaseModel):
    sku: str = Field(..., min_length=1, max_length=128)
    total_quantity: int = Field(..., gt=0)
    instance_details: Optional[Dict[str, DetailValue]] = None


class OrderCreateIn(BaseModel):
    order_number: str = Field(..., min_length=1, max_length=64)
    customer_name: Optional[str] = Field(None, max_length=255)
    items: List[ItemCreateIn] = Field(default_factory=list)


class ItemOut(BaseModel):
    id: str
    order_id: str
    sku: str
    total_quantity: int
    instance_details: Optional[Dict[str, DetailValue]] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrderOut(BaseModel):
    id: str
    order_number: str
    customer_name: Optional[str]
    created_at: datetime
    items: List[ItemOut] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)
