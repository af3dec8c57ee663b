# app/api/routers/items.py
from __future__ import annotations

from fastapi import APIRouter

from app.api.routers import item_moves_routes, items_routes

router = APIRouter(prefix="/items", tags=["items"])


def _register_all_routes() -> None:
    # 流转路由先注册：/items/move/* 与 /items/{item_id} 不冲突（方法不同），保持顺序稳定
    item_moves_routes.register(router)
    items_routes.register(router)


_register_all_routes()

__all__ = ["router"]
