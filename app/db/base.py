# app/db/base.py
from __future__ import annotations

import importlib
import logging
import pkgutil
from typing import Iterable, Iterator, List, Set

from sqlalchemy.orm import DeclarativeBase, configure_mappers

log = logging.getLogger("stageflow.models")


class Base(DeclarativeBase):
    """全局唯一 ORM Base"""

    pass


_INITIALIZED: bool = False  # 防重复初始化


def _iter_model_modules(pkg_name: str = "app.models") -> Iterator[str]:
    """发现 app.models.* 下的所有模块（排除以下划线开头的内部模块）"""
    pkg = importlib.import_module(pkg_name)
    for _, name, _ in pkgutil.walk_packages(list(getattr(pkg, "__path__", [])), prefix=pkg_name + "."):
        if name.rsplit(".", 1)[-1].startswith("_"):
            continue
        yield name


def init_models(*, exclude: Iterable[str] | None = None, force: bool = False) -> None:
    """
    集中导入模型 + 固化关系映射：
      1) 先显式导入关键模型（保证字符串关系目标类已注册）
      2) 再导入 app.models.* 补齐遗漏
      3) 最后统一 configure_mappers()
    """
    global _INITIALIZED
    if _INITIALIZED and not force:
        return

    ex: Set[str] = set(exclude or [])
    loaded: List[str] = []

    explicit_chain = [
        "app.models.workflow_stage",
        "app.models.workflow_sub_stage",
        "app.models.order",
        "app.models.item",
        "app.models.item_stage_allocation",
        "app.models.item_movement_history",
    ]
    for mod in explicit_chain + list(_iter_model_modules()):
        if mod in ex or mod in loaded:
            continue
        importlib.import_module(mod)
        loaded.append(mod)

    configure_mappers()
    _INITIALIZED = True
    log.info("ORM models initialized & mappers configured (loaded %d modules)", len(loaded))
