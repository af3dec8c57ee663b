"""
统一导出 ORM 模型。
"""

from importlib import import_module


def _export(module_name: str, class_name: str) -> None:
    module = import_module(module_name)
    globals()[class_name] = getattr(module, class_name)


MODEL_SPECS = [
    # -------- 工序拓扑 --------
    ("app.models.workflow_stage", "WorkflowStage"),
    ("app.models.workflow_sub_stage", "WorkflowSubStage"),
    # -------- 订单 / 条目 --------
    ("app.models.order", "Order"),
    ("app.models.item", "Item"),
    # -------- 分配账 / 流转历史 --------
    ("app.models.item_stage_allocation", "ItemStageAllocation"),
    ("app.models.item_movement_history", "ItemMovementHistory"),
]

for _module_name, _class_name in MODEL_SPECS:
    _export(_module_name, _class_name)

__all__ = [name for _, name in MODEL_SPECS]
