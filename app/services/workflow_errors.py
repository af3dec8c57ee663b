# app/services/workflow_errors.py
from __future__ import annotations

from typing import Any, Dict, Optional


class WorkflowError(Exception):
    """
    工序流转业务错误基类：

    - code：稳定错误码（Problem.error_code）
    - http_status：单独调用时的 HTTP 状态；批量模式下只进 errors 列表
    - item_id：批量内定位到具体条目
    """

    code = "workflow_error"
    http_status = 400

    def __init__(
        self,
        message: str,
        *,
        item_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.item_id = item_id
        self.context = context or {}

    def for_item(self, item_id: str) -> "WorkflowError":
        if self.item_id is None:
            self.item_id = item_id
        return self


class InvalidRequest(WorkflowError):
    code = "validation_error"
    http_status = 422


class NotFoundError(WorkflowError):
    code = "not_found"
    http_status = 404


class OrderingViolation(WorkflowError):
    code = "ordering_violation"
    http_status = 409


class InsufficientQuantity(WorkflowError):
    code = "insufficient_quantity"
    http_status = 409


class NoEligibleSource(WorkflowError):
    code = "no_eligible_source"
    http_status = 409


class StageInUse(WorkflowError):
    code = "stage_in_use"
    http_status = 409


class PermissionDenied(WorkflowError):
    code = "forbidden"
    http_status = 403


class DataInconsistency(WorkflowError):
    """
    源分配已改动后，目标分配或历史写入失败。
    不自动重试；需要人工核对该条目的分配账。
    """

    code = "data_inconsistency"
    http_status = 500
