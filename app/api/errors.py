# app/api/errors.py
from __future__ import annotations

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from app.api.problem import make_problem
from app.services.workflow_errors import DataInconsistency, WorkflowError

log = logging.getLogger("stageflow.api")


def workflow_error_handler(_: Request, exc: WorkflowError) -> JSONResponse:
    """
    单次（非批量）调用中的业务错误 → Problem 信封。
    """
    context = dict(exc.context or {})
    if exc.item_id is not None:
        context.setdefault("item_id", exc.item_id)
    if isinstance(exc, DataInconsistency):
        log.error("data inconsistency: %s", exc.message)
    return JSONResponse(
        status_code=int(exc.http_status),
        content=make_problem(
            status_code=int(exc.http_status),
            error_code=exc.code,
            message=exc.message,
            context=context or None,
        ),
    )
