# app/api/routers/item_moves_routes.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.api.deps import get_current_actor, get_movement_engine
from app.api.routers.item_moves_schemas import AllocateIn, ForwardMoveIn, MoveBatchOut, ReworkMoveIn
from app.services.capabilities import Actor
from app.services.movement_engine import (
    AllocateRequest,
    BatchOutcome,
    ForwardMoveRequest,
    MovementEngine,
    MoveLine,
    ReworkLine,
    ReworkRequest,
)


def _batch_response(outcome: BatchOutcome) -> JSONResponse:
    # 200 全部成功 / 207 部分成功 / 500 全部失败
    body = MoveBatchOut.from_outcome(outcome)
    return JSONResponse(
        status_code=outcome.status.http_status,
        content=body.model_dump(mode="json", by_alias=True),
    )


def register(router: APIRouter) -> None:
    @router.post("/move/forward", response_model=MoveBatchOut)
    async def move_items_forward(
        payload: ForwardMoveIn,
        actor: Actor = Depends(get_current_actor),
        engine: MovementEngine = Depends(get_movement_engine),
    ) -> JSONResponse:
        """
        批量前移：

        - 指定 target_stage_id / target_sub_stage_id：在目标之前的分配里选来源
        - 都不指定：取条目最近的分配，移到其下一个位置
        - 每个条目独立事务，部分成功
        """
        request = ForwardMoveRequest.build(
            [MoveLine(item_id=i.id, quantity=i.quantity) for i in payload.items],
            target_stage_id=payload.target_stage_id,
            target_sub_stage_id=payload.target_sub_stage_id,
            source_stage_id=payload.source_stage_id,
        )
        outcome = await engine.move_forward(actor, request)
        return _batch_response(outcome)

    @router.post("/move/rework", response_model=MoveBatchOut)
    async def move_items_rework(
        payload: ReworkMoveIn,
        actor: Actor = Depends(get_current_actor),
        engine: MovementEngine = Depends(get_movement_engine),
    ) -> JSONResponse:
        request = ReworkRequest(
            items=[
                ReworkLine(
                    item_id=i.id,
                    quantity=i.quantity,
                    source_stage_id=i.source_stage_id,
                    source_sub_stage_id=i.source_sub_stage_id,
                )
                for i in payload.items
            ],
            reason=payload.rework_reason,
            target_stage_id=payload.target_rework_stage_id,
            target_sub_stage_id=payload.target_rework_sub_stage_id,
        )
        outcome = await engine.rework(actor, request)
        return _batch_response(outcome)

    @router.post("/allocate", response_model=MoveBatchOut)
    async def allocate_items(
        payload: AllocateIn,
        actor: Actor = Depends(get_current_actor),
        engine: MovementEngine = Depends(get_movement_engine),
    ) -> JSONResponse:
        """new pool → 工序（历史 from_* 为空）。"""
        request = AllocateRequest(
            items=[MoveLine(item_id=i.id, quantity=i.quantity) for i in payload.items],
            target_stage_id=payload.target_stage_id,
            target_sub_stage_id=payload.target_sub_stage_id,
        )
        outcome = await engine.allocate(actor, request)
        return _batch_response(outcome)
