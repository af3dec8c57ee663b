# app/services/movement_engine.py
"""
条目流转引擎：前移（forward）、返工（rework）、从 new pool 分配（allocate）。

执行模型：
  - 整批先做权限与请求形状校验（不读库）
  - 拓扑每批读一次
  - 每个条目一个独立事务：锁 Item 行 → 选来源 → 校验次序 → apply_move → 校验分配账
  - 条目之间互不影响（部分成功），结果与错误分别汇总
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import AppSettings, get_settings
from app.core.tx import tx_commit
from app.metrics import BATCH_LAT, MOVED_QTY, MOVES
from app.models.item import Item
from app.services.allocation_ledger import (
    ExplicitTargetStrategy,
    LatestAllocationStrategy,
    SourceStrategy,
    apply_move,
    ensure_forward,
    find_allocation,
    load_allocations,
    lock_item,
    position_of,
    select_latest_allocation,
    select_source_allocation,
    verify_item_ledger,
)
from app.services.capabilities import Actor, Capability, RolePolicy
from app.services.workflow_errors import (
    DataInconsistency,
    InsufficientQuantity,
    InvalidRequest,
    NoEligibleSource,
    NotFoundError,
    OrderingViolation,
    WorkflowError,
)
from app.services.workflow_repo import load_topology
from app.services.workflow_topology import Position, WorkflowTopology

log = logging.getLogger("stageflow.movement")

DIRECTION_FORWARD = "forward"
DIRECTION_REWORK = "rework"
DIRECTION_ALLOCATE = "allocate"

REWORK_REASON_MIN = 3
REWORK_REASON_MAX = 255


# ----------------------------------------------------------------------
# 请求
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class MoveLine:
    item_id: str
    quantity: int


@dataclass(frozen=True)
class ForwardMoveRequest:
    items: Sequence[MoveLine]
    strategy: SourceStrategy = field(default_factory=LatestAllocationStrategy)

    @classmethod
    def build(
        cls,
        items: Sequence[MoveLine],
        *,
        target_stage_id: Optional[str] = None,
        target_sub_stage_id: Optional[str] = None,
        source_stage_id: Optional[str] = None,
    ) -> "ForwardMoveRequest":
        """有目标 → ExplicitTargetStrategy；无目标 → LatestAllocationStrategy。"""
        if target_stage_id is None and target_sub_stage_id is None:
            return cls(items=list(items), strategy=LatestAllocationStrategy(source_stage_id=source_stage_id))
        return cls(
            items=list(items),
            strategy=ExplicitTargetStrategy(
                target_stage_id=target_stage_id,
                target_sub_stage_id=target_sub_stage_id,
                preferred_source_stage_id=source_stage_id,
            ),
        )


@dataclass(frozen=True)
class ReworkLine:
    item_id: str
    quantity: int
    source_stage_id: str
    source_sub_stage_id: Optional[str] = None


@dataclass(frozen=True)
class ReworkRequest:
    items: Sequence[ReworkLine]
    reason: str
    target_stage_id: str
    target_sub_stage_id: Optional[str] = None


@dataclass(frozen=True)
class AllocateRequest:
    items: Sequence[MoveLine]
    target_stage_id: Optional[str] = None
    target_sub_stage_id: Optional[str] = None


# ----------------------------------------------------------------------
# 结果
# ----------------------------------------------------------------------


@dataclass
class ItemMoveResult:
    item_id: str
    quantity: int
    stage_id: str
    sub_stage_id: Optional[str]
    from_stage_id: Optional[str] = None
    from_sub_stage_id: Optional[str] = None


@dataclass
class ItemMoveFailure:
    item_id: str
    code: str
    message: str


class BatchStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"

    @property
    def http_status(self) -> int:
        return {BatchStatus.SUCCESS: 200, BatchStatus.PARTIAL: 207, BatchStatus.FAILED: 500}[self]


@dataclass
class BatchOutcome:
    direction: str
    results: List[ItemMoveResult] = field(default_factory=list)
    errors: List[ItemMoveFailure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results) + len(self.errors)

    @property
    def status(self) -> BatchStatus:
        if not self.errors:
            return BatchStatus.SUCCESS
        if not self.results:
            return BatchStatus.FAILED
        return BatchStatus.PARTIAL

    @property
    def message(self) -> str:
        verb = {DIRECTION_FORWARD: "moved", DIRECTION_REWORK: "reworked", DIRECTION_ALLOCATE: "allocated"}.get(
            self.direction, "processed"
        )
        if not self.errors:
            return f"Successfully {verb} {len(self.results)} items."
        return (
            f"Processed {self.total} items. Success: {len(self.results)}, "
            f"Failures: {len(self.errors)}."
        )


ItemHandler = Callable[[AsyncSession, Item, object], Awaitable[ItemMoveResult]]


# ----------------------------------------------------------------------
# 引擎
# ----------------------------------------------------------------------


class MovementEngine:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        policy: Optional[RolePolicy] = None,
        settings: Optional[AppSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._session_maker = session_maker
        self._policy = policy or RolePolicy()
        self._settings = settings or get_settings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # 对外入口
    # ------------------------------------------------------------------

    async def move_forward(self, actor: Actor, request: ForwardMoveRequest) -> BatchOutcome:
        self._policy.ensure(actor, Capability.MOVE_ITEMS)
        self._check_batch_size(request.items)
        topology = await self._load_topology(actor.organization_id)
        strategy = request.strategy

        async def _handle(session: AsyncSession, item: Item, line: MoveLine) -> ItemMoveResult:
            return await self._forward_one(session, item, line, topology, strategy, actor)

        return await self._run_batch(DIRECTION_FORWARD, actor, request.items, _handle)

    async def rework(self, actor: Actor, request: ReworkRequest) -> BatchOutcome:
        self._policy.ensure(actor, Capability.REWORK_ITEMS)
        self._check_batch_size(request.items)
        reason = self._clean_reason(request.reason)
        topology = await self._load_topology(actor.organization_id)

        async def _handle(session: AsyncSession, item: Item, line: ReworkLine) -> ItemMoveResult:
            target = topology.resolve_target(request.target_stage_id, request.target_sub_stage_id)
            return await self._rework_one(session, item, line, topology, target, reason, actor)

        return await self._run_batch(DIRECTION_REWORK, actor, request.items, _handle)

    async def allocate(self, actor: Actor, request: AllocateRequest) -> BatchOutcome:
        self._policy.ensure(actor, Capability.ALLOCATE_ITEMS)
        self._check_batch_size(request.items)
        topology = await self._load_topology(actor.organization_id)

        async def _handle(session: AsyncSession, item: Item, line: MoveLine) -> ItemMoveResult:
            if request.target_stage_id is None and request.target_sub_stage_id is None:
                target = topology.first_position()
                if target is None:
                    raise NotFoundError("Workflow has no stages; configure the workflow first.")
            else:
                target = topology.resolve_target(request.target_stage_id, request.target_sub_stage_id)
            return await self._allocate_one(session, item, line, target, actor)

        return await self._run_batch(DIRECTION_ALLOCATE, actor, request.items, _handle)

    # ------------------------------------------------------------------
    # 批处理骨架
    # ------------------------------------------------------------------

    def _check_batch_size(self, lines: Sequence[object]) -> None:
        if not lines:
            raise InvalidRequest("At least one item is required.")
        limit = int(self._settings.MOVE_BATCH_MAX_ITEMS)
        if len(lines) > limit:
            raise InvalidRequest(f"Too many items in one request ({len(lines)} > {limit}).")

    @staticmethod
    def _clean_reason(reason: Optional[str]) -> str:
        text = (reason or "").strip()
        if len(text) < REWORK_REASON_MIN:
            raise InvalidRequest(
                f"Rework reason must be at least {REWORK_REASON_MIN} characters long."
            )
        if len(text) > REWORK_REASON_MAX:
            raise InvalidRequest(
                f"Rework reason must be at most {REWORK_REASON_MAX} characters long."
            )
        return text

    async def _load_topology(self, organization_id: str) -> WorkflowTopology:
        async with self._session_maker() as session:
            return await load_topology(session, organization_id=organization_id)

    async def _run_batch(
        self,
        direction: str,
        actor: Actor,
        lines: Sequence[object],
        handler: ItemHandler,
    ) -> BatchOutcome:
        outcome = BatchOutcome(direction=direction)
        with BATCH_LAT.labels(direction).time():
            for line in lines:
                item_id = str(getattr(line, "item_id"))
                try:
                    qty = int(getattr(line, "quantity"))
                    if qty <= 0:
                        raise InvalidRequest(
                            f"Quantity for item {item_id} must be a positive number (got {qty}).",
                            item_id=item_id,
                        )
                    async with tx_commit(
                        self._session_maker, lock_timeout_ms=self._settings.LOCK_TIMEOUT_MS
                    ) as session:
                        item = await lock_item(
                            session, organization_id=actor.organization_id, item_id=item_id
                        )
                        result = await handler(session, item, line)
                        await verify_item_ledger(session, item=item)
                except DataInconsistency as e:
                    e.for_item(item_id)
                    log.error("%s DATA_INCONSISTENCY item=%s: %s", direction, item_id, e.message)
                    outcome.errors.append(ItemMoveFailure(item_id, e.code, e.message))
                    MOVES.labels(direction, "inconsistent").inc()
                    continue
                except WorkflowError as e:
                    e.for_item(item_id)
                    log.warning("%s rejected item=%s code=%s: %s", direction, item_id, e.code, e.message)
                    outcome.errors.append(ItemMoveFailure(item_id, e.code, e.message))
                    MOVES.labels(direction, "rejected").inc()
                    continue
                except SQLAlchemyError:
                    log.exception("%s storage failure item=%s", direction, item_id)
                    outcome.errors.append(
                        ItemMoveFailure(
                            item_id,
                            "storage_error",
                            f"Storage error while processing item {item_id}; no changes were applied.",
                        )
                    )
                    MOVES.labels(direction, "error").inc()
                    continue
                except Exception:
                    # 未预期的错误只记到本条目上，事务已回滚，批次继续
                    log.exception("%s unexpected failure item=%s", direction, item_id)
                    outcome.errors.append(
                        ItemMoveFailure(
                            item_id,
                            "internal_error",
                            f"Unexpected error while processing item {item_id}; no changes were applied.",
                        )
                    )
                    MOVES.labels(direction, "error").inc()
                    continue

                outcome.results.append(result)
                MOVES.labels(direction, "success").inc()
                MOVED_QTY.labels(direction).inc(result.quantity)
                log.info(
                    "%s item=%s qty=%s %s/%s -> %s/%s by=%s",
                    direction,
                    item_id,
                    result.quantity,
                    result.from_stage_id,
                    result.from_sub_stage_id,
                    result.stage_id,
                    result.sub_stage_id,
                    actor.user_id,
                )
        return outcome

    # ------------------------------------------------------------------
    # 单条目：前移
    # ------------------------------------------------------------------

    async def _forward_one(
        self,
        session: AsyncSession,
        item: Item,
        line: MoveLine,
        topology: WorkflowTopology,
        strategy: SourceStrategy,
        actor: Actor,
    ) -> ItemMoveResult:
        allocations = await load_allocations(session, item_id=item.id)

        if isinstance(strategy, ExplicitTargetStrategy):
            target = topology.resolve_target(strategy.target_stage_id, strategy.target_sub_stage_id)
            source = select_source_allocation(
                allocations,
                item_id=item.id,
                requested_quantity=line.quantity,
                topology=topology,
                target=target,
                preferred_source_stage_id=strategy.preferred_source_stage_id,
            )
            source_pos = position_of(source)
        else:
            source = select_latest_allocation(
                allocations, item_id=item.id, source_stage_id=strategy.source_stage_id
            )
            source_pos = position_of(source)
            if not topology.contains(source_pos):
                raise NotFoundError(
                    f"Current position {source_pos.stage_id}/{source_pos.sub_stage_id} of item "
                    f"{item.id} not found in workflow.",
                    item_id=item.id,
                )
            target = topology.next_position(source_pos)
            if target is None:
                raise OrderingViolation(
                    f"Cannot determine next stage for item {item.id}: "
                    f"{topology.describe(source_pos)} is the end of the workflow.",
                    item_id=item.id,
                )

        ensure_forward(topology, item.id, source_pos, target)

        if line.quantity > int(source.quantity):
            raise InsufficientQuantity(
                f"Requested quantity ({line.quantity}) exceeds available quantity ({source.quantity}) "
                f"at {topology.describe(source_pos)} for item {item.id}.",
                item_id=item.id,
            )

        applied = await apply_move(
            session,
            item=item,
            source=source,
            quantity=line.quantity,
            target=target,
            actor_id=actor.user_id,
            now=self._clock(),
        )
        return _result(item.id, applied.quantity, applied.source, applied.target)

    # ------------------------------------------------------------------
    # 单条目：返工
    # ------------------------------------------------------------------

    async def _rework_one(
        self,
        session: AsyncSession,
        item: Item,
        line: ReworkLine,
        topology: WorkflowTopology,
        target: Position,
        reason: str,
        actor: Actor,
    ) -> ItemMoveResult:
        source_pos = Position(line.source_stage_id, line.source_sub_stage_id)
        if not topology.contains(source_pos):
            raise NotFoundError(
                f"Source position {source_pos.stage_id}/{source_pos.sub_stage_id} not found in workflow.",
                item_id=item.id,
            )

        source = await find_allocation(session, item_id=item.id, position=source_pos)
        if source is None:
            raise NoEligibleSource(
                f"Allocation for item {item.id} not found at {topology.describe(source_pos)}.",
                item_id=item.id,
            )
        if line.quantity > int(source.quantity):
            raise InsufficientQuantity(
                f"Requested rework quantity ({line.quantity}) exceeds available quantity "
                f"({source.quantity}) at {topology.describe(source_pos)} for item {item.id}.",
                item_id=item.id,
            )

        if target == source_pos:
            raise OrderingViolation(
                f"Cannot rework item {item.id} to its current position ({topology.describe(source_pos)}).",
                item_id=item.id,
            )
        if self._settings.REWORK_REQUIRE_EARLIER_TARGET and not topology.is_before(target, source_pos):
            raise OrderingViolation(
                f"Rework target {topology.describe(target)} is not before the current position "
                f"{topology.describe(source_pos)} of item {item.id}.",
                item_id=item.id,
            )

        applied = await apply_move(
            session,
            item=item,
            source=source,
            quantity=line.quantity,
            target=target,
            actor_id=actor.user_id,
            now=self._clock(),
            rework_reason=reason,
        )
        return _result(item.id, applied.quantity, applied.source, applied.target)

    # ------------------------------------------------------------------
    # 单条目：new pool → 工序
    # ------------------------------------------------------------------

    async def _allocate_one(
        self,
        session: AsyncSession,
        item: Item,
        line: MoveLine,
        target: Position,
        actor: Actor,
    ) -> ItemMoveResult:
        snapshot = await verify_item_ledger(session, item=item)
        if line.quantity > snapshot.new_pool_quantity:
            raise InsufficientQuantity(
                f"Requested quantity ({line.quantity}) exceeds the new pool quantity "
                f"({snapshot.new_pool_quantity}) of item {item.id}.",
                item_id=item.id,
            )
        applied = await apply_move(
            session,
            item=item,
            source=None,
            quantity=line.quantity,
            target=target,
            actor_id=actor.user_id,
            now=self._clock(),
        )
        return _result(item.id, applied.quantity, None, applied.target)


def _result(item_id: str, quantity: int, source: Optional[Position], target: Position) -> ItemMoveResult:
    return ItemMoveResult(
        item_id=item_id,
        quantity=int(quantity),
        stage_id=target.stage_id,
        sub_stage_id=target.sub_stage_id,
        from_stage_id=source.stage_id if source else None,
        from_sub_stage_id=source.sub_stage_id if source else None,
    )
