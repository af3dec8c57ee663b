# app/services/workflow_topology.py
"""
工序拓扑纯函数（不访问数据库）：

- 工序按 (sequence_order, id) 升序；子工序在父工序内同样排序
- 位置 Position = (stage_id, sub_stage_id | None)
- next / previous 只找“紧邻”位置；subsequent 列出当前位置之后的全部位置

输入顺序不影响结果：WorkflowTopology 构造时统一重排。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from app.services.workflow_errors import NotFoundError


@dataclass(frozen=True)
class SubStageNode:
    id: str
    name: str
    sequence_order: int
    location: Optional[str] = None


@dataclass(frozen=True)
class StageNode:
    id: str
    name: str
    sequence_order: int
    sub_stages: Tuple[SubStageNode, ...] = ()
    location: Optional[str] = None

    @property
    def has_sub_stages(self) -> bool:
        return len(self.sub_stages) > 0


@dataclass(frozen=True)
class Position:
    stage_id: str
    sub_stage_id: Optional[str] = None


@dataclass(frozen=True)
class SubsequentPosition:
    id: str
    stage_id: str
    sub_stage_id: Optional[str]
    name: str
    is_sub_stage: bool
    parent_stage_id: Optional[str] = None
    parent_stage_name: Optional[str] = None

    @property
    def position(self) -> Position:
        return Position(self.stage_id, self.sub_stage_id)


RankKey = Tuple[int, str, int, int, str]


def _order_key(node) -> Tuple[int, str]:
    return (int(node.sequence_order), str(node.id))


@dataclass
class WorkflowTopology:
    stages: List[StageNode] = field(default_factory=list)

    def __post_init__(self) -> None:
        ordered: List[StageNode] = []
        for s in sorted(self.stages, key=_order_key):
            subs = tuple(sorted(s.sub_stages, key=_order_key))
            ordered.append(
                StageNode(
                    id=s.id,
                    name=s.name,
                    sequence_order=s.sequence_order,
                    sub_stages=subs,
                    location=s.location,
                )
            )
        self.stages = ordered

    # ------------------------------------------------------------------
    # 构造
    # ------------------------------------------------------------------

    @classmethod
    def from_models(cls, rows: Iterable) -> "WorkflowTopology":
        """从 ORM WorkflowStage（含 sub_stages）构造。"""
        stages = [
            StageNode(
                id=r.id,
                name=r.name,
                sequence_order=r.sequence_order,
                location=r.location,
                sub_stages=tuple(
                    SubStageNode(
                        id=ss.id,
                        name=ss.name,
                        sequence_order=ss.sequence_order,
                        location=ss.location,
                    )
                    for ss in (r.sub_stages or [])
                ),
            )
            for r in rows
        ]
        return cls(stages=stages)

    # ------------------------------------------------------------------
    # 查找
    # ------------------------------------------------------------------

    def find_stage(self, stage_id: Optional[str]) -> Optional[StageNode]:
        for s in self.stages:
            if s.id == stage_id:
                return s
        return None

    def stage(self, stage_id: str) -> StageNode:
        s = self.find_stage(stage_id)
        if s is None:
            raise NotFoundError(f"Stage {stage_id} not found in workflow.")
        return s

    def find_sub_stage(self, sub_stage_id: Optional[str]) -> Optional[Tuple[StageNode, SubStageNode]]:
        for s in self.stages:
            for ss in s.sub_stages:
                if ss.id == sub_stage_id:
                    return s, ss
        return None

    def _sub_index(self, stage: StageNode, sub_stage_id: str) -> int:
        for idx, ss in enumerate(stage.sub_stages):
            if ss.id == sub_stage_id:
                return idx
        raise NotFoundError(f"Sub-stage {sub_stage_id} not found in stage {stage.name!r} ({stage.id}).")

    def _stage_index(self, stage_id: str) -> int:
        for idx, s in enumerate(self.stages):
            if s.id == stage_id:
                return idx
        raise NotFoundError(f"Stage {stage_id} not found in workflow.")

    def contains(self, position: Position) -> bool:
        s = self.find_stage(position.stage_id)
        if s is None:
            return False
        if position.sub_stage_id is None:
            return True
        return any(ss.id == position.sub_stage_id for ss in s.sub_stages)

    def describe(self, position: Position) -> str:
        """展示名：'Stage' 或 'Stage > Sub-stage'；未知 id 原样返回。"""
        s = self.find_stage(position.stage_id)
        if s is None:
            return str(position.stage_id)
        if position.sub_stage_id is None:
            return s.name
        for ss in s.sub_stages:
            if ss.id == position.sub_stage_id:
                return f"{s.name} > {ss.name}"
        return f"{s.name} > {position.sub_stage_id}"

    # ------------------------------------------------------------------
    # 位置与次序
    # ------------------------------------------------------------------

    def _entry_position(self, stage: StageNode) -> Position:
        if stage.has_sub_stages:
            return Position(stage.id, stage.sub_stages[0].id)
        return Position(stage.id, None)

    def _exit_position(self, stage: StageNode) -> Position:
        if stage.has_sub_stages:
            return Position(stage.id, stage.sub_stages[-1].id)
        return Position(stage.id, None)

    def positions(self) -> List[Position]:
        """所有可承载分配的位置，按流转次序展开。"""
        out: List[Position] = []
        for s in self.stages:
            if s.has_sub_stages:
                out.extend(Position(s.id, ss.id) for ss in s.sub_stages)
            else:
                out.append(Position(s.id, None))
        return out

    def first_position(self) -> Optional[Position]:
        if not self.stages:
            return None
        return self._entry_position(self.stages[0])

    def rank(self, position: Position) -> RankKey:
        """
        可比较的次序键。子工序为空的位置排在同工序所有子工序之前。
        未知工序 / 子工序抛 NotFoundError。
        """
        s = self.stage(position.stage_id)
        if position.sub_stage_id is None:
            return (int(s.sequence_order), s.id, 0, 0, "")
        idx = self._sub_index(s, position.sub_stage_id)
        ss = s.sub_stages[idx]
        return (int(s.sequence_order), s.id, 1, int(ss.sequence_order), ss.id)

    def is_before(self, a: Position, b: Position) -> bool:
        return self.rank(a) < self.rank(b)

    def resolve_target(self, stage_id: Optional[str], sub_stage_id: Optional[str]) -> Position:
        """
        把调用方给出的 (stage, sub_stage) 归一成有效位置：

        - 只给 sub_stage：由其父工序补全 stage
        - 只给 stage 且该工序有子工序：落到第一个子工序
        - sub_stage 不属于 stage（含 stage 无子工序）→ NotFoundError
        """
        if stage_id is None and sub_stage_id is None:
            raise NotFoundError("No target stage supplied.")

        if stage_id is None:
            found = self.find_sub_stage(sub_stage_id)
            if found is None:
                raise NotFoundError(f"Target sub-stage {sub_stage_id} not found in workflow.")
            parent, _ = found
            return Position(parent.id, sub_stage_id)

        s = self.find_stage(stage_id)
        if s is None:
            raise NotFoundError(f"Target stage {stage_id} not found in workflow.")

        if sub_stage_id is None:
            return self._entry_position(s)

        if not s.has_sub_stages:
            raise NotFoundError(
                f"Target stage {s.name!r} ({s.id}) has no sub-stages; sub-stage {sub_stage_id} is invalid."
            )
        self._sub_index(s, sub_stage_id)
        return Position(s.id, sub_stage_id)

    # ------------------------------------------------------------------
    # 相邻位置
    # ------------------------------------------------------------------

    def next_position(self, current: Position) -> Optional[Position]:
        idx = self._stage_index(current.stage_id)
        stage = self.stages[idx]

        if current.sub_stage_id is not None:
            sub_idx = self._sub_index(stage, current.sub_stage_id)
            if sub_idx < len(stage.sub_stages) - 1:
                return Position(stage.id, stage.sub_stages[sub_idx + 1].id)
            # 已是最后一个子工序：进入下一工序

        if idx < len(self.stages) - 1:
            return self._entry_position(self.stages[idx + 1])

        # 流程末端
        return None

    def previous_position(self, current: Position) -> Optional[Position]:
        idx = self._stage_index(current.stage_id)
        stage = self.stages[idx]

        if current.sub_stage_id is not None:
            sub_idx = self._sub_index(stage, current.sub_stage_id)
            if sub_idx > 0:
                return Position(stage.id, stage.sub_stages[sub_idx - 1].id)
            # 第一个子工序：回到上一工序的最后位置（不回落到父工序本身）

        if idx > 0:
            return self._exit_position(self.stages[idx - 1])

        return None

    def subsequent_positions(self, current: Position) -> List[SubsequentPosition]:
        idx = self._stage_index(current.stage_id)
        stage = self.stages[idx]
        out: List[SubsequentPosition] = []

        if current.sub_stage_id is not None and stage.has_sub_stages:
            sub_idx = self._sub_index(stage, current.sub_stage_id)
            for ss in stage.sub_stages[sub_idx + 1 :]:
                out.append(_sub_entry(stage, ss))

        for s in self.stages[idx + 1 :]:
            if s.has_sub_stages:
                out.extend(_sub_entry(s, ss) for ss in s.sub_stages)
            else:
                out.append(_stage_entry(s))
        return out

    def previous_positions(self, current: Position) -> List[SubsequentPosition]:
        """当前位置之前的全部位置（返工可选目标），按流转次序。"""
        idx = self._stage_index(current.stage_id)
        stage = self.stages[idx]
        out: List[SubsequentPosition] = []

        for s in self.stages[:idx]:
            if s.has_sub_stages:
                out.extend(_sub_entry(s, ss) for ss in s.sub_stages)
            else:
                out.append(_stage_entry(s))

        if current.sub_stage_id is not None and stage.has_sub_stages:
            sub_idx = self._sub_index(stage, current.sub_stage_id)
            out.extend(_sub_entry(stage, ss) for ss in stage.sub_stages[:sub_idx])
        return out

    # ------------------------------------------------------------------
    # Completed 工序
    # ------------------------------------------------------------------

    def completed_stage(self, completed_name: str) -> Optional[StageNode]:
        for s in self.stages:
            if s.name == completed_name:
                return s
        return None

    def is_last_workflow_stage(self, position: Position, completed_name: str) -> bool:
        """是否为 Completed 之前的最后一个常规位置。"""
        regular = [s for s in self.stages if s.name != completed_name]
        if not regular:
            return False
        last = regular[-1]
        if position.stage_id != last.id:
            return False
        if last.has_sub_stages:
            return position.sub_stage_id == last.sub_stages[-1].id
        return True


def _stage_entry(stage: StageNode) -> SubsequentPosition:
    return SubsequentPosition(
        id=stage.id,
        stage_id=stage.id,
        sub_stage_id=None,
        name=stage.name,
        is_sub_stage=False,
    )


def _sub_entry(stage: StageNode, ss: SubStageNode) -> SubsequentPosition:
    return SubsequentPosition(
        id=ss.id,
        stage_id=stage.id,
        sub_stage_id=ss.id,
        name=f"{stage.name} > {ss.name}",
        is_sub_stage=True,
        parent_stage_id=stage.id,
        parent_stage_name=stage.name,
    )


# ----------------------------------------------------------------------
# 函数式入口（与拓扑对象等价，便于单独调用）
# ----------------------------------------------------------------------


def determine_next_stage(
    current_stage_id: str,
    current_sub_stage_id: Optional[str],
    stages: Sequence[StageNode],
) -> Optional[Position]:
    return WorkflowTopology(list(stages)).next_position(Position(current_stage_id, current_sub_stage_id))


def determine_previous_stage(
    current_stage_id: str,
    current_sub_stage_id: Optional[str],
    stages: Sequence[StageNode],
) -> Optional[Position]:
    return WorkflowTopology(list(stages)).previous_position(Position(current_stage_id, current_sub_stage_id))


def get_subsequent_stages(
    stages: Sequence[StageNode],
    current_stage_id: str,
    current_sub_stage_id: Optional[str],
) -> List[SubsequentPosition]:
    return WorkflowTopology(list(stages)).subsequent_positions(Position(current_stage_id, current_sub_stage_id))
