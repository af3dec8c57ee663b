# tests/unit/test_workflow_topology.py
import random

import pytest

from app.services.workflow_errors import NotFoundError
from app.services.workflow_topology import (
    Position,
    StageNode,
    SubStageNode,
    WorkflowTopology,
    determine_next_stage,
    determine_previous_stage,
    get_subsequent_stages,
)


def _stages():
    # A(1) → B(2: B1, B2) → C(3)
    return [
        StageNode(id="A", name="Cutting", sequence_order=1),
        StageNode(
            id="B",
            name="Sewing",
            sequence_order=2,
            sub_stages=(
                SubStageNode(id="B1", name="Stitch", sequence_order=1),
                SubStageNode(id="B2", name="Hem", sequence_order=2),
            ),
        ),
        StageNode(id="C", name="Completed", sequence_order=3),
    ]


def test_next_from_plain_stage_enters_first_sub_stage():
    assert determine_next_stage("A", None, _stages()) == Position("B", "B1")


def test_next_sibling_sub_stage():
    assert determine_next_stage("B", "B1", _stages()) == Position("B", "B2")


def test_next_from_last_sub_stage_falls_through_to_next_stage():
    assert determine_next_stage("B", "B2", _stages()) == Position("C", None)


def test_next_at_end_of_workflow_is_none():
    assert determine_next_stage("C", None, _stages()) is None


def test_next_skips_sequence_gaps():
    stages = [
        StageNode(id="X", name="X", sequence_order=10),
        StageNode(id="Z", name="Z", sequence_order=100),
        StageNode(id="Y", name="Y", sequence_order=40),
    ]
    assert determine_next_stage("X", None, stages) == Position("Y", None)
    assert determine_next_stage("Y", None, stages) == Position("Z", None)


def test_next_is_independent_of_input_order():
    stages = _stages()
    expected = [determine_next_stage(p.stage_id, p.sub_stage_id, stages) for p in WorkflowTopology(stages).positions()]
    for seed in range(5):
        shuffled = list(stages)
        random.Random(seed).shuffle(shuffled)
        got = [
            determine_next_stage(p.stage_id, p.sub_stage_id, shuffled)
            for p in WorkflowTopology(stages).positions()
        ]
        assert got == expected


def test_tied_sequence_orders_are_broken_by_id():
    stages = [
        StageNode(id="s2", name="Second", sequence_order=1),
        StageNode(id="s1", name="First", sequence_order=1),
    ]
    assert determine_next_stage("s1", None, stages) == Position("s2", None)
    assert determine_previous_stage("s2", None, stages) == Position("s1", None)


def test_previous_from_first_sub_stage_goes_to_previous_stage():
    assert determine_previous_stage("B", "B1", _stages()) == Position("A", None)


def test_previous_from_stage_after_sub_stages_is_last_sub_stage():
    assert determine_previous_stage("C", None, _stages()) == Position("B", "B2")


def test_previous_at_start_is_none():
    assert determine_previous_stage("A", None, _stages()) is None


def test_next_previous_round_trip_over_adjacent_positions():
    topo = WorkflowTopology(_stages())
    for p in topo.positions():
        prev = topo.previous_position(p)
        if prev is None:
            continue
        assert topo.next_position(prev) == p


def test_subsequent_positions_are_flattened_and_labelled():
    out = get_subsequent_stages(_stages(), "A", None)
    assert [(p.stage_id, p.sub_stage_id) for p in out] == [("B", "B1"), ("B", "B2"), ("C", None)]
    assert out[0].is_sub_stage is True
    assert out[0].name == "Sewing > Stitch"
    assert out[0].parent_stage_name == "Sewing"
    assert out[2].is_sub_stage is False
    assert out[2].name == "Completed"


def test_subsequent_positions_from_sub_stage_include_later_siblings():
    out = get_subsequent_stages(_stages(), "B", "B1")
    assert [(p.stage_id, p.sub_stage_id) for p in out] == [("B", "B2"), ("C", None)]


def test_rank_orders_every_position():
    topo = WorkflowTopology(_stages())
    positions = topo.positions()
    assert sorted(positions, key=topo.rank) == positions
    assert topo.is_before(Position("B", "B1"), Position("B", "B2"))
    assert not topo.is_before(Position("C", None), Position("A", None))


def test_resolve_target_stage_with_sub_stages_defaults_to_first():
    topo = WorkflowTopology(_stages())
    assert topo.resolve_target("B", None) == Position("B", "B1")


def test_resolve_target_fills_stage_from_sub_stage():
    topo = WorkflowTopology(_stages())
    assert topo.resolve_target(None, "B2") == Position("B", "B2")


def test_resolve_target_rejects_sub_stage_on_plain_stage():
    topo = WorkflowTopology(_stages())
    with pytest.raises(NotFoundError):
        topo.resolve_target("A", "B1")


def test_resolve_target_rejects_unknown_stage():
    topo = WorkflowTopology(_stages())
    with pytest.raises(NotFoundError):
        topo.resolve_target("nope", None)


def test_unknown_current_position_raises():
    with pytest.raises(NotFoundError):
        determine_next_stage("nope", None, _stages())


def test_is_last_workflow_stage():
    topo = WorkflowTopology(_stages())
    assert topo.is_last_workflow_stage(Position("B", "B2"), "Completed") is True
    assert topo.is_last_workflow_stage(Position("B", "B1"), "Completed") is False
    assert topo.is_last_workflow_stage(Position("A", None), "Completed") is False


def test_describe_labels():
    topo = WorkflowTopology(_stages())
    assert topo.describe(Position("B", "B2")) == "Sewing > Hem"
    assert topo.describe(Position("A", None)) == "Cutting"


def test_previous_positions_are_rework_candidates():
    topo = WorkflowTopology(_stages())
    out = topo.previous_positions(Position("B", "B2"))
    assert [p.position for p in out] == [Position("A", None), Position("B", "B1")]
    assert [p.name for p in out] == ["Cutting", "Sewing > Stitch"]
    assert topo.previous_positions(Position("A", None)) == []


def test_previous_positions_from_stage_after_sub_stages():
    topo = WorkflowTopology(_stages())
    out = topo.previous_positions(Position("C", None))
    assert [p.position for p in out] == [Position("A", None), Position("B", "B1"), Position("B", "B2")]
    for p in out:
        assert topo.is_before(p.position, Position("C", None))
