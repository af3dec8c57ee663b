# tests/services/test_workflow_admin_service.py
import pytest

from app.services.workflow_admin_service import WorkflowAdminService
from app.services.workflow_errors import InvalidRequest, NotFoundError, StageInUse
from tests.helpers.workflow import ORG, make_item, put_allocation, seed_topology


@pytest.mark.asyncio
async def test_create_stage_appends_to_end(session):
    svc = WorkflowAdminService(session)

    first = await svc.create_stage(organization_id=ORG, name="  Cutting ", location="Hall 1")
    second = await svc.create_stage(organization_id=ORG, name="Sewing")

    assert first.name == "Cutting"
    assert first.location == "Hall 1"
    assert first.sequence_order == 0
    assert second.sequence_order == 1
    stages = await svc.get_workflow(organization_id=ORG)
    assert [s.name for s in stages] == ["Cutting", "Sewing"]


@pytest.mark.asyncio
async def test_create_stage_requires_name(session):
    with pytest.raises(InvalidRequest):
        await WorkflowAdminService(session).create_stage(organization_id=ORG, name="   ")


@pytest.mark.asyncio
async def test_update_stage_renames_and_keeps_order(session):
    topo = await seed_topology(session)
    svc = WorkflowAdminService(session)

    stage = await svc.update_stage(organization_id=ORG, stage_id=topo.a, name="Cut & Trim", location="")

    assert stage.name == "Cut & Trim"
    assert stage.location is None
    assert stage.sequence_order == 1


@pytest.mark.asyncio
async def test_stage_of_other_organization_is_not_found(session):
    topo = await seed_topology(session)

    with pytest.raises(NotFoundError):
        await WorkflowAdminService(session).update_stage(organization_id="org-other", stage_id=topo.a, name="x")


@pytest.mark.asyncio
async def test_delete_stage_in_use_is_refused(session):
    topo = await seed_topology(session)
    item = await make_item(session, total=5)
    await put_allocation(session, item, stage_id=topo.b, sub_stage_id=topo.b1, quantity=2)
    svc = WorkflowAdminService(session)

    with pytest.raises(StageInUse) as ei:
        await svc.delete_stage(organization_id=ORG, stage_id=topo.b)

    assert ei.value.message == (
        'Cannot delete stage "Sewing" because 1 item(s) are currently in it. '
        "Move them to another stage first."
    )


@pytest.mark.asyncio
async def test_delete_empty_stage_removes_its_sub_stages(session):
    topo = await seed_topology(session)
    svc = WorkflowAdminService(session)

    await svc.delete_stage(organization_id=ORG, stage_id=topo.b)

    stages = await svc.get_workflow(organization_id=ORG)
    assert [s.id for s in stages] == [topo.a, topo.c]
    with pytest.raises(NotFoundError):
        await svc.update_sub_stage(organization_id=ORG, sub_stage_id=topo.b1, name="x")


@pytest.mark.asyncio
async def test_reorder_stage_swaps_with_neighbour(session):
    topo = await seed_topology(session)
    svc = WorkflowAdminService(session)

    ordered = await svc.reorder_stage(organization_id=ORG, stage_id=topo.b, direction="up")

    assert [s.id for s in ordered] == [topo.b, topo.a, topo.c]


@pytest.mark.asyncio
async def test_reorder_stage_at_edges_is_rejected(session):
    topo = await seed_topology(session)
    svc = WorkflowAdminService(session)

    with pytest.raises(InvalidRequest) as ei:
        await svc.reorder_stage(organization_id=ORG, stage_id=topo.a, direction="up")
    assert "already first" in ei.value.message

    with pytest.raises(InvalidRequest) as ei:
        await svc.reorder_stage(organization_id=ORG, stage_id=topo.c, direction="down")
    assert "already last" in ei.value.message

    with pytest.raises(InvalidRequest):
        await svc.reorder_stage(organization_id=ORG, stage_id=topo.b, direction="sideways")


@pytest.mark.asyncio
async def test_reorder_with_tied_sequence_orders_still_moves(session):
    svc = WorkflowAdminService(session)
    a = await svc.create_stage(organization_id=ORG, name="A")
    b = await svc.create_stage(organization_id=ORG, name="B")
    b.sequence_order = a.sequence_order
    await session.flush()
    first_id, second_id = sorted([a.id, b.id])

    ordered = await svc.reorder_stage(organization_id=ORG, stage_id=second_id, direction="up")

    assert [s.id for s in ordered] == [second_id, first_id]


@pytest.mark.asyncio
async def test_create_sub_stage_appends_inside_stage(session):
    topo = await seed_topology(session)
    svc = WorkflowAdminService(session)

    sub = await svc.create_sub_stage(organization_id=ORG, stage_id=topo.b, name="Press")

    assert sub.stage_id == topo.b
    assert sub.sequence_order == 3
    stages = await svc.get_workflow(organization_id=ORG)
    sewing = next(s for s in stages if s.id == topo.b)
    assert [ss.name for ss in sewing.sub_stages] == ["Stitch", "Hem", "Press"]


@pytest.mark.asyncio
async def test_first_sub_stage_refused_while_stage_holds_items(session):
    topo = await seed_topology(session)
    item = await make_item(session, total=5)
    await put_allocation(session, item, stage_id=topo.a, quantity=5)

    with pytest.raises(StageInUse):
        await WorkflowAdminService(session).create_sub_stage(organization_id=ORG, stage_id=topo.a, name="Mark")


@pytest.mark.asyncio
async def test_delete_sub_stage_in_use_is_refused(session):
    topo = await seed_topology(session)
    item = await make_item(session, total=5)
    await put_allocation(session, item, stage_id=topo.b, sub_stage_id=topo.b2, quantity=5)
    svc = WorkflowAdminService(session)

    with pytest.raises(StageInUse):
        await svc.delete_sub_stage(organization_id=ORG, sub_stage_id=topo.b2)

    await svc.delete_sub_stage(organization_id=ORG, sub_stage_id=topo.b1)
    stages = await svc.get_workflow(organization_id=ORG)
    sewing = next(s for s in stages if s.id == topo.b)
    assert [ss.id for ss in sewing.sub_stages] == [topo.b2]


@pytest.mark.asyncio
async def test_reorder_sub_stage(session):
    topo = await seed_topology(session)
    svc = WorkflowAdminService(session)

    ordered = await svc.reorder_sub_stage(organization_id=ORG, sub_stage_id=topo.b2, direction="up")

    assert [ss.id for ss in ordered] == [topo.b2, topo.b1]
    with pytest.raises(InvalidRequest):
        await svc.reorder_sub_stage(organization_id=ORG, sub_stage_id=topo.b2, direction="up")
