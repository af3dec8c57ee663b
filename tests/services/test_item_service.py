# tests/services/test_item_service.py
from datetime import datetime, timedelta

import pytest

from app.services.item_service import ItemService, NewItem, validate_instance_details
from app.services.movement_history import list_item_history
from app.services.workflow_errors import InvalidRequest, NotFoundError
from app.services.workflow_repo import load_topology
from app.services.workflow_topology import Position
from tests.helpers.workflow import ORG, UTC, make_item, put_allocation, seed_topology, uniq_ref


def test_instance_details_accepts_scalars():
    assert validate_instance_details({"color": "red", "weight": 1.5, "pieces": 3, "fragile": False, "note": None}) == {
        "color": "red",
        "weight": 1.5,
        "pieces": 3,
        "fragile": False,
        "note": None,
    }
    assert validate_instance_details(None) is None


@pytest.mark.parametrize("bad", [{"dims": [1, 2]}, {"nested": {"a": 1}}, {"": "x"}, ["not", "a", "map"]])
def test_instance_details_rejects_non_scalar_shapes(bad):
    with pytest.raises(InvalidRequest):
        validate_instance_details(bad)


@pytest.mark.asyncio
async def test_create_order_with_items(session):
    svc = ItemService(session)
    number = uniq_ref("SO")

    order = await svc.create_order(
        organization_id=ORG,
        order_number=f"  {number} ",
        customer_name="ACME",
        items=[NewItem(sku="SKU-A", total_quantity=5, instance_details={"color": "blue"}), NewItem("SKU-B", 2)],
    )

    assert order.order_number == number
    assert [(i.sku, i.total_quantity) for i in order.items] == [("SKU-A", 5), ("SKU-B", 2)]
    assert order.items[0].instance_details == {"color": "blue"}

    again = await svc.get_order(organization_id=ORG, order_id=order.id)
    assert again.id == order.id


@pytest.mark.asyncio
async def test_create_order_rejects_bad_lines(session):
    svc = ItemService(session)
    with pytest.raises(InvalidRequest):
        await svc.create_order(organization_id=ORG, order_number="", items=[])
    with pytest.raises(InvalidRequest):
        await svc.create_order(organization_id=ORG, order_number="SO-1", items=[NewItem("SKU", 0)])
    with pytest.raises(InvalidRequest):
        await svc.create_order(organization_id=ORG, order_number="SO-2", items=[NewItem(" ", 1)])


@pytest.mark.asyncio
async def test_duplicate_order_number_is_rejected(session):
    svc = ItemService(session)
    await svc.create_order(organization_id=ORG, order_number="SO-DUP")

    with pytest.raises(InvalidRequest) as ei:
        await svc.create_order(organization_id=ORG, order_number="SO-DUP")
    assert "already exists" in ei.value.message


@pytest.mark.asyncio
async def test_add_item_to_order_of_other_organization_is_not_found(session):
    svc = ItemService(session)
    order = await svc.create_order(organization_id=ORG, order_number=uniq_ref("SO"))

    item = await svc.add_item(organization_id=ORG, order_id=order.id, line=NewItem("SKU-X", 3))
    assert item.order_id == order.id

    with pytest.raises(NotFoundError):
        await svc.add_item(organization_id="org-other", order_id=order.id, line=NewItem("SKU-Y", 1))


@pytest.mark.asyncio
async def test_item_summary_reports_pool_and_completed(session):
    topo = await seed_topology(session)
    item = await make_item(session, total=10)
    await put_allocation(session, item, stage_id=topo.c, quantity=3)
    await put_allocation(session, item, stage_id=topo.a, quantity=2)
    await put_allocation(session, item, stage_id=topo.b, sub_stage_id=topo.b2, quantity=1)
    topology = await load_topology(session, organization_id=ORG)

    summary = await ItemService(session).item_summary(
        organization_id=ORG, item_id=item.id, topology=topology, completed_stage_name="Completed"
    )

    assert summary.quantity_in_new_pool == 4
    assert summary.completed_quantity == 3
    assert summary.remaining_quantity == 7
    # 按流程次序
    assert [a.label for a in summary.allocations] == ["Cutting", "Sewing > Hem", "Completed"]
    assert summary.allocations[1].sub_stage_name == "Hem"


@pytest.mark.asyncio
async def test_item_summary_unknown_item(session):
    await seed_topology(session)
    topology = await load_topology(session, organization_id=ORG)
    with pytest.raises(NotFoundError):
        await ItemService(session).item_summary(
            organization_id=ORG, item_id="missing", topology=topology, completed_stage_name="Completed"
        )


@pytest.mark.asyncio
async def test_items_in_stage_and_sub_stage(session):
    topo = await seed_topology(session)
    t0 = datetime(2026, 2, 1, 8, 0, tzinfo=UTC)
    first = await make_item(session, total=5)
    second = await make_item(session, total=5)
    await put_allocation(session, second, stage_id=topo.b, sub_stage_id=topo.b2, quantity=2, created_at=t0)
    await put_allocation(
        session, first, stage_id=topo.b, sub_stage_id=topo.b1, quantity=4, created_at=t0 + timedelta(hours=1)
    )
    svc = ItemService(session)

    whole = await svc.items_in_stage(organization_id=ORG, position=Position(topo.b))
    assert [(v.item_id, v.quantity) for v in whole] == [(second.id, 2), (first.id, 4)]

    only_b1 = await svc.items_in_stage(organization_id=ORG, position=Position(topo.b, topo.b1))
    assert [v.item_id for v in only_b1] == [first.id]
    assert only_b1[0].order_number


@pytest.mark.asyncio
async def test_history_entries_are_labelled(session):
    from app.services.movement_history import append_movement

    topo = await seed_topology(session)
    item = await make_item(session, total=3)
    t0 = datetime(2026, 2, 1, 8, 0, tzinfo=UTC)
    await append_movement(
        session,
        organization_id=ORG,
        item_id=item.id,
        from_position=None,
        to_position=Position(topo.a),
        quantity=3,
        moved_at=t0,
        moved_by="u1",
    )
    await append_movement(
        session,
        organization_id=ORG,
        item_id=item.id,
        from_position=Position(topo.a),
        to_position=Position(topo.b, topo.b1),
        quantity=3,
        moved_at=t0 + timedelta(minutes=5),
        moved_by="u1",
    )
    await append_movement(
        session,
        organization_id=ORG,
        item_id=item.id,
        from_position=Position(topo.b, topo.b1),
        to_position=Position(topo.a),
        quantity=1,
        moved_at=t0 + timedelta(minutes=9),
        moved_by="u2",
        rework_reason="loose thread",
    )
    await session.flush()
    topology = await load_topology(session, organization_id=ORG)

    entries = await list_item_history(session, organization_id=ORG, item_id=item.id, topology=topology)

    assert [e.direction for e in entries] == ["entry", "forward", "rework"]
    assert entries[1].from_label == "Cutting"
    assert entries[1].to_label == "Sewing > Stitch"
    assert entries[2].rework_reason == "loose thread"
