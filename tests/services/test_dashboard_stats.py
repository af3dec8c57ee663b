# tests/services/test_dashboard_stats.py
from datetime import date, datetime, timedelta

import pytest

from app.services.dashboard_stats_service import (
    bottleneck_items,
    humanize_duration,
    movement_stats,
    stage_stats,
)
from app.services.movement_history import append_movement
from app.services.workflow_repo import load_topology
from app.services.workflow_topology import Position
from tests.helpers.workflow import ORG, UTC, make_item, put_allocation, seed_topology

NOW = datetime(2026, 3, 20, 12, 0, tzinfo=UTC)


@pytest.mark.parametrize(
    "delta, text",
    [
        (timedelta(minutes=20), "< 1 hour"),
        (timedelta(hours=1, minutes=5), "1 hour"),
        (timedelta(hours=5), "5 hours"),
        (timedelta(days=1), "1 day"),
        (timedelta(days=3, hours=4), "3 days, 4h"),
    ],
)
def test_humanize_duration(delta, text):
    assert humanize_duration(delta) == text


@pytest.mark.asyncio
async def test_movement_stats_buckets_per_day(session):
    topo = await seed_topology(session)
    item = await make_item(session, total=10)
    day = datetime(2026, 3, 18, 9, 0, tzinfo=UTC)
    for offset, qty, reason in [(0, 5, None), (1, 2, None), (2, 1, "QC failed")]:
        await append_movement(
            session,
            organization_id=ORG,
            item_id=item.id,
            from_position=Position(topo.a),
            to_position=Position(topo.b, topo.b1),
            quantity=qty,
            moved_at=day + timedelta(hours=offset),
            moved_by="u",
            rework_reason=reason,
        )
    # 范围外
    await append_movement(
        session,
        organization_id=ORG,
        item_id=item.id,
        from_position=None,
        to_position=Position(topo.a),
        quantity=10,
        moved_at=day - timedelta(days=30),
        moved_by="u",
    )
    await session.flush()

    rows = await movement_stats(session, organization_id=ORG, days=3, today=date(2026, 3, 20))

    assert [r.date for r in rows] == [date(2026, 3, 17), date(2026, 3, 18), date(2026, 3, 19), date(2026, 3, 20)]
    by_day = {r.date: (r.forward, r.rework) for r in rows}
    assert by_day[date(2026, 3, 18)] == (7, 1)
    assert by_day[date(2026, 3, 17)] == (0, 0)


@pytest.mark.asyncio
async def test_bottleneck_items_are_oldest_first_and_skip_completed(session):
    topo = await seed_topology(session)
    old = await make_item(session, total=5)
    fresh = await make_item(session, total=5)
    done = await make_item(session, total=5)
    await put_allocation(session, done, stage_id=topo.c, quantity=5, created_at=NOW - timedelta(days=40))
    await put_allocation(
        session, old, stage_id=topo.b, sub_stage_id=topo.b2, quantity=3, created_at=NOW - timedelta(days=3, hours=4)
    )
    await put_allocation(session, fresh, stage_id=topo.a, quantity=2, created_at=NOW - timedelta(hours=2))
    topology = await load_topology(session, organization_id=ORG)

    rows = await bottleneck_items(
        session, organization_id=ORG, topology=topology, completed_stage_name="Completed", now=NOW
    )

    assert [r.item_id for r in rows] == [old.id, fresh.id]
    assert rows[0].current_stage_name == "Sewing"
    assert rows[0].current_sub_stage_name == "Hem"
    assert rows[0].time_in_current_stage == "3 days, 4h"
    assert rows[1].time_in_current_stage == "2 hours"

    limited = await bottleneck_items(
        session, organization_id=ORG, topology=topology, completed_stage_name="Completed", limit=0, now=NOW
    )
    assert len(limited) == 1


@pytest.mark.asyncio
async def test_stage_stats_totals(session):
    topo = await seed_topology(session)
    a = await make_item(session, total=10)
    b = await make_item(session, total=4)
    await put_allocation(session, a, stage_id=topo.a, quantity=3, created_at=NOW - timedelta(days=8))
    await put_allocation(session, a, stage_id=topo.b, sub_stage_id=topo.b1, quantity=2, created_at=NOW)
    await put_allocation(session, a, stage_id=topo.c, quantity=1, created_at=NOW - timedelta(days=20))
    await put_allocation(session, b, stage_id=topo.c, quantity=4, created_at=NOW - timedelta(days=20))
    await append_movement(
        session,
        organization_id=ORG,
        item_id=a.id,
        from_position=Position(topo.b, topo.b2),
        to_position=Position(topo.b, topo.b1),
        quantity=2,
        moved_at=NOW - timedelta(hours=1),
        moved_by="u",
        rework_reason="QC failed",
    )
    await append_movement(
        session,
        organization_id=ORG,
        item_id=b.id,
        from_position=Position(topo.b, topo.b2),
        to_position=Position(topo.c),
        quantity=4,
        moved_at=NOW - timedelta(days=20),
        moved_by="u",
    )
    await session.flush()
    topology = await load_topology(session, organization_id=ORG)

    stats = await stage_stats(session, organization_id=ORG, topology=topology, completed_stage_name="Completed", now=NOW)

    assert [s.stage_name for s in stats.stages] == ["Cutting", "Sewing", "Completed"]
    sewing = stats.stages[1]
    assert sewing.quantity == 2
    assert sewing.sub_stages == {topo.b1: 2, topo.b2: 0}
    assert stats.total_quantity == 14
    assert stats.in_workflow_quantity == 5
    assert stats.completed_quantity == 5
    assert stats.new_pool_quantity == 4
    # b 已全部完成，只有 a 所在订单仍在制
    assert stats.active_orders == 1
    assert stats.items_in_rework == 1
    assert stats.items_waiting_over_7_days == 1
