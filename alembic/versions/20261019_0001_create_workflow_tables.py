"""create workflow / allocation tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # 工序拓扑
    op.create_table(
        "workflow_stages",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("organization_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("sequence_order", sa.Integer, nullable=False),
        sa.Column("location", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_workflow_stages_organization_id", "workflow_stages", ["organization_id"])
    op.create_index("ix_workflow_stages_org_seq", "workflow_stages", ["organization_id", "sequence_order"])

    op.create_table(
        "workflow_sub_stages",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "stage_id",
            sa.String(36),
            sa.ForeignKey("workflow_stages.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("organization_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("sequence_order", sa.Integer, nullable=False),
        sa.Column("location", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_workflow_sub_stages_stage_id", "workflow_sub_stages", ["stage_id"])
    op.create_index("ix_workflow_sub_stages_organization_id", "workflow_sub_stages", ["organization_id"])

    # 订单 / 条目
    op.create_table(
        "orders",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("organization_id", sa.String(36), nullable=False),
        sa.Column("order_number", sa.String(64), nullable=False),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("organization_id", "order_number", name="uq_orders_org_order_number"),
    )
    op.create_index("ix_orders_organization_id", "orders", ["organization_id"])

    op.create_table(
        "items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("order_id", sa.String(36), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("organization_id", sa.String(36), nullable=False),
        sa.Column("sku", sa.String(128), nullable=False),
        sa.Column("total_quantity", sa.Integer, nullable=False),
        sa.Column("instance_details", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("total_quantity > 0", name="ck_items_total_quantity_pos"),
    )
    op.create_index("ix_items_order_id", "items", ["order_id"])
    op.create_index("ix_items_organization_id", "items", ["organization_id"])

    # 分配账
    op.create_table(
        "item_stage_allocations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("item_id", sa.String(36), sa.ForeignKey("items.id", ondelete="CASCADE"), nullable=False),
        sa.Column("organization_id", sa.String(36), nullable=False),
        sa.Column("stage_id", sa.String(36), sa.ForeignKey("workflow_stages.id"), nullable=False),
        sa.Column("sub_stage_id", sa.String(36), sa.ForeignKey("workflow_sub_stages.id"), nullable=True),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("moved_by", sa.String(36), nullable=True),
        sa.CheckConstraint("quantity > 0", name="ck_item_stage_allocations_qty_pos"),
    )
    op.create_index("ix_item_stage_allocations_item_id", "item_stage_allocations", ["item_id"])
    op.create_index("ix_item_stage_allocations_organization_id", "item_stage_allocations", ["organization_id"])
    op.create_index("ix_item_stage_allocations_stage_id", "item_stage_allocations", ["stage_id"])
    op.create_index("ix_item_stage_allocations_sub_stage_id", "item_stage_allocations", ["sub_stage_id"])
    # (item, stage, sub_stage) 唯一：NULL 子工序单独一条部分唯一索引
    op.create_index(
        "uq_item_stage_allocations_item_stage_sub",
        "item_stage_allocations",
        ["item_id", "stage_id", "sub_stage_id"],
        unique=True,
        postgresql_where=sa.text("sub_stage_id IS NOT NULL"),
        sqlite_where=sa.text("sub_stage_id IS NOT NULL"),
    )
    op.create_index(
        "uq_item_stage_allocations_item_stage_nosub",
        "item_stage_allocations",
        ["item_id", "stage_id"],
        unique=True,
        postgresql_where=sa.text("sub_stage_id IS NULL"),
        sqlite_where=sa.text("sub_stage_id IS NULL"),
    )

    # 流转历史（只增不改）
    op.create_table(
        "item_movement_history",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("item_id", sa.String(36), sa.ForeignKey("items.id", ondelete="CASCADE"), nullable=False),
        sa.Column("organization_id", sa.String(36), nullable=False),
        sa.Column("from_stage_id", sa.String(36), nullable=True),
        sa.Column("from_sub_stage_id", sa.String(36), nullable=True),
        sa.Column("to_stage_id", sa.String(36), nullable=False),
        sa.Column("to_sub_stage_id", sa.String(36), nullable=True),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("moved_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("moved_by", sa.String(36), nullable=True),
        sa.Column("rework_reason", sa.String(255), nullable=True),
        sa.CheckConstraint("quantity > 0", name="ck_item_movement_history_qty_pos"),
    )
    op.create_index("ix_item_movement_history_item_id", "item_movement_history", ["item_id"])
    op.create_index("ix_item_movement_history_organization_id", "item_movement_history", ["organization_id"])
    op.create_index(
        "ix_item_movement_history_org_moved_at", "item_movement_history", ["organization_id", "moved_at"]
    )


def downgrade() -> None:
    op.drop_table("item_movement_history")
    op.drop_table("item_stage_allocations")
    op.drop_table("items")
    op.drop_table("orders")
    op.drop_table("workflow_sub_stages")
    op.drop_table("workflow_stages")
