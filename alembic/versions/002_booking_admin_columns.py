# alembic/versions/002_booking_admin_columns.py
"""Track slot fulfilment per order item and event backfill attempts per booking

Revision ID: 002_booking_admin_columns
Revises: 001_initial_schema
Create Date: 2026-10-19 00:00:00.000000

An order item whose slot was already booked by another order records that
booking in fulfilled_by_booking_id, so the paid-order sweep stops treating
it as unbooked. Event backfill stamps event_link_attempted_at and walks the
least recently tried bookings first.
"""
from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002_booking_admin_columns"
down_revision: Union[str, None] = "001_initial_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        "order_items",
        sa.Column("fulfilled_by_booking_id", sa.String(26), nullable=True),
    )
    op.create_index(
        "ix_order_items_fulfilled_by_booking_id", "order_items", ["fulfilled_by_booking_id"]
    )
    op.add_column(
        "bookings",
        sa.Column("event_link_attempted_at", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_column("bookings", "event_link_attempted_at")
    op.drop_index("ix_order_items_fulfilled_by_booking_id", table_name="order_items")
    op.drop_column("order_items", "fulfilled_by_booking_id")
