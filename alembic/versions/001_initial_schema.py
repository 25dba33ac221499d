# alembic/versions/001_initial_schema.py
"""Initial schema - catalog, calendar, orders, bookings and reconciliation

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-01-05 00:00:00.000000

All instants are stored as timestamptz in UTC. Calendar days are stored
separately as local day keys (YYYY-MM-DD in the location's timezone) so
slot matching never depends on the UTC date.
"""
from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_BOOKING = sa.text("status != 'CANCELLED'")


def _ulid() -> sa.Column:
    return sa.Column("id", sa.String(26), primary_key=True)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )


def upgrade() -> None:
    op.create_table(
        "locations",
        _ulid(),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("address", sa.Text(), nullable=False, server_default=""),
        sa.Column("capacity", sa.Integer(), nullable=False, server_default="20"),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="Australia/Sydney"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("available_camp_types", sa.JSON(), nullable=False),
        sa.Column("available_dates", sa.JSON(), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("capacity >= 0", name="ck_locations_capacity_non_negative"),
    )

    op.create_table(
        "products",
        _ulid(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.String(20), nullable=False, index=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("age_min", sa.Integer(), nullable=True),
        sa.Column("age_max", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
    )

    op.create_table(
        "students",
        _ulid(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("birthdate", sa.Date(), nullable=True),
        sa.Column("allergies", sa.Text(), nullable=True),
        sa.Column("medical_notes", sa.Text(), nullable=True),
        sa.Column("parent_email", sa.String(255), nullable=True),
        _created_at(),
    )
    op.create_index("ix_students_parent_email_name", "students", ["parent_email", "name"])

    op.create_table(
        "recurring_templates",
        _ulid(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("event_type", sa.String(30), nullable=False, server_default="CAMP"),
        sa.Column("product_id", sa.String(26), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("location_id", sa.String(26), sa.ForeignKey("locations.id"), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("weekdays", sa.JSON(), nullable=True),
        sa.Column("skip_closure_dates", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("max_capacity", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.CheckConstraint("start_date <= end_date", name="ck_templates_window_ordered"),
    )

    op.create_table(
        "events",
        _ulid(),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("event_type", sa.String(30), nullable=False, server_default="CAMP"),
        sa.Column("product_id", sa.String(26), sa.ForeignKey("products.id"), nullable=True),
        sa.Column("location_id", sa.String(26), sa.ForeignKey("locations.id"), nullable=False),
        sa.Column(
            "template_id", sa.String(26), sa.ForeignKey("recurring_templates.id"), nullable=True
        ),
        sa.Column("start_datetime", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_datetime", sa.DateTime(timezone=True), nullable=False),
        sa.Column("local_day_key", sa.String(10), nullable=False),
        sa.Column("max_capacity", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="SCHEDULED"),
        _created_at(),
        sa.UniqueConstraint(
            "template_id", "location_id", "local_day_key", name="uq_events_template_location_day"
        ),
        sa.CheckConstraint("start_datetime < end_datetime", name="ck_events_start_before_end"),
    )
    op.create_index(
        "ix_events_product_location_day", "events", ["product_id", "location_id", "local_day_key"]
    )
    op.create_index("ix_events_start_datetime", "events", ["start_datetime"])
    op.create_index("ix_events_status", "events", ["status"])

    op.create_table(
        "orders",
        _ulid(),
        sa.Column("customer_email", sa.String(255), nullable=False, index=True),
        sa.Column("customer_name", sa.String(200), nullable=False),
        sa.Column("customer_phone", sa.String(50), nullable=True),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING", index=True),
        sa.Column("stripe_payment_intent_id", sa.String(255), nullable=True, unique=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_reconciled_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "order_items",
        _ulid(),
        sa.Column(
            "order_id",
            sa.String(26),
            sa.ForeignKey("orders.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("product_id", sa.String(26), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("student_id", sa.String(26), sa.ForeignKey("students.id"), nullable=False),
        sa.Column("location_id", sa.String(26), sa.ForeignKey("locations.id"), nullable=True),
        sa.Column("booking_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.UniqueConstraint("order_id", "position", name="uq_order_items_position"),
    )

    op.create_table(
        "bookings",
        _ulid(),
        sa.Column("student_id", sa.String(26), sa.ForeignKey("students.id"), nullable=False),
        sa.Column("product_id", sa.String(26), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("location_id", sa.String(26), sa.ForeignKey("locations.id"), nullable=False),
        sa.Column(
            "event_id",
            sa.String(26),
            sa.ForeignKey("events.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("order_id", sa.String(26), sa.ForeignKey("orders.id"), nullable=True),
        sa.Column("order_item_id", sa.String(26), sa.ForeignKey("order_items.id"), nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("local_day_key", sa.String(10), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="CONFIRMED"),
        sa.Column("total_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "uq_bookings_active_student_product_day_location",
        "bookings",
        ["student_id", "product_id", "local_day_key", "location_id"],
        unique=True,
        sqlite_where=ACTIVE_BOOKING,
        postgresql_where=ACTIVE_BOOKING,
    )
    op.create_index("ix_bookings_event_id", "bookings", ["event_id"])
    op.create_index("ix_bookings_order_id", "bookings", ["order_id"])
    op.create_index("ix_bookings_status", "bookings", ["status"])

    op.create_table(
        "reconciliation_flags",
        _ulid(),
        sa.Column("kind", sa.String(30), nullable=False),
        sa.Column("order_id", sa.String(26), sa.ForeignKey("orders.id"), nullable=True),
        sa.Column("order_item_id", sa.String(26), sa.ForeignKey("order_items.id"), nullable=True),
        sa.Column("booking_id", sa.String(26), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("detail", sa.JSON(), nullable=False),
        _created_at(),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("booking_id", "kind", name="uq_reconciliation_flags_booking_kind"),
    )
    op.create_index(
        "ix_reconciliation_flags_unresolved", "reconciliation_flags", ["kind", "resolved_at"]
    )

    op.create_table(
        "webhook_events",
        _ulid(),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("event_id", sa.String(255), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="received"),
        sa.Column("processing_error", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("related_order_id", sa.String(26), nullable=True),
        sa.Column(
            "received_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("source", "event_id", name="uq_webhook_events_source_event_id"),
    )
    op.create_index("ix_webhook_events_status", "webhook_events", ["status"])
    op.create_index("ix_webhook_events_received_at", "webhook_events", ["received_at"])


def downgrade() -> None:
    op.drop_table("webhook_events")
    op.drop_table("reconciliation_flags")
    op.drop_table("bookings")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("events")
    op.drop_table("recurring_templates")
    op.drop_table("students")
    op.drop_table("products")
    op.drop_table("locations")
