"""Initial schema: users, inventory catalog and details, ammo alerts, calendar, transaction log.

Revision ID: 0001
Revises: (none)
Create Date: 2026-10-19
"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _detail_table(name: str, *columns: sa.Column) -> None:
    op.create_table(
        name,
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "item_id",
            sa.Integer(),
            sa.ForeignKey("inventory_items.id", ondelete="CASCADE"),
            nullable=False,
        ),
        *columns,
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(f"ix_{name}_id", name, ["id"])
    op.create_index(f"ix_{name}_item_id", name, ["item_id"], unique=True)


def upgrade() -> None:
    # Users
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("hashed_password", sa.String(), nullable=False),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("confirmed", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # Inventory catalog
    op.create_table(
        "inventory_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("brand", sa.String(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("date_purchased", sa.Date(), nullable=True),
        sa.Column("vendor", sa.String(), nullable=True),
        sa.Column("url", sa.String(), nullable=True),
        sa.Column("price_paid", sa.Float(), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("image_keys", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_inventory_items_id", "inventory_items", ["id"])
    op.create_index("ix_inventory_items_name", "inventory_items", ["name"])
    op.create_index("ix_inventory_items_category", "inventory_items", ["category"])

    # Category details (1:1 with inventory_items)
    _detail_table(
        "ammo_details",
        sa.Column("caliber", sa.String(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unit", sa.String(), nullable=False, server_default="ROUNDS"),
        sa.Column("rounds_per_unit", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("rounds_available", sa.Integer(), nullable=True),
        sa.Column("grain", sa.Integer(), nullable=True),
        sa.Column("bullet_type", sa.String(), nullable=True),
        sa.Column("velocity_fps", sa.Integer(), nullable=True),
    )
    op.create_index("ix_ammo_details_caliber", "ammo_details", ["caliber"])

    _detail_table(
        "firearm_details",
        sa.Column("type", sa.String(), nullable=False, server_default="OTHER"),
        sa.Column("serial_number", sa.String(), nullable=True),
        sa.Column("caliber", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=True),
        sa.Column("finish", sa.String(), nullable=True),
        sa.Column("barrel_length", sa.Float(), nullable=True),
        sa.Column("parts", sa.JSON(), nullable=False),
    )

    _detail_table(
        "filament_details",
        sa.Column("material", sa.String(), nullable=False, server_default="PLA"),
        sa.Column("color", sa.String(), nullable=True),
        sa.Column("weight_g", sa.Integer(), nullable=True),
        sa.Column("diameter", sa.String(), nullable=False, server_default="1.75"),
    )

    _detail_table(
        "instrument_details",
        sa.Column("type", sa.String(), nullable=False, server_default="OTHER"),
        sa.Column("color", sa.String(), nullable=True),
        sa.Column("strings", sa.Integer(), nullable=True),
        sa.Column("tuning", sa.String(), nullable=True),
        sa.Column("body_material", sa.String(), nullable=True),
        sa.Column("finish", sa.String(), nullable=True),
    )

    # Ammo alerts
    op.create_table(
        "notification_people",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("preferred_channel", sa.String(), nullable=False, server_default="WHATSAPP"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notification_people_id", "notification_people", ["id"])

    op.create_table(
        "ammo_thresholds",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("caliber", sa.String(), nullable=False),
        sa.Column("min_rounds", sa.Integer(), nullable=False),
        sa.Column(
            "person_id",
            sa.Integer(),
            sa.ForeignKey("notification_people.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ammo_thresholds_id", "ammo_thresholds", ["id"])
    op.create_index("ix_ammo_thresholds_caliber", "ammo_thresholds", ["caliber"])
    op.create_index("ix_ammo_thresholds_person_id", "ammo_thresholds", ["person_id"])

    # Calendar
    op.create_table(
        "trips",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False, server_default="LEISURE"),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("destination_city", sa.String(), nullable=True),
        sa.Column("destination_country", sa.String(), nullable=True),
        sa.Column("destination_lat", sa.Float(), nullable=True),
        sa.Column("destination_lon", sa.Float(), nullable=True),
        sa.Column("destination_tz", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_trips_id", "trips", ["id"])
    op.create_index("ix_trips_start_date", "trips", ["start_date"])
    op.create_index("ix_trips_end_date", "trips", ["end_date"])

    op.create_table(
        "days",
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("trip_id", sa.Integer(), sa.ForeignKey("trips.id", ondelete="SET NULL"), nullable=True),
        sa.Column("trip_name", sa.String(), nullable=True),
        sa.Column("pto_fraction", sa.Float(), nullable=False, server_default="0"),
        sa.Column("location_city", sa.String(), nullable=True),
        sa.Column("location_country", sa.String(), nullable=True),
        sa.Column("location_lat", sa.Float(), nullable=True),
        sa.Column("location_lon", sa.Float(), nullable=True),
        sa.PrimaryKeyConstraint("date"),
    )

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("timezone", sa.String(), nullable=False, server_default="UTC"),
        sa.Column("is_all_day", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("trip_id", sa.Integer(), sa.ForeignKey("trips.id", ondelete="SET NULL"), nullable=True),
        sa.Column("location", sa.String(), nullable=True),
        sa.Column("url", sa.String(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_events_id", "events", ["id"])
    op.create_index("ix_events_start_at", "events", ["start_at"])

    # Transaction log
    op.create_table(
        "transaction_log",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("operation", sa.String(), nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=True),
        sa.Column("data", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("transaction_log")
    op.drop_table("events")
    op.drop_table("days")
    op.drop_table("trips")
    op.drop_table("ammo_thresholds")
    op.drop_table("notification_people")
    op.drop_table("instrument_details")
    op.drop_table("filament_details")
    op.drop_table("firearm_details")
    op.drop_table("ammo_details")
    op.drop_table("inventory_items")
    op.drop_table("users")
