"""Initial schema: vehicles, trips, bookings.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

TRIP_STATUSES = ("active", "in_progress", "completed", "cancelled", "deleted")
BOOKING_STATUSES = ("pending", "confirmed", "cancelled", "completed")
PAYMENT_STATUSES = ("unpaid", "pending", "paid", "refunded")


def _timestamp(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    # ── vehicles ──────────────────────────────────────────────────────
    op.create_table(
        "vehicles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("make", sa.String(80), nullable=False),
        sa.Column("model", sa.String(80), nullable=False),
        sa.Column("year", sa.Integer, nullable=True),
        sa.Column("color", sa.String(40), nullable=True),
        sa.Column("vehicle_type", sa.String(20), nullable=False, server_default="standard"),
        sa.Column("seats", sa.Integer, nullable=False, server_default="4"),
        sa.Column("license_plate_ciphertext", sa.Text, nullable=False),
        sa.Column("license_plate_iv", sa.String(64), nullable=True),
        sa.Column("license_plate_auth_tag", sa.String(64), nullable=True),
        sa.Column("license_plate_salt", sa.String(256), nullable=True),
        sa.Column("license_plate_version", sa.Integer, nullable=False, server_default="1"),
        sa.Column(
            "license_plate_legacy",
            sa.Boolean,
            nullable=False,
            server_default=sa.false(),
        ),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("idx_vehicles_owner", "vehicles", ["owner_id"])
    op.create_index("idx_vehicles_legacy", "vehicles", ["license_plate_legacy"])

    # ── trips ─────────────────────────────────────────────────────────
    op.create_table(
        "trips",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("driver_id", sa.String(64), nullable=False),
        sa.Column(
            "vehicle_id", sa.String(36), sa.ForeignKey("vehicles.id"), nullable=True
        ),
        sa.Column("from_city", sa.String(120), nullable=True),
        sa.Column("to_city", sa.String(120), nullable=True),
        _timestamp("departure_time"),
        sa.Column("total_seats", sa.Integer, nullable=False),
        sa.Column("available_seats", sa.Integer, nullable=False),
        sa.Column("price_per_seat", sa.Numeric(10, 2), nullable=False),
        sa.Column("pricing_strategy", sa.String(20), nullable=False, server_default="standard"),
        sa.Column(
            "status",
            sa.Enum(*TRIP_STATUSES, name="tripstatus"),
            nullable=False,
            server_default="active",
        ),
        sa.Column("cancellation_reason", sa.Text, nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        _timestamp("started_at"),
        _timestamp("completed_at"),
        _timestamp("cancelled_at"),
        _timestamp("deleted_at"),
        sa.CheckConstraint(
            "available_seats >= 0 AND available_seats <= total_seats",
            name="ck_trips_available_seats",
        ),
    )
    op.create_index("idx_trips_status", "trips", ["status"])
    op.create_index("idx_trips_driver", "trips", ["driver_id"])

    # ── bookings ──────────────────────────────────────────────────────
    op.create_table(
        "bookings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("trip_id", sa.String(36), sa.ForeignKey("trips.id"), nullable=False),
        sa.Column("passenger_id", sa.String(64), nullable=False),
        sa.Column("num_seats", sa.Integer, nullable=False, server_default="1"),
        sa.Column("total_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*BOOKING_STATUSES, name="bookingstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column(
            "payment_status",
            sa.Enum(*PAYMENT_STATUSES, name="paymentstatus"),
            nullable=False,
            server_default="unpaid",
        ),
        sa.Column("payment_method", sa.String(20), nullable=False),
        sa.Column("transaction_id", sa.String(128), nullable=True),
        sa.Column("refund_transaction_id", sa.String(128), nullable=True),
        sa.Column("cancel_reason", sa.Text, nullable=True),
        sa.Column("ticket_token", sa.Text, nullable=True),
        _timestamp("ticket_issued_at"),
        sa.Column("seats_released", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column(
            "needs_reconciliation",
            sa.Boolean,
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column(
            "cancel_in_progress",
            sa.Boolean,
            nullable=False,
            server_default=sa.false(),
        ),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        _timestamp("confirmed_at"),
        _timestamp("cancelled_at"),
        _timestamp("completed_at"),
        sa.CheckConstraint("num_seats >= 1", name="ck_bookings_num_seats"),
    )
    op.create_index("idx_bookings_trip", "bookings", ["trip_id"])
    op.create_index("idx_bookings_passenger", "bookings", ["passenger_id"])
    op.create_index("idx_bookings_status", "bookings", ["status"])


def downgrade() -> None:
    op.drop_table("bookings")
    op.drop_table("trips")
    op.drop_table("vehicles")
    op.execute("DROP TYPE IF EXISTS paymentstatus")
    op.execute("DROP TYPE IF EXISTS bookingstatus")
    op.execute("DROP TYPE IF EXISTS tripstatus")
