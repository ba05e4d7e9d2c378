"""
SQLAlchemy ORM models.

Tables
------
* ``vehicles`` -- driver vehicles; the license plate is stored encrypted
  (ciphertext / iv / auth tag / salt, scheme version)
* ``trips``    -- published trips with their seat inventory
* ``bookings`` -- seats held or sold on a trip

Constraints
-----------
* ``0 <= available_seats <= total_seats`` is enforced by a CHECK constraint
  in addition to the conditional updates in the repository.
* ``bookings.seats_released`` makes seat release idempotent per booking.
* ``bookings.cancel_in_progress`` is claimed with a conditional UPDATE so a
  booking is refunded at most once.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)

from rideshare.domain.enums import BookingStatus, PaymentStatus, TripStatus

from .database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls, name: str) -> Enum:
    # Persist the lower-case values, not the member names.
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
    )


class VehicleModel(Base):
    __tablename__ = "vehicles"

    id = Column(String(36), primary_key=True, default=_uuid)
    owner_id = Column(String(64), nullable=False)
    make = Column(String(80), nullable=False)
    model = Column(String(80), nullable=False)
    year = Column(Integer, nullable=True)
    color = Column(String(40), nullable=True)
    vehicle_type = Column(String(20), default="standard", nullable=False)
    seats = Column(Integer, default=4, nullable=False)

    # Encrypted plate.  Legacy rows (license_plate_legacy=True) still carry
    # the plaintext in license_plate_ciphertext until migrated.
    license_plate_ciphertext = Column(Text, nullable=False)
    license_plate_iv = Column(String(64), nullable=True)
    license_plate_auth_tag = Column(String(64), nullable=True)
    license_plate_salt = Column(String(256), nullable=True)
    license_plate_version = Column(Integer, default=1, nullable=False)
    license_plate_legacy = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_vehicles_owner", "owner_id"),
        Index("idx_vehicles_legacy", "license_plate_legacy"),
    )


class TripModel(Base):
    __tablename__ = "trips"

    id = Column(String(36), primary_key=True, default=_uuid)
    driver_id = Column(String(64), nullable=False)
    vehicle_id = Column(String(36), ForeignKey("vehicles.id"), nullable=True)

    from_city = Column(String(120), nullable=True)
    to_city = Column(String(120), nullable=True)
    departure_time = Column(DateTime(timezone=True), nullable=True)

    total_seats = Column(Integer, nullable=False)
    available_seats = Column(Integer, nullable=False)
    price_per_seat = Column(Numeric(10, 2), nullable=False)
    pricing_strategy = Column(String(20), default="standard", nullable=False)

    status = Column(
        _enum(TripStatus, "tripstatus"), default=TripStatus.ACTIVE, nullable=False
    )
    cancellation_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "available_seats >= 0 AND available_seats <= total_seats",
            name="ck_trips_available_seats",
        ),
        Index("idx_trips_status", "status"),
        Index("idx_trips_driver", "driver_id"),
    )


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=_uuid)
    trip_id = Column(String(36), ForeignKey("trips.id"), nullable=False)
    passenger_id = Column(String(64), nullable=False)

    num_seats = Column(Integer, default=1, nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)

    status = Column(
        _enum(BookingStatus, "bookingstatus"),
        default=BookingStatus.PENDING,
        nullable=False,
    )
    payment_status = Column(
        _enum(PaymentStatus, "paymentstatus"),
        default=PaymentStatus.UNPAID,
        nullable=False,
    )
    payment_method = Column(String(20), nullable=False)
    transaction_id = Column(String(128), nullable=True)
    refund_transaction_id = Column(String(128), nullable=True)
    cancel_reason = Column(Text, nullable=True)

    ticket_token = Column(Text, nullable=True)
    ticket_issued_at = Column(DateTime(timezone=True), nullable=True)

    seats_released = Column(Boolean, default=False, nullable=False)
    # Payment outcome unknown (request abandoned mid-settlement).
    needs_reconciliation = Column(Boolean, default=False, nullable=False)
    # Set by the one caller allowed to refund and cancel this booking.
    cancel_in_progress = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("num_seats >= 1", name="ck_bookings_num_seats"),
        Index("idx_bookings_trip", "trip_id"),
        Index("idx_bookings_passenger", "passenger_id"),
        Index("idx_bookings_status", "status"),
    )
