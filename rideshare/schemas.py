"""Pydantic read models: the formatted records the services hand back."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from rideshare.domain.enums import BookingStatus, PaymentStatus, TripStatus


class TripRead(BaseModel):
    id: str
    driver_id: str
    vehicle_id: Optional[str] = None
    from_city: Optional[str] = None
    to_city: Optional[str] = None
    departure_time: Optional[datetime] = None
    total_seats: int
    available_seats: int
    price_per_seat: Decimal
    pricing_strategy: str
    status: TripStatus
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BookingRead(BaseModel):
    id: str
    trip_id: str
    passenger_id: str
    num_seats: int
    total_price: Decimal
    currency: str
    status: BookingStatus
    payment_status: PaymentStatus
    payment_method: str
    transaction_id: Optional[str] = None
    cancel_reason: Optional[str] = None
    ticket_token: Optional[str] = None
    needs_reconciliation: bool = False
    cancel_in_progress: bool = False
    created_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class VehicleRead(BaseModel):
    """A vehicle as shown to other users: the plate is masked."""

    id: str
    owner_id: str
    make: str
    model: str
    year: Optional[int] = None
    color: Optional[str] = None
    vehicle_type: str
    seats: int
    license_plate: Optional[str] = None
