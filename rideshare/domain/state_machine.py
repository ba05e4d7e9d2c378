"""
Lifecycle validation for trips, bookings and payment status.

One table per aggregate lives in :mod:`rideshare.domain.enums`; these helpers
are the only place that consults them, so an illegal edge always surfaces as
:class:`InvalidStateTransition`.
"""

from __future__ import annotations

from enum import Enum
from typing import Mapping, TypeVar

from .enums import (
    BOOKING_TRANSITIONS,
    PAYMENT_STATUS_TRANSITIONS,
    TRIP_TRANSITIONS,
    BookingStatus,
    PaymentStatus,
    TripStatus,
)
from .exceptions import InvalidStateTransition

S = TypeVar("S", bound=Enum)


def can_transition(
    table: Mapping[S, set[S]], current: S, new: S
) -> bool:
    return new in table.get(current, set())


def ensure_transition(
    table: Mapping[S, set[S]], current: S, new: S
) -> None:
    """Raise unless *current* -> *new* is an edge of *table*."""
    if not can_transition(table, current, new):
        raise InvalidStateTransition(current.value, new.value)


def is_terminal(table: Mapping[S, set[S]], status: S) -> bool:
    return not table.get(status)


def ensure_trip_transition(current: TripStatus, new: TripStatus) -> None:
    ensure_transition(TRIP_TRANSITIONS, TripStatus(current), TripStatus(new))


def ensure_booking_transition(
    current: BookingStatus, new: BookingStatus
) -> None:
    ensure_transition(
        BOOKING_TRANSITIONS, BookingStatus(current), BookingStatus(new)
    )


def ensure_payment_transition(
    current: PaymentStatus, new: PaymentStatus
) -> None:
    ensure_transition(
        PAYMENT_STATUS_TRANSITIONS, PaymentStatus(current), PaymentStatus(new)
    )
