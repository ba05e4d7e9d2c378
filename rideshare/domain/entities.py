"""
Domain value objects.

- ``EncryptedValue``  -- the four stored components of an encrypted field,
  tagged with the scheme version that produced them.
- ``TicketPayload``   -- the minimal record embedded in a signed ticket.
- ``TripCompletionReport`` -- outcome of the completion sweep for one trip.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class EncryptedValue:
    ciphertext: str  # hex
    iv: str  # hex
    auth_tag: str  # hex
    salt: str  # hex
    version: int = 1


@dataclass(frozen=True)
class TicketPayload:
    booking_id: str
    trip_id: str
    passenger_id: str
    seats: int
    issued_at: int  # epoch millis

    @classmethod
    def issue(
        cls, booking_id: str, trip_id: str, passenger_id: str, seats: int
    ) -> "TicketPayload":
        return cls(
            booking_id=booking_id,
            trip_id=trip_id,
            passenger_id=passenger_id,
            seats=seats,
            issued_at=int(time.time() * 1000),
        )


@dataclass
class TripCompletionReport:
    trip_id: str
    completed_booking_ids: list[str] = field(default_factory=list)
    # Cash bookings whose payment was never confirmed by the driver.
    outstanding_cash_booking_ids: list[str] = field(default_factory=list)
    # Holds whose payment outcome was never settled.
    unresolved_booking_ids: list[str] = field(default_factory=list)
