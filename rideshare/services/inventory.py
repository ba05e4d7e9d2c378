"""
Trip Inventory Manager
======================

Owns a trip's seat count and lifecycle::

    active ──> in_progress ──> completed
      │
      ├──> cancelled
      └──> deleted

``reserve_seats`` is a single conditional UPDATE (check and decrement in one
statement), so concurrent bookings for the last seats cannot both win.
``release_seats`` is guarded per booking by ``bookings.seats_released``: a
booking gives its seats back at most once however often cancellation is
retried.

The manager works inside the caller's unit of work; it flushes but never
commits.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from rideshare.domain.enums import TRIP_TIMESTAMP_FIELDS, TripStatus
from rideshare.domain.exceptions import TripNotFoundError
from rideshare.domain.state_machine import ensure_trip_transition
from rideshare.infrastructure.models import TripModel, utcnow
from rideshare.infrastructure.repositories import BookingRepository, TripRepository

logger = logging.getLogger(__name__)


class TripInventoryManager:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.trips = TripRepository(session)
        self.bookings = BookingRepository(session)

    async def create_trip(
        self,
        *,
        driver_id: str,
        total_seats: int,
        price_per_seat: Decimal,
        pricing_strategy: str = "standard",
        vehicle_id: Optional[str] = None,
        from_city: Optional[str] = None,
        to_city: Optional[str] = None,
        departure_time=None,
    ) -> TripModel:
        if total_seats < 1:
            raise ValueError("A trip needs at least one seat")
        trip = TripModel(
            driver_id=driver_id,
            vehicle_id=vehicle_id,
            from_city=from_city,
            to_city=to_city,
            departure_time=departure_time,
            total_seats=total_seats,
            available_seats=total_seats,
            price_per_seat=price_per_seat,
            pricing_strategy=pricing_strategy,
            status=TripStatus.ACTIVE,
        )
        trip = await self.trips.create(trip)
        logger.info("Trip %s published with %d seats", trip.id, total_seats)
        return trip

    async def get_trip(self, trip_id: str) -> TripModel:
        trip = await self.trips.get_by_id(trip_id)
        if trip is None:
            raise TripNotFoundError(trip_id)
        return trip

    async def reserve_seats(self, trip_id: str, seats: int) -> bool:
        if seats < 1:
            raise ValueError("seats must be >= 1")
        reserved = await self.trips.reserve_seats(trip_id, seats)
        if reserved:
            logger.debug("Reserved %d seat(s) on trip %s", seats, trip_id)
        return reserved

    async def release_seats(self, trip_id: str, seats: int, booking_id: str) -> bool:
        """Return *booking_id*'s seats to the trip.  False if already released."""
        if not await self.bookings.mark_seats_released(booking_id):
            logger.debug("Seats of booking %s already released", booking_id)
            return False
        await self.trips.release_seats(trip_id, seats)
        logger.debug("Released %d seat(s) on trip %s", seats, trip_id)
        return True

    async def transition(
        self,
        trip_id: str,
        new_status: TripStatus,
        reason: Optional[str] = None,
    ) -> TripModel:
        trip = await self.trips.get_for_update(trip_id)
        if trip is None:
            raise TripNotFoundError(trip_id)

        ensure_trip_transition(trip.status, new_status)
        trip.status = new_status

        stamp = TRIP_TIMESTAMP_FIELDS.get(new_status)
        if stamp is not None and getattr(trip, stamp) is None:
            setattr(trip, stamp, utcnow())
        if reason is not None:
            trip.cancellation_reason = reason

        await self.session.flush()
        logger.info("Trip %s -> %s", trip_id, new_status.value)
        return trip
