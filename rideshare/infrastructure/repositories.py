"""
Repository Pattern -- keeps SQL out of the services.

Each repository receives an ``AsyncSession`` (unit of work).  Seat counts are
only ever changed with single conditional UPDATE statements so concurrent
requests cannot oversell a trip.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import case, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rideshare.domain.enums import BookingStatus, PaymentStatus, TripStatus

from .models import BookingModel, TripModel, VehicleModel, utcnow

OPEN_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


class TripRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, trip: TripModel) -> TripModel:
        self.session.add(trip)
        await self.session.flush()
        return trip

    async def get_by_id(self, trip_id: str) -> Optional[TripModel]:
        return await self.session.get(TripModel, trip_id, populate_existing=True)

    async def get_for_update(self, trip_id: str) -> Optional[TripModel]:
        result = await self.session.execute(
            select(TripModel)
            .where(TripModel.id == trip_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def reserve_seats(self, trip_id: str, seats: int) -> bool:
        """Check-and-decrement in one statement; False if it did not fit."""
        result = await self.session.execute(
            update(TripModel)
            .where(
                TripModel.id == trip_id,
                TripModel.status == TripStatus.ACTIVE,
                TripModel.available_seats >= seats,
            )
            .values(
                available_seats=TripModel.available_seats - seats,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release_seats(self, trip_id: str, seats: int) -> bool:
        """Give *seats* back, capped at ``total_seats``."""
        restored = TripModel.available_seats + seats
        result = await self.session.execute(
            update(TripModel)
            .where(TripModel.id == trip_id)
            .values(
                available_seats=case(
                    (restored > TripModel.total_seats, TripModel.total_seats),
                    else_=restored,
                ),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class BookingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, booking: BookingModel) -> BookingModel:
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def get_by_id(self, booking_id: str) -> Optional[BookingModel]:
        return await self.session.get(
            BookingModel, booking_id, populate_existing=True
        )

    async def get_for_update(self, booking_id: str) -> Optional[BookingModel]:
        result = await self.session.execute(
            select(BookingModel)
            .where(BookingModel.id == booking_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_trip(
        self,
        trip_id: str,
        statuses: Optional[Iterable[BookingStatus]] = None,
    ) -> list[BookingModel]:
        query = (
            select(BookingModel)
            .where(BookingModel.trip_id == trip_id)
            .order_by(BookingModel.created_at)
            .execution_options(populate_existing=True)
        )
        if statuses is not None:
            query = query.where(BookingModel.status.in_(list(statuses)))
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def mark_seats_released(self, booking_id: str) -> bool:
        """Flip ``seats_released`` once; False if it was already set."""
        result = await self.session.execute(
            update(BookingModel)
            .where(
                BookingModel.id == booking_id,
                BookingModel.seats_released.is_(False),
            )
            .values(seats_released=True, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def settle(
        self,
        booking_id: str,
        *,
        status: BookingStatus,
        payment_status: PaymentStatus,
        transaction_id: Optional[str],
    ) -> bool:
        """Record the settlement outcome on a hold that is still pending."""
        values = {
            "status": status,
            "payment_status": payment_status,
            "transaction_id": transaction_id,
            "needs_reconciliation": False,
            "updated_at": utcnow(),
        }
        if status == BookingStatus.CONFIRMED:
            values["confirmed_at"] = utcnow()
        result = await self.session.execute(
            update(BookingModel)
            .where(
                BookingModel.id == booking_id,
                BookingModel.status == BookingStatus.PENDING,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def claim_cancellation(self, booking_id: str) -> bool:
        """Mark an open, settled booking as being cancelled; one caller wins."""
        result = await self.session.execute(
            update(BookingModel)
            .where(
                BookingModel.id == booking_id,
                BookingModel.status.in_(OPEN_STATUSES),
                BookingModel.cancel_in_progress.is_(False),
                BookingModel.needs_reconciliation.is_(False),
                BookingModel.transaction_id.is_not(None),
                BookingModel.payment_status != PaymentStatus.PENDING,
            )
            .values(cancel_in_progress=True, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release_cancellation_claim(self, booking_id: str) -> None:
        await self.session.execute(
            update(BookingModel)
            .where(
                BookingModel.id == booking_id,
                BookingModel.cancel_in_progress.is_(True),
            )
            .values(cancel_in_progress=False, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    async def attach_ticket(self, booking_id: str, token: str) -> bool:
        """Store *token* on a booking that is still open and has none yet."""
        result = await self.session.execute(
            update(BookingModel)
            .where(
                BookingModel.id == booking_id,
                BookingModel.status.in_(OPEN_STATUSES),
                BookingModel.ticket_token.is_(None),
            )
            .values(ticket_token=token, ticket_issued_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def flag_for_reconciliation(self, booking_id: str) -> bool:
        result = await self.session.execute(
            update(BookingModel)
            .where(
                BookingModel.id == booking_id,
                BookingModel.status == BookingStatus.PENDING,
                BookingModel.transaction_id.is_(None),
            )
            .values(needs_reconciliation=True, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def flag_stale_holds(
        self, older_than: datetime, booking_id: Optional[str] = None
    ) -> int:
        """Flag pending holds with no settlement outcome created before *older_than*."""
        query = update(BookingModel).where(
            BookingModel.status == BookingStatus.PENDING,
            BookingModel.transaction_id.is_(None),
            BookingModel.needs_reconciliation.is_(False),
            BookingModel.created_at < older_than,
        )
        if booking_id is not None:
            query = query.where(BookingModel.id == booking_id)
        result = await self.session.execute(
            query.values(needs_reconciliation=True, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def list_missing_tickets(self, limit: int = 100) -> list[BookingModel]:
        """Settled bookings whose ticket could not be minted yet."""
        result = await self.session.execute(
            select(BookingModel)
            .where(
                BookingModel.status.in_(OPEN_STATUSES),
                BookingModel.transaction_id.is_not(None),
                BookingModel.ticket_token.is_(None),
            )
            .order_by(BookingModel.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def delete(self, booking_id: str) -> None:
        await self.session.execute(
            delete(BookingModel)
            .where(BookingModel.id == booking_id)
            .execution_options(synchronize_session=False)
        )


class VehicleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, vehicle: VehicleModel) -> VehicleModel:
        self.session.add(vehicle)
        await self.session.flush()
        return vehicle

    async def get_by_id(self, vehicle_id: str) -> Optional[VehicleModel]:
        return await self.session.get(VehicleModel, vehicle_id)

    async def list_legacy(self, limit: int = 500) -> list[VehicleModel]:
        result = await self.session.execute(
            select(VehicleModel)
            .where(VehicleModel.license_plate_legacy.is_(True))
            .limit(limit)
        )
        return list(result.scalars().all())
