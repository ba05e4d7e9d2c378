"""Seat inventory: conditional reservation, idempotent release, no overselling."""

import asyncio
from decimal import Decimal

import pytest

from rideshare.domain.enums import BookingStatus, PaymentStatus, TripStatus
from rideshare.infrastructure.models import BookingModel
from rideshare.infrastructure.repositories import BookingRepository
from rideshare.services.inventory import TripInventoryManager


async def _reserve(session_factory, trip_id: str, seats: int) -> bool:
    async with session_factory.begin() as session:
        return await TripInventoryManager(session).reserve_seats(trip_id, seats)


async def _add_booking(session_factory, trip_id: str, seats: int) -> str:
    async with session_factory.begin() as session:
        booking = await BookingRepository(session).create(
            BookingModel(
                trip_id=trip_id,
                passenger_id="passenger-1",
                num_seats=seats,
                total_price=Decimal("1000.00") * seats,
                currency="DZD",
                payment_method="cash",
                status=BookingStatus.PENDING,
                payment_status=PaymentStatus.UNPAID,
            )
        )
        return booking.id


async def _release(session_factory, trip_id: str, seats: int, booking_id: str) -> bool:
    async with session_factory.begin() as session:
        return await TripInventoryManager(session).release_seats(
            trip_id, seats, booking_id
        )


class TestCreateTrip:
    @pytest.mark.asyncio
    async def test_new_trip_is_active_and_full(self, session_factory, make_trip):
        trip_id = await make_trip(total_seats=4)
        async with session_factory() as session:
            trip = await TripInventoryManager(session).get_trip(trip_id)
            assert trip.status == TripStatus.ACTIVE
            assert trip.available_seats == trip.total_seats == 4

    @pytest.mark.asyncio
    async def test_trip_needs_a_seat(self, session_factory):
        with pytest.raises(ValueError):
            async with session_factory.begin() as session:
                await TripInventoryManager(session).create_trip(
                    driver_id="driver-1", total_seats=0, price_per_seat=Decimal("10")
                )


class TestReserveSeats:
    @pytest.mark.asyncio
    async def test_reserve_decrements(self, session_factory, make_trip, available_seats):
        trip_id = await make_trip(total_seats=3)
        assert await _reserve(session_factory, trip_id, 2)
        assert await available_seats(trip_id) == 1

    @pytest.mark.asyncio
    async def test_exact_fit(self, session_factory, make_trip, available_seats):
        trip_id = await make_trip(total_seats=3)
        assert await _reserve(session_factory, trip_id, 3)
        assert await available_seats(trip_id) == 0

    @pytest.mark.asyncio
    async def test_over_capacity_changes_nothing(
        self, session_factory, make_trip, available_seats
    ):
        trip_id = await make_trip(total_seats=3)
        assert not await _reserve(session_factory, trip_id, 4)
        assert await available_seats(trip_id) == 3

    @pytest.mark.asyncio
    async def test_only_active_trips_take_bookings(
        self, session_factory, make_trip, available_seats
    ):
        trip_id = await make_trip(total_seats=3)
        async with session_factory.begin() as session:
            await TripInventoryManager(session).transition(trip_id, TripStatus.IN_PROGRESS)
        assert not await _reserve(session_factory, trip_id, 1)
        assert await available_seats(trip_id) == 3

    @pytest.mark.asyncio
    async def test_unknown_trip(self, session_factory):
        assert not await _reserve(session_factory, "missing", 1)

    @pytest.mark.asyncio
    async def test_seats_must_be_positive(self, session_factory, make_trip):
        trip_id = await make_trip()
        with pytest.raises(ValueError):
            await _reserve(session_factory, trip_id, 0)


class TestReleaseSeats:
    @pytest.mark.asyncio
    async def test_release_restores(self, session_factory, make_trip, available_seats):
        trip_id = await make_trip(total_seats=3)
        await _reserve(session_factory, trip_id, 2)
        booking_id = await _add_booking(session_factory, trip_id, 2)

        assert await _release(session_factory, trip_id, 2, booking_id)
        assert await available_seats(trip_id) == 3

    @pytest.mark.asyncio
    async def test_release_is_idempotent_per_booking(
        self, session_factory, make_trip, available_seats
    ):
        trip_id = await make_trip(total_seats=3)
        await _reserve(session_factory, trip_id, 1)
        await _reserve(session_factory, trip_id, 1)
        first = await _add_booking(session_factory, trip_id, 1)
        await _add_booking(session_factory, trip_id, 1)

        assert await _release(session_factory, trip_id, 1, first)
        assert not await _release(session_factory, trip_id, 1, first)
        assert await available_seats(trip_id) == 2

    @pytest.mark.asyncio
    async def test_release_never_exceeds_total(
        self, session_factory, make_trip, available_seats
    ):
        trip_id = await make_trip(total_seats=3)
        booking_id = await _add_booking(session_factory, trip_id, 2)

        assert await _release(session_factory, trip_id, 2, booking_id)
        assert await available_seats(trip_id) == 3


class TestNoOverselling:
    @pytest.mark.asyncio
    async def test_concurrent_reservations_never_oversell(
        self, session_factory, make_trip, available_seats
    ):
        trip_id = await make_trip(total_seats=5)

        results = await asyncio.gather(
            *(_reserve(session_factory, trip_id, 1) for _ in range(12))
        )

        assert results.count(True) == 5
        assert await available_seats(trip_id) == 0

    @pytest.mark.asyncio
    async def test_concurrent_multi_seat_requests(
        self, session_factory, make_trip, available_seats
    ):
        trip_id = await make_trip(total_seats=4)

        results = await asyncio.gather(
            *(_reserve(session_factory, trip_id, 3) for _ in range(4))
        )

        assert results.count(True) == 1
        assert await available_seats(trip_id) == 1
