"""Trip, booking and payment state machines, and trip transitions in the DB."""

import pytest

from rideshare.domain.enums import (
    BOOKING_TRANSITIONS,
    PAYMENT_STATUS_TRANSITIONS,
    TRIP_TRANSITIONS,
    BookingStatus,
    PaymentStatus,
    TripStatus,
)
from rideshare.domain.exceptions import InvalidStateTransition, TripNotFoundError
from rideshare.domain.state_machine import (
    can_transition,
    ensure_booking_transition,
    ensure_payment_transition,
    ensure_trip_transition,
    is_terminal,
)
from rideshare.services.inventory import TripInventoryManager


class TestTripStateMachine:
    # ── Valid transitions ─────────────────────────────────────────

    @pytest.mark.parametrize(
        "new", [TripStatus.IN_PROGRESS, TripStatus.CANCELLED, TripStatus.DELETED]
    )
    def test_active_can_move_on(self, new):
        ensure_trip_transition(TripStatus.ACTIVE, new)

    def test_in_progress_to_completed(self):
        ensure_trip_transition(TripStatus.IN_PROGRESS, TripStatus.COMPLETED)

    # ── Invalid transitions ───────────────────────────────────────

    def test_active_to_completed_fails(self):
        with pytest.raises(InvalidStateTransition):
            ensure_trip_transition(TripStatus.ACTIVE, TripStatus.COMPLETED)

    def test_in_progress_cannot_be_cancelled(self):
        """Once started, a trip can only complete."""
        with pytest.raises(InvalidStateTransition):
            ensure_trip_transition(TripStatus.IN_PROGRESS, TripStatus.CANCELLED)

    @pytest.mark.parametrize(
        "terminal", [TripStatus.COMPLETED, TripStatus.CANCELLED, TripStatus.DELETED]
    )
    def test_terminal_states_are_final(self, terminal):
        assert is_terminal(TRIP_TRANSITIONS, terminal)
        with pytest.raises(InvalidStateTransition):
            ensure_trip_transition(terminal, TripStatus.ACTIVE)

    def test_error_names_both_states(self):
        with pytest.raises(InvalidStateTransition) as exc_info:
            ensure_trip_transition(TripStatus.COMPLETED, TripStatus.ACTIVE)
        assert exc_info.value.from_state == "completed"
        assert exc_info.value.to_state == "active"

    def test_plain_string_values_are_accepted(self):
        ensure_trip_transition("active", "in_progress")


class TestBookingStateMachine:
    def test_pending_to_confirmed(self):
        ensure_booking_transition(BookingStatus.PENDING, BookingStatus.CONFIRMED)

    def test_confirmed_to_completed(self):
        ensure_booking_transition(BookingStatus.CONFIRMED, BookingStatus.COMPLETED)

    def test_pending_cannot_skip_to_completed(self):
        with pytest.raises(InvalidStateTransition):
            ensure_booking_transition(BookingStatus.PENDING, BookingStatus.COMPLETED)

    def test_completed_cannot_be_cancelled(self):
        with pytest.raises(InvalidStateTransition):
            ensure_booking_transition(BookingStatus.COMPLETED, BookingStatus.CANCELLED)

    def test_no_self_loops(self):
        for status in BookingStatus:
            assert not can_transition(BOOKING_TRANSITIONS, status, status)


class TestPaymentStatusMachine:
    def test_paid_to_refunded(self):
        ensure_payment_transition(PaymentStatus.PAID, PaymentStatus.REFUNDED)

    def test_unpaid_cannot_be_refunded(self):
        with pytest.raises(InvalidStateTransition):
            ensure_payment_transition(PaymentStatus.UNPAID, PaymentStatus.REFUNDED)

    def test_refunded_is_final(self):
        assert is_terminal(PAYMENT_STATUS_TRANSITIONS, PaymentStatus.REFUNDED)


class TestTripTransitionsPersisted:
    @pytest.mark.asyncio
    async def test_start_stamps_started_at(self, session_factory, make_trip):
        trip_id = await make_trip()
        async with session_factory.begin() as session:
            trip = await TripInventoryManager(session).transition(
                trip_id, TripStatus.IN_PROGRESS
            )
            assert trip.status == TripStatus.IN_PROGRESS
            assert trip.started_at is not None
            assert trip.completed_at is None

    @pytest.mark.asyncio
    async def test_full_lifecycle(self, session_factory, make_trip):
        trip_id = await make_trip()
        async with session_factory.begin() as session:
            inventory = TripInventoryManager(session)
            await inventory.transition(trip_id, TripStatus.IN_PROGRESS)
            trip = await inventory.transition(trip_id, TripStatus.COMPLETED)
            assert trip.started_at is not None
            assert trip.completed_at is not None

    @pytest.mark.asyncio
    async def test_cancel_records_reason(self, session_factory, make_trip):
        trip_id = await make_trip()
        async with session_factory.begin() as session:
            await TripInventoryManager(session).transition(
                trip_id, TripStatus.CANCELLED, reason="Car broke down"
            )
        async with session_factory() as session:
            trip = await TripInventoryManager(session).get_trip(trip_id)
            assert trip.status == TripStatus.CANCELLED
            assert trip.cancellation_reason == "Car broke down"
            assert trip.cancelled_at is not None

    @pytest.mark.asyncio
    async def test_illegal_transition_leaves_trip_untouched(
        self, session_factory, make_trip
    ):
        trip_id = await make_trip()
        with pytest.raises(InvalidStateTransition):
            async with session_factory.begin() as session:
                await TripInventoryManager(session).transition(
                    trip_id, TripStatus.COMPLETED
                )
        async with session_factory() as session:
            trip = await TripInventoryManager(session).get_trip(trip_id)
            assert trip.status == TripStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_unknown_trip(self, session_factory):
        with pytest.raises(TripNotFoundError):
            async with session_factory.begin() as session:
                await TripInventoryManager(session).transition(
                    "missing", TripStatus.IN_PROGRESS
                )
