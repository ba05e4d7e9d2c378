"""
Booking Orchestrator
====================

Control flow of ``create_booking``::

    reserve seats + write hold ──> settle payment ──> record outcome ──> mint ticket
          (one transaction)        (no transaction)    (one transaction)   (isolated)

* Seats are always held before any payment attempt.
* A decline, timeout or provider error releases the held seats and removes
  the hold, so the trip's ``available_seats`` ends exactly where it started.
* If the request itself is cancelled while the payment is in flight, the
  hold is kept and flagged ``needs_reconciliation``: the outcome is unknown,
  so neither success nor failure is assumed.  Holds that never received an
  outcome are also flagged when read after ``stale_hold_seconds``.
* A ticket that cannot be minted after a successful payment does not undo
  the booking; ``retry_pending_tickets`` picks it up later.

Cancellation first claims the booking with a conditional UPDATE, so of two
concurrent requests only one refunds; the other gets
``CancellationInProgressError``.  The winner then runs the acquisition steps
in reverse: refund (a failed refund releases the claim and changes nothing),
release seats, mark the booking cancelled.  Cancelling twice is a no-op.
A hold whose payment is still in flight cannot be cancelled; if it is closed
by reconciliation meanwhile, the late payment is voided and
``create_booking`` fails with ``HOLD_CLOSED``.

Booking lifecycle::

    pending ──> confirmed ──> completed
       └──────────┴──> cancelled
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rideshare.domain.entities import TicketPayload, TripCompletionReport
from rideshare.domain.enums import BookingStatus, PaymentStatus, TripStatus
from rideshare.domain.exceptions import (
    BookingNotFoundError,
    CancellationInProgressError,
    NotTripDriverError,
    PaymentFailedError,
    ReconciliationRequiredError,
    RefundFailedError,
    SeatsUnavailableError,
)
from rideshare.domain.state_machine import (
    ensure_booking_transition,
    ensure_payment_transition,
)
from rideshare.infrastructure.models import BookingModel, utcnow
from rideshare.infrastructure.repositories import (
    OPEN_STATUSES,
    BookingRepository,
    TripRepository,
)
from rideshare.payments.base import (
    PaymentInstrument,
    PaymentRequest,
    PaymentResult,
    RefundRequest,
)
from rideshare.payments.cash import MANUAL_REFUND_REQUIRED
from rideshare.payments.router import PaymentRouter
from rideshare.schemas import BookingRead, TripRead
from rideshare.security.encryption import EncryptionService

from .inventory import TripInventoryManager

logger = logging.getLogger(__name__)

CASH = "cash"


@dataclass(frozen=True)
class BookingConfirmation:
    booking: BookingRead
    ticket: Optional[str]
    payment: PaymentResult


class BookingOrchestrator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        router: PaymentRouter,
        encryption: EncryptionService,
        *,
        payment_timeout: Optional[float] = None,
        stale_hold_seconds: int = 300,
        default_currency: str = "DZD",
    ):
        self._sessions = session_factory
        self.router = router
        self.encryption = encryption
        self.payment_timeout = payment_timeout
        self.stale_hold_seconds = stale_hold_seconds
        self.default_currency = default_currency

    # ── Booking creation ──────────────────────────────────────────────

    async def create_booking(
        self,
        trip_id: str,
        passenger_id: str,
        seats: int,
        payment_method: str,
        *,
        total_price: Decimal,
        currency: Optional[str] = None,
        instrument: Optional[PaymentInstrument] = None,
    ) -> BookingConfirmation:
        if seats < 1:
            raise ValueError("seats must be >= 1")
        total_price = Decimal(total_price)
        if total_price < 0:
            raise ValueError("total_price must not be negative")

        method = payment_method.lower()
        strategy = self.router.get_strategy(method)
        currency = (currency or self.default_currency).upper()
        if currency not in strategy.get_supported_currencies():
            raise PaymentFailedError(
                "CURRENCY_NOT_SUPPORTED",
                f"{strategy.get_name()} does not accept {currency}",
            )
        is_cash = method == CASH

        # 1. Hold the seats.
        async with self._sessions.begin() as session:
            inventory = TripInventoryManager(session)
            if not await inventory.reserve_seats(trip_id, seats):
                trip = await inventory.get_trip(trip_id)
                raise SeatsUnavailableError(
                    f"Trip {trip_id} cannot hold {seats} seat(s) "
                    f"(status={trip.status.value}, available={trip.available_seats})"
                )
            hold = await BookingRepository(session).create(
                BookingModel(
                    trip_id=trip_id,
                    passenger_id=passenger_id,
                    num_seats=seats,
                    total_price=total_price,
                    currency=currency,
                    payment_method=method,
                    status=BookingStatus.PENDING,
                    payment_status=(
                        PaymentStatus.UNPAID if is_cash else PaymentStatus.PENDING
                    ),
                )
            )
            booking_id = hold.id

        # 2. Settle.
        request = PaymentRequest(
            amount=total_price,
            currency=currency,
            booking_id=booking_id,
            description=f"Ride booking {booking_id}",
            instrument=instrument or PaymentInstrument(),
            idempotency_key=f"booking-{booking_id}",
        )
        try:
            result = await self.router.process_payment(
                method, request, timeout=self.payment_timeout
            )
        except asyncio.CancelledError:
            await asyncio.shield(self._flag_for_reconciliation(booking_id))
            raise
        except Exception:
            logger.exception("Payment for booking %s raised", booking_id)
            result = PaymentResult.failure(
                "PAYMENT_ERROR", "Payment provider error", method=method
            )

        if not result.success:
            await asyncio.shield(self._discard_hold(booking_id, trip_id, seats))
            logger.info(
                "Booking %s declined (%s); %d seat(s) returned to trip %s",
                booking_id,
                result.code,
                seats,
                trip_id,
            )
            raise PaymentFailedError(result.code or "PAYMENT_FAILED", result.error)

        # 3. Record the outcome.
        if is_cash:
            status, payment_status = BookingStatus.PENDING, PaymentStatus.UNPAID
        else:
            status, payment_status = BookingStatus.CONFIRMED, PaymentStatus.PAID
        settled = await asyncio.shield(
            self._settle(booking_id, status, payment_status, result.transaction_id)
        )
        if not settled:
            current = await self._read(booking_id)
            if current.status not in OPEN_STATUSES:
                await asyncio.shield(self._void_payment(request, method, result))
                raise PaymentFailedError(
                    "HOLD_CLOSED",
                    f"Booking {booking_id} was closed while its payment was in flight",
                )
            logger.warning(
                "Booking %s was settled out of band (%s); keeping that outcome",
                booking_id,
                current.transaction_id,
            )

        # 4. Ticket.
        ticket = await self._issue_ticket(booking_id, trip_id, passenger_id, seats)
        booking = await self._read(booking_id)
        logger.info(
            "Booking %s created: %d seat(s) on trip %s via %s",
            booking_id,
            seats,
            trip_id,
            method,
        )
        return BookingConfirmation(booking=booking, ticket=ticket, payment=result)

    async def _settle(
        self,
        booking_id: str,
        status: BookingStatus,
        payment_status: PaymentStatus,
        transaction_id: Optional[str],
    ) -> bool:
        async with self._sessions.begin() as session:
            settled = await BookingRepository(session).settle(
                booking_id,
                status=status,
                payment_status=payment_status,
                transaction_id=transaction_id,
            )
        if not settled:
            logger.error(
                "Booking %s was paid (%s) but is no longer a pending hold",
                booking_id,
                transaction_id,
            )
        return settled

    async def _void_payment(
        self, request: PaymentRequest, method: str, result: PaymentResult
    ) -> None:
        """Hand back a payment that landed on a hold closed in the meantime."""
        if method == CASH:
            return
        try:
            voided = await self.router.refund_payment(
                method,
                RefundRequest(
                    transaction_id=result.transaction_id,
                    amount=request.amount,
                    currency=request.currency,
                    booking_id=request.booking_id,
                    reason="Booking closed before payment settled",
                    idempotency_key=f"void-{request.booking_id}",
                ),
                timeout=self.payment_timeout,
            )
        except Exception:
            logger.exception(
                "Voiding payment %s for booking %s raised",
                result.transaction_id,
                request.booking_id,
            )
            return
        if voided.success:
            logger.warning(
                "Payment %s for closed booking %s voided",
                result.transaction_id,
                request.booking_id,
            )
        else:
            logger.error(
                "Payment %s for closed booking %s could not be voided (%s); "
                "refund it manually",
                result.transaction_id,
                request.booking_id,
                voided.code,
            )

    async def _discard_hold(self, booking_id: str, trip_id: str, seats: int) -> None:
        async with self._sessions.begin() as session:
            await TripInventoryManager(session).release_seats(trip_id, seats, booking_id)
            await BookingRepository(session).delete(booking_id)

    async def _flag_for_reconciliation(self, booking_id: str) -> None:
        async with self._sessions.begin() as session:
            await BookingRepository(session).flag_for_reconciliation(booking_id)
        logger.warning(
            "Request for booking %s abandoned mid-payment; outcome unknown",
            booking_id,
        )

    async def _issue_ticket(
        self, booking_id: str, trip_id: str, passenger_id: str, seats: int
    ) -> Optional[str]:
        try:
            token = self.encryption.sign_ticket(
                TicketPayload.issue(booking_id, trip_id, passenger_id, seats)
            )
            async with self._sessions.begin() as session:
                repo = BookingRepository(session)
                if not await repo.attach_ticket(booking_id, token):
                    existing = await repo.get_by_id(booking_id)
                    token = existing.ticket_token if existing else None
            return token
        except Exception:
            logger.exception(
                "Ticket for booking %s could not be minted; left for retry",
                booking_id,
            )
            return None

    # ── Cancellation ──────────────────────────────────────────────────

    async def cancel_booking(
        self, booking_id: str, reason: Optional[str] = None
    ) -> BookingRead:
        async with self._sessions() as session:
            booking = await BookingRepository(session).get_by_id(booking_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        if booking.status == BookingStatus.CANCELLED:
            logger.info("Booking %s already cancelled", booking_id)
            return BookingRead.model_validate(booking)
        ensure_booking_transition(booking.status, BookingStatus.CANCELLED)

        # Only the caller that wins the claim refunds.
        async with self._sessions.begin() as session:
            repo = BookingRepository(session)
            claimed = await repo.claim_cancellation(booking_id)
            booking = await repo.get_by_id(booking_id)
        if not claimed:
            return self._unclaimed_cancellation(booking_id, booking)

        try:
            refund: Optional[PaymentResult] = None
            if booking.payment_status == PaymentStatus.PAID:
                refund = await self._refund(booking, reason)
        except BaseException:
            await asyncio.shield(self._release_cancellation(booking_id))
            raise

        async with self._sessions.begin() as session:
            await TripInventoryManager(session).release_seats(
                booking.trip_id, booking.num_seats, booking.id
            )
            current = await BookingRepository(session).get_for_update(booking.id)
            current.status = BookingStatus.CANCELLED
            current.cancel_reason = reason
            current.cancelled_at = utcnow()
            current.cancel_in_progress = False
            if refund is not None:
                ensure_payment_transition(current.payment_status, PaymentStatus.REFUNDED)
                current.payment_status = PaymentStatus.REFUNDED
                current.refund_transaction_id = refund.transaction_id
            await session.flush()
            cancelled = BookingRead.model_validate(current)

        logger.info("Booking %s cancelled (%s)", booking_id, reason or "no reason")
        return cancelled

    @staticmethod
    def _unclaimed_cancellation(
        booking_id: str, booking: Optional[BookingModel]
    ) -> BookingRead:
        if booking is None:
            raise BookingNotFoundError(booking_id)
        if booking.status == BookingStatus.CANCELLED:
            logger.info("Booking %s already cancelled", booking.id)
            return BookingRead.model_validate(booking)
        ensure_booking_transition(booking.status, BookingStatus.CANCELLED)
        if booking.cancel_in_progress:
            raise CancellationInProgressError(booking.id)
        # Payment still in flight, or its outcome is unknown.
        raise ReconciliationRequiredError(booking.id)

    async def _release_cancellation(self, booking_id: str) -> None:
        async with self._sessions.begin() as session:
            await BookingRepository(session).release_cancellation_claim(booking_id)

    async def _refund(self, booking: BookingModel, reason: Optional[str]) -> PaymentResult:
        result = await self.router.refund_payment(
            booking.payment_method,
            RefundRequest(
                transaction_id=booking.transaction_id,
                amount=booking.total_price,
                currency=booking.currency,
                booking_id=booking.id,
                reason=reason or "Booking cancelled",
                idempotency_key=f"refund-{booking.id}",
            ),
            timeout=self.payment_timeout,
        )
        if not result.success:
            logger.error(
                "Refund for booking %s failed (%s); booking left unchanged",
                booking.id,
                result.code,
            )
            raise RefundFailedError(result.code or "REFUND_ERROR", result.error)
        if result.status == MANUAL_REFUND_REQUIRED:
            logger.warning(
                "Booking %s needs a manual cash refund of %s %s",
                booking.id,
                booking.total_price,
                booking.currency,
            )
        return result

    # ── Cash confirmation ─────────────────────────────────────────────

    async def confirm_cash_payment(
        self, booking_id: str, driver_id: str, amount_received: Decimal
    ) -> BookingRead:
        """Driver acknowledges the cash was handed over."""
        async with self._sessions.begin() as session:
            booking = await BookingRepository(session).get_for_update(booking_id)
            if booking is None:
                raise BookingNotFoundError(booking_id)
            if booking.payment_method != CASH:
                raise PaymentFailedError(
                    "NOT_CASH_BOOKING", "Only cash bookings are confirmed by the driver"
                )
            trip = await TripRepository(session).get_by_id(booking.trip_id)
            if trip is None or trip.driver_id != driver_id:
                raise NotTripDriverError(driver_id)
            if booking.cancel_in_progress:
                raise CancellationInProgressError(booking_id)

            ensure_payment_transition(booking.payment_status, PaymentStatus.PAID)
            ensure_booking_transition(booking.status, BookingStatus.CONFIRMED)

            result = await self.router.get_strategy(CASH).confirm_payment(
                booking.transaction_id, booking.id, driver_id, Decimal(amount_received)
            )
            if Decimal(amount_received) < booking.total_price:
                logger.warning(
                    "Booking %s: driver received %s, expected %s",
                    booking_id,
                    amount_received,
                    booking.total_price,
                )

            booking.payment_status = PaymentStatus.PAID
            booking.status = BookingStatus.CONFIRMED
            booking.confirmed_at = utcnow()
            if trip.status == TripStatus.COMPLETED:
                # Trip already finished; nothing left to wait for.
                booking.status = BookingStatus.COMPLETED
                booking.completed_at = utcnow()
            await session.flush()
            confirmed = BookingRead.model_validate(booking)

        logger.info(
            "Cash payment for booking %s confirmed by driver %s (%s)",
            booking_id,
            driver_id,
            result.status,
        )
        return confirmed

    # ── Trip lifecycle ────────────────────────────────────────────────

    async def start_trip(self, trip_id: str, driver_id: Optional[str] = None) -> TripRead:
        async with self._sessions.begin() as session:
            inventory = TripInventoryManager(session)
            await self._check_driver(inventory, trip_id, driver_id)
            trip = await inventory.transition(trip_id, TripStatus.IN_PROGRESS)
            return TripRead.model_validate(trip)

    async def complete_trip(
        self, trip_id: str, driver_id: Optional[str] = None
    ) -> TripCompletionReport:
        """Close the trip and sweep its bookings.

        Confirmed bookings complete with the trip.  Cash bookings the driver
        never confirmed stay pending and are reported for manual follow-up.
        """
        report = TripCompletionReport(trip_id=trip_id)
        async with self._sessions.begin() as session:
            inventory = TripInventoryManager(session)
            await self._check_driver(inventory, trip_id, driver_id)
            await inventory.transition(trip_id, TripStatus.COMPLETED)

            bookings = await BookingRepository(session).list_for_trip(
                trip_id, OPEN_STATUSES
            )
            for booking in bookings:
                if booking.cancel_in_progress:
                    report.unresolved_booking_ids.append(booking.id)
                elif booking.status == BookingStatus.CONFIRMED:
                    ensure_booking_transition(booking.status, BookingStatus.COMPLETED)
                    booking.status = BookingStatus.COMPLETED
                    booking.completed_at = utcnow()
                    report.completed_booking_ids.append(booking.id)
                elif booking.payment_method == CASH and booking.transaction_id:
                    report.outstanding_cash_booking_ids.append(booking.id)
                else:
                    report.unresolved_booking_ids.append(booking.id)

        if report.outstanding_cash_booking_ids:
            logger.warning(
                "Trip %s completed with %d unconfirmed cash payment(s): %s",
                trip_id,
                len(report.outstanding_cash_booking_ids),
                ", ".join(report.outstanding_cash_booking_ids),
            )
        if report.unresolved_booking_ids:
            logger.warning(
                "Trip %s completed with %d unreconciled hold(s): %s",
                trip_id,
                len(report.unresolved_booking_ids),
                ", ".join(report.unresolved_booking_ids),
            )
        logger.info(
            "Trip %s completed; %d booking(s) completed",
            trip_id,
            len(report.completed_booking_ids),
        )
        return report

    async def cancel_trip(
        self, trip_id: str, reason: str, driver_id: Optional[str] = None
    ) -> TripRead:
        return await self._close_trip(trip_id, TripStatus.CANCELLED, reason, driver_id)

    async def delete_trip(self, trip_id: str, driver_id: Optional[str] = None) -> TripRead:
        return await self._close_trip(trip_id, TripStatus.DELETED, "Trip deleted", driver_id)

    async def _close_trip(
        self,
        trip_id: str,
        status: TripStatus,
        reason: str,
        driver_id: Optional[str],
    ) -> TripRead:
        async with self._sessions.begin() as session:
            inventory = TripInventoryManager(session)
            await self._check_driver(inventory, trip_id, driver_id)
            await inventory.transition(trip_id, status, reason=reason)
            open_ids = [
                b.id
                for b in await BookingRepository(session).list_for_trip(
                    trip_id, OPEN_STATUSES
                )
            ]

        # Each booking gets its own refund + transaction; one failure must
        # not block the others.
        for booking_id in open_ids:
            try:
                await self.cancel_booking(booking_id, reason)
            except (
                RefundFailedError,
                ReconciliationRequiredError,
                CancellationInProgressError,
            ) as exc:
                logger.error(
                    "Booking %s on closed trip %s needs manual follow-up: %s",
                    booking_id,
                    trip_id,
                    exc,
                )

        async with self._sessions() as session:
            trip = await TripInventoryManager(session).get_trip(trip_id)
            return TripRead.model_validate(trip)

    @staticmethod
    async def _check_driver(
        inventory: TripInventoryManager, trip_id: str, driver_id: Optional[str]
    ) -> None:
        if driver_id is None:
            return
        trip = await inventory.get_trip(trip_id)
        if trip.driver_id != driver_id:
            raise NotTripDriverError(driver_id)

    # ── Reconciliation / out-of-band work ─────────────────────────────

    def _stale_cutoff(self):
        return utcnow() - timedelta(seconds=self.stale_hold_seconds)

    async def flag_stale_holds(self) -> int:
        async with self._sessions.begin() as session:
            flagged = await BookingRepository(session).flag_stale_holds(
                self._stale_cutoff()
            )
        if flagged:
            logger.warning("Flagged %d stale payment hold(s) for reconciliation", flagged)
        return flagged

    async def resolve_reconciliation(
        self,
        booking_id: str,
        *,
        paid: bool,
        transaction_id: Optional[str] = None,
    ) -> BookingRead:
        """Settle a hold whose payment outcome was unknown.

        ``paid=True`` confirms it with the provider's *transaction_id* (and
        mints the ticket); ``paid=False`` returns the seats and closes the
        hold as unpaid.
        """
        if paid and not transaction_id:
            raise ValueError("transaction_id is required to confirm a payment")
        async with self._sessions.begin() as session:
            repo = BookingRepository(session)
            booking = await repo.get_for_update(booking_id)
            if booking is None:
                raise BookingNotFoundError(booking_id)
            if not booking.needs_reconciliation:
                return BookingRead.model_validate(booking)

            if paid:
                if booking.payment_method != CASH:
                    ensure_booking_transition(booking.status, BookingStatus.CONFIRMED)
                    ensure_payment_transition(booking.payment_status, PaymentStatus.PAID)
                    booking.status = BookingStatus.CONFIRMED
                    booking.payment_status = PaymentStatus.PAID
                    booking.confirmed_at = utcnow()
                booking.transaction_id = transaction_id
            else:
                await TripInventoryManager(session).release_seats(
                    booking.trip_id, booking.num_seats, booking.id
                )
                ensure_booking_transition(booking.status, BookingStatus.CANCELLED)
                booking.status = BookingStatus.CANCELLED
                if booking.payment_status == PaymentStatus.PENDING:
                    booking.payment_status = PaymentStatus.UNPAID
                booking.cancel_reason = "Payment not completed"
                booking.cancelled_at = utcnow()
            booking.needs_reconciliation = False
            trip_id, passenger_id, seats = (
                booking.trip_id,
                booking.passenger_id,
                booking.num_seats,
            )

        logger.info("Booking %s reconciled (paid=%s)", booking_id, paid)
        if paid:
            await self._issue_ticket(booking_id, trip_id, passenger_id, seats)
        return await self._read(booking_id)

    async def retry_pending_tickets(self, limit: int = 100) -> int:
        async with self._sessions() as session:
            missing = await BookingRepository(session).list_missing_tickets(limit)
        issued = 0
        for booking in missing:
            token = await self._issue_ticket(
                booking.id, booking.trip_id, booking.passenger_id, booking.num_seats
            )
            if token is not None:
                issued += 1
        if issued:
            logger.info("Issued %d ticket(s) on retry", issued)
        return issued

    # ── Reads ─────────────────────────────────────────────────────────

    async def get_booking(self, booking_id: str) -> BookingRead:
        """Read a booking, flagging it first if its hold has gone stale."""
        async with self._sessions.begin() as session:
            repo = BookingRepository(session)
            if await repo.flag_stale_holds(self._stale_cutoff(), booking_id=booking_id):
                logger.warning(
                    "Booking %s has no payment outcome; flagged for reconciliation",
                    booking_id,
                )
            booking = await repo.get_by_id(booking_id)
            if booking is None:
                raise BookingNotFoundError(booking_id)
            return BookingRead.model_validate(booking)

    async def list_trip_bookings(self, trip_id: str) -> list[BookingRead]:
        async with self._sessions() as session:
            bookings = await BookingRepository(session).list_for_trip(trip_id)
            return [BookingRead.model_validate(b) for b in bookings]

    async def get_trip(self, trip_id: str) -> TripRead:
        async with self._sessions() as session:
            trip = await TripInventoryManager(session).get_trip(trip_id)
            return TripRead.model_validate(trip)

    async def _read(self, booking_id: str) -> BookingRead:
        async with self._sessions() as session:
            booking = await BookingRepository(session).get_by_id(booking_id)
            if booking is None:
                raise BookingNotFoundError(booking_id)
            return BookingRead.model_validate(booking)
