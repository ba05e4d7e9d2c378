"""Error taxonomy for the booking core."""

from __future__ import annotations

from typing import Optional


class BookingCoreError(Exception):
    """Base exception for all domain-level errors."""


class InvalidStateTransition(BookingCoreError):
    """Raised when a trip, booking or payment status change violates its state machine."""

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Cannot transition from {from_state} to {to_state}")


class TripNotFoundError(BookingCoreError):
    pass


class BookingNotFoundError(BookingCoreError):
    pass


class VehicleNotFoundError(BookingCoreError):
    pass


class NotTripDriverError(BookingCoreError):
    """Raised when a driver-only operation is invoked by someone else."""


class SeatsUnavailableError(BookingCoreError):
    """Raised when a trip cannot hold the requested number of seats."""


class PaymentFailedError(BookingCoreError):
    """Settlement failed; ``code`` is the strategy's error code."""

    def __init__(self, code: str, message: Optional[str] = None):
        self.code = code
        super().__init__(message or f"Payment failed ({code})")


class RefundFailedError(PaymentFailedError):
    """A refund was attempted and rejected; the booking was left untouched."""


class UnsupportedMethodError(BookingCoreError):
    def __init__(self, method: str):
        self.method = method
        super().__init__(f"Payment method not supported: {method}")


class CardValidationError(BookingCoreError):
    """Card details rejected locally, before any network call."""

    def __init__(self, code: str, message: str):
        self.code = code
        super().__init__(message)


class EncryptionError(BookingCoreError):
    pass


class DecryptionError(BookingCoreError):
    """Authentication tag did not verify, or the record is malformed."""


class ReconciliationRequiredError(BookingCoreError):
    """The booking's payment outcome is unknown and must be resolved first."""


class CancellationInProgressError(BookingCoreError):
    """Another request is already refunding and cancelling this booking."""
