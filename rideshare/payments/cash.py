"""Cash -- settled with the driver at the end of the trip; no remote rail."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from rideshare.config import CashSettings

from .base import (
    PaymentRequest,
    PaymentResult,
    PaymentStrategy,
    RefundRequest,
    new_transaction_id,
)

PENDING_CASH_PAYMENT = "pending_cash_payment"
MANUAL_REFUND_REQUIRED = "manual_refund_required"


class CashStrategy(PaymentStrategy):
    method = "cash"

    def __init__(self, config: Optional[CashSettings] = None):
        config = config or CashSettings()
        self.requires_confirmation = config.requires_confirmation

    async def process(self, request: PaymentRequest) -> PaymentResult:
        currency = request.currency or "DZD"
        return PaymentResult(
            success=True,
            status=PENDING_CASH_PAYMENT,
            transaction_id=new_transaction_id("CASH"),
            amount=request.amount,
            currency=currency,
            method=self.method,
            message="Please pay the driver in cash at the end of your trip",
            details={
                "booking_id": request.booking_id,
                "instructions": {
                    "passenger": f"Please prepare exact change: {request.amount} {currency}",
                    "driver": f"Collect {request.amount} {currency} from passenger upon arrival",
                    "confirmation_required": self.requires_confirmation,
                },
            },
        )

    async def confirm_payment(
        self,
        transaction_id: str,
        booking_id: str,
        driver_id: str,
        amount_received: Decimal,
    ) -> PaymentResult:
        """Driver acknowledges the cash was handed over."""
        return PaymentResult(
            success=True,
            status="completed",
            transaction_id=transaction_id,
            amount=amount_received,
            method=self.method,
            message="Cash payment confirmed by driver",
            details={
                "booking_id": booking_id,
                "confirmed_by": driver_id,
                "confirmed_at": datetime.now(timezone.utc).isoformat(),
            },
        )

    async def refund(self, request: RefundRequest) -> PaymentResult:
        # Cash cannot be returned programmatically; flag for reconciliation.
        return PaymentResult(
            success=True,
            status=MANUAL_REFUND_REQUIRED,
            transaction_id=new_transaction_id("CASH_REF"),
            amount=request.amount,
            currency=request.currency,
            method=self.method,
            message="Cash refunds must be processed manually by the driver",
            details={"original_transaction_id": request.transaction_id},
        )

    def get_name(self) -> str:
        return "Cash Payment"

    def get_description(self) -> str:
        return "Pay the driver directly in cash at the end of your trip"

    def requires_online(self) -> bool:
        return False

    def supports_recurring(self) -> bool:
        return False

    def get_supported_currencies(self) -> tuple[str, ...]:
        return ("DZD", "EUR", "USD")
