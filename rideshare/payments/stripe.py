"""
Stripe -- international card gateway
====================================

Flow
----
1. ``create_payment_intent`` places a manual-capture pre-authorisation that
   the client confirms with its card.
2. ``process`` captures that intent; given only a payment-method id it
   creates and confirms the intent itself, then captures.
3. ``handle_webhook`` verifies the ``Stripe-Signature`` header with
   ``stripe.Webhook.construct_event`` and maps the provider event to an
   internal outcome.

The ``stripe`` SDK is synchronous; every API call runs in a worker thread so
the event loop is never blocked.  The secret key is passed per request rather
than set on the ``stripe`` module.
"""

from __future__ import annotations

import asyncio
import json
import logging
from decimal import Decimal
from typing import Any, Callable, Optional, Union

import stripe

from rideshare.config import StripeSettings

from .base import (
    PaymentRequest,
    PaymentResult,
    PaymentStrategy,
    RefundRequest,
    new_transaction_id,
)

logger = logging.getLogger(__name__)

_MINOR_UNIT = Decimal("100")


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * _MINOR_UNIT).quantize(Decimal("1")))


def _error_result(exc: stripe.StripeError, method: str) -> PaymentResult:
    if isinstance(exc, stripe.APIConnectionError):
        return PaymentResult.failure(
            "PAYMENT_ERROR", "Stripe unreachable", method=method
        )
    return PaymentResult.failure(
        (exc.code or "STRIPE_ERROR").upper(),
        exc.user_message or "Stripe request failed",
        method=method,
    )


class StripeStrategy(PaymentStrategy):
    method = "stripe"

    def __init__(self, config: Optional[StripeSettings] = None):
        config = config or StripeSettings()
        self._secret_key = config.secret_key
        self._webhook_secret = config.webhook_secret
        self.webhook_tolerance_seconds = config.webhook_tolerance_seconds
        self.simulate = config.simulate

    # ── Settlement ────────────────────────────────────────────────────

    async def create_payment_intent(
        self,
        amount: Decimal,
        currency: str = "eur",
        booking_id: Optional[str] = None,
    ) -> PaymentResult:
        """Pre-authorise *amount*; the client confirms it with ``client_secret``."""
        currency = currency.lower()
        if self.simulate:
            intent_id = new_transaction_id("pi")
            return PaymentResult(
                success=True,
                status="requires_confirmation",
                transaction_id=intent_id,
                amount=amount,
                currency=currency,
                method=self.method,
                details={"client_secret": f"{intent_id}_secret"},
            )
        try:
            intent = await self._call(
                stripe.PaymentIntent.create,
                amount=to_minor_units(amount),
                currency=currency,
                capture_method="manual",
                metadata={"booking_id": booking_id or ""},
            )
        except stripe.StripeError as exc:
            return _error_result(exc, self.method)
        return PaymentResult(
            success=True,
            status=getattr(intent, "status", None) or "requires_confirmation",
            transaction_id=intent.id,
            amount=amount,
            currency=currency,
            method=self.method,
            details={"client_secret": getattr(intent, "client_secret", None)},
        )

    async def process(self, request: PaymentRequest) -> PaymentResult:
        instrument = request.instrument
        currency = (request.currency or "eur").lower()
        if not (instrument.payment_intent_id or instrument.payment_method_id):
            return PaymentResult.failure(
                "PAYMENT_METHOD_REQUIRED",
                "Payment method required",
                method=self.method,
            )

        if self.simulate:
            return PaymentResult(
                success=True,
                status="succeeded",
                transaction_id=instrument.payment_intent_id
                or new_transaction_id("pi"),
                amount=request.amount,
                currency=currency,
                method=self.method,
                message="Payment processed successfully (SIMULATED)",
                details={"receipt_url": None},
            )

        try:
            intent_id = instrument.payment_intent_id
            if intent_id is None:
                params: dict[str, Any] = {
                    "amount": to_minor_units(request.amount),
                    "currency": currency,
                    "payment_method": instrument.payment_method_id,
                    "confirm": True,
                    "capture_method": "manual",
                    "metadata": {"booking_id": request.booking_id or ""},
                }
                if instrument.customer_email:
                    params["receipt_email"] = instrument.customer_email
                if request.idempotency_key:
                    params["idempotency_key"] = request.idempotency_key
                intent = await self._call(stripe.PaymentIntent.create, **params)
                if intent.status != "requires_capture":
                    error = getattr(intent, "last_payment_error", None)
                    return PaymentResult.failure(
                        getattr(error, "code", None) or "PAYMENT_NOT_AUTHORIZED",
                        getattr(error, "message", None) or "Payment was not authorised",
                        method=self.method,
                        status=intent.status or "failed",
                    )
                intent_id = intent.id

            captured = await self._call(stripe.PaymentIntent.capture, intent_id)
        except stripe.StripeError as exc:
            logger.warning("Stripe payment failed: %s", exc.code or exc)
            return _error_result(exc, self.method)

        if captured.status != "succeeded":
            return PaymentResult.failure(
                "CAPTURE_FAILED",
                "Payment capture did not succeed",
                method=self.method,
                status=captured.status or "failed",
            )
        return PaymentResult(
            success=True,
            status="succeeded",
            transaction_id=captured.id,
            amount=request.amount,
            currency=currency,
            method=self.method,
            details={"charge_id": getattr(captured, "latest_charge", None)},
        )

    async def refund(self, request: RefundRequest) -> PaymentResult:
        if self.simulate:
            return PaymentResult(
                success=True,
                status="succeeded",
                transaction_id=new_transaction_id("re"),
                amount=request.amount,
                currency=request.currency,
                method=self.method,
                details={"original_transaction_id": request.transaction_id},
            )
        params: dict[str, Any] = {
            "payment_intent": request.transaction_id,
            "amount": to_minor_units(request.amount),
        }
        if request.idempotency_key:
            params["idempotency_key"] = request.idempotency_key
        try:
            refund = await self._call(stripe.Refund.create, **params)
        except stripe.StripeError as exc:
            return _error_result(exc, self.method)
        if refund.status not in ("succeeded", "pending"):
            return PaymentResult.failure(
                "REFUND_ERROR", "Refund was not accepted", method=self.method
            )
        return PaymentResult(
            success=True,
            status=refund.status,
            transaction_id=refund.id,
            amount=request.amount,
            currency=request.currency,
            method=self.method,
            details={"original_transaction_id": request.transaction_id},
        )

    # ── Webhooks ──────────────────────────────────────────────────────

    def handle_webhook(
        self, payload: Union[bytes, str], signature_header: str
    ) -> PaymentResult:
        """Map a signed provider event to an internal success/failure outcome."""
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        secret = self._webhook_secret.get_secret_value()
        if not secret or not signature_header:
            return self._rejected()

        try:
            stripe.Webhook.construct_event(
                payload,
                signature_header,
                secret,
                tolerance=self.webhook_tolerance_seconds,
            )
        except stripe.SignatureVerificationError:
            return self._rejected()
        except ValueError:
            return PaymentResult.failure(
                "WEBHOOK_ERROR", "Malformed webhook payload", method=self.method
            )

        try:
            event = json.loads(payload)
            event_type = event["type"]
            obj = event["data"]["object"]
        except (ValueError, KeyError, TypeError):
            return PaymentResult.failure(
                "WEBHOOK_ERROR", "Malformed webhook payload", method=self.method
            )

        if event_type == "payment_intent.succeeded":
            return PaymentResult(
                success=True,
                status="succeeded",
                transaction_id=obj.get("id"),
                method=self.method,
                details={"event": event_type},
            )
        if event_type == "payment_intent.payment_failed":
            error = obj.get("last_payment_error") or {}
            return PaymentResult.failure(
                error.get("code") or "PAYMENT_FAILED",
                error.get("message") or "Payment failed",
                method=self.method,
                event=event_type,
                transaction_id=obj.get("id"),
            )
        if event_type == "charge.refunded":
            return PaymentResult(
                success=True,
                status="refunded",
                transaction_id=obj.get("payment_intent") or obj.get("id"),
                method=self.method,
                details={"event": event_type},
            )
        return PaymentResult(
            success=True,
            status="ignored",
            method=self.method,
            details={"event": event_type},
        )

    def _rejected(self) -> PaymentResult:
        logger.warning("Rejected Stripe webhook with invalid signature")
        return PaymentResult.failure(
            "WEBHOOK_SIGNATURE_INVALID",
            "Webhook signature verification failed",
            method=self.method,
        )

    # ── Internals ─────────────────────────────────────────────────────

    async def _call(self, operation: Callable[..., Any], *args: Any, **params: Any) -> Any:
        return await asyncio.to_thread(
            operation, *args, api_key=self._secret_key.get_secret_value(), **params
        )

    def get_name(self) -> str:
        return "Credit/Debit Card (Stripe)"

    def get_description(self) -> str:
        return "Pay securely with your credit or debit card via Stripe"

    def requires_online(self) -> bool:
        return True

    def supports_recurring(self) -> bool:
        return True

    def get_supported_currencies(self) -> tuple[str, ...]:
        return ("EUR", "USD", "GBP", "CAD", "AUD")
