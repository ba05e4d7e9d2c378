"""
PayPal -- redirect-and-capture wallet
=====================================

``create_order`` returns an approval link; once the passenger approves, the
booking calls ``process`` with the ``order_id`` and the order is captured.
Refunds are issued against the capture id, which is what ``process`` returns
as ``transaction_id``.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional

import httpx

from rideshare.config import PayPalSettings

from .base import (
    HttpRail,
    PaymentRequest,
    PaymentResult,
    PaymentStrategy,
    RefundRequest,
    new_transaction_id,
)

logger = logging.getLogger(__name__)

API_BASES = {
    "sandbox": "https://api-m.sandbox.paypal.com",
    "live": "https://api-m.paypal.com",
}


class PayPalError(Exception):
    pass


class PayPalStrategy(HttpRail, PaymentStrategy):
    method = "paypal"

    def __init__(
        self,
        config: Optional[PayPalSettings] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        config = config or PayPalSettings()
        if config.mode not in API_BASES:
            raise ValueError(f"Unknown PayPal mode: {config.mode!r}")
        self.client_id = config.client_id
        self._client_secret = config.client_secret
        self.mode = config.mode
        self.api_url = API_BASES[config.mode]
        self.simulate = config.simulate
        self.http_client = http_client

    async def create_order(
        self,
        amount: Decimal,
        currency: str = "EUR",
        booking_id: Optional[str] = None,
        description: str = "",
    ) -> PaymentResult:
        """Open an order the passenger approves on PayPal's side."""
        if self.simulate:
            order_id = new_transaction_id("ORDER")
            return PaymentResult(
                success=True,
                status="CREATED",
                transaction_id=order_id,
                amount=amount,
                currency=currency,
                method=self.method,
                details={
                    "approval_url": f"{self.api_url}/checkoutnow?token={order_id}"
                },
            )
        try:
            order = await self._call(
                "/v2/checkout/orders",
                {
                    "intent": "CAPTURE",
                    "purchase_units": [
                        {
                            "reference_id": booking_id,
                            "description": description or "Ride booking",
                            "amount": {
                                "currency_code": currency,
                                "value": f"{Decimal(amount):.2f}",
                            },
                        }
                    ],
                },
            )
        except PayPalError as exc:
            return PaymentResult.failure("PAYPAL_ERROR", str(exc), method=self.method)

        approval_url = next(
            (
                link["href"]
                for link in order.get("links", [])
                if link.get("rel") in ("approve", "payer-action")
            ),
            None,
        )
        return PaymentResult(
            success=True,
            status=order.get("status", "CREATED"),
            transaction_id=order["id"],
            amount=amount,
            currency=currency,
            method=self.method,
            details={"approval_url": approval_url},
        )

    async def process(self, request: PaymentRequest) -> PaymentResult:
        order_id = request.instrument.order_id
        if not order_id:
            return PaymentResult.failure(
                "ORDER_ID_REQUIRED", "PayPal order ID required", method=self.method
            )

        if self.simulate:
            return PaymentResult(
                success=True,
                status="COMPLETED",
                transaction_id=new_transaction_id("CAPTURE"),
                amount=request.amount,
                currency=request.currency,
                method=self.method,
                message="Payment processed successfully (SIMULATED)",
                details={"order_id": order_id},
            )

        try:
            order = await self._call(
                f"/v2/checkout/orders/{order_id}/capture",
                {},
                request_id=request.idempotency_key,
            )
        except PayPalError as exc:
            return PaymentResult.failure("PAYPAL_ERROR", str(exc), method=self.method)

        if order.get("status") != "COMPLETED":
            return PaymentResult.failure(
                "PAYPAL_ERROR",
                "Order was not captured",
                method=self.method,
                status=order.get("status", "failed"),
            )
        try:
            capture = order["purchase_units"][0]["payments"]["captures"][0]
        except (KeyError, IndexError):
            return PaymentResult.failure(
                "PAYPAL_ERROR", "Capture missing from response", method=self.method
            )
        payer = order.get("payer") or {}
        return PaymentResult(
            success=True,
            status="COMPLETED",
            transaction_id=capture["id"],
            amount=request.amount,
            currency=request.currency,
            method=self.method,
            details={"order_id": order_id, "payer_email": payer.get("email_address")},
        )

    async def refund(self, request: RefundRequest) -> PaymentResult:
        if self.simulate:
            return PaymentResult(
                success=True,
                status="COMPLETED",
                transaction_id=new_transaction_id("REFUND"),
                amount=request.amount,
                currency=request.currency,
                method=self.method,
                details={"original_transaction_id": request.transaction_id},
            )
        body: dict[str, Any] = {"note_to_payer": request.reason or "Booking cancelled"}
        if request.currency:
            body["amount"] = {
                "currency_code": request.currency,
                "value": f"{Decimal(request.amount):.2f}",
            }
        try:
            refund = await self._call(
                f"/v2/payments/captures/{request.transaction_id}/refund",
                body,
                request_id=request.idempotency_key,
            )
        except PayPalError as exc:
            return PaymentResult.failure("REFUND_ERROR", str(exc), method=self.method)
        if refund.get("status") not in ("COMPLETED", "PENDING"):
            return PaymentResult.failure(
                "REFUND_ERROR", "Refund was not accepted", method=self.method
            )
        return PaymentResult(
            success=True,
            status=refund["status"],
            transaction_id=refund.get("id"),
            amount=request.amount,
            currency=request.currency,
            method=self.method,
            details={"original_transaction_id": request.transaction_id},
        )

    # ── Internals ─────────────────────────────────────────────────────

    async def _access_token(self) -> str:
        try:
            body = await self._post(
                f"{self.api_url}/v1/oauth2/token",
                data={"grant_type": "client_credentials"},
                auth=(self.client_id, self._client_secret.get_secret_value()),
            )
        except httpx.HTTPError as exc:
            raise PayPalError("PayPal authentication failed") from exc
        return body["access_token"]

    async def _call(
        self,
        path: str,
        payload: dict[str, Any],
        request_id: Optional[str] = None,
    ) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {await self._access_token()}"}
        if request_id:
            headers["PayPal-Request-Id"] = request_id
        try:
            return await self._post(f"{self.api_url}{path}", json=payload, headers=headers)
        except httpx.HTTPStatusError as exc:
            logger.warning("PayPal %s returned %s", path, exc.response.status_code)
            raise PayPalError(f"PayPal request failed ({exc.response.status_code})") from exc
        except httpx.HTTPError as exc:
            raise PayPalError("PayPal unreachable") from exc

    def get_name(self) -> str:
        return "PayPal"

    def get_description(self) -> str:
        return "Pay with your PayPal account"

    def requires_online(self) -> bool:
        return True

    def supports_recurring(self) -> bool:
        return True

    def get_supported_currencies(self) -> tuple[str, ...]:
        return ("EUR", "USD", "GBP", "CAD", "AUD")
