"""
Domestic interbank card rails
=============================

Validation runs locally before any network call:

1. strip spaces / dashes, require 16 digits and the issuer prefix  -> ``INVALID_CARD``
2. Luhn checksum                                                   -> ``CARD_VALIDATION_FAILED``
3. expiry (valid through the last day of the expiry month)          -> ``INVALID_EXPIRY`` / ``CARD_EXPIRED``
4. 3-digit CVV                                                      -> ``INVALID_CVV``

With ``simulate`` enabled the rail is replaced by a deterministic decision on
the card prefix, for environments where the real network is unreachable.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import httpx

from rideshare.config import DomesticCardSettings
from rideshare.domain.exceptions import CardValidationError

from .base import (
    CardDetails,
    HttpRail,
    PaymentRequest,
    PaymentResult,
    PaymentStrategy,
    RefundRequest,
    new_transaction_id,
)

logger = logging.getLogger(__name__)

_SEPARATORS = re.compile(r"[\s-]")
_CVV = re.compile(r"^\d{3}$")


def luhn_check(number: str) -> bool:
    """Right-to-left, double every second digit, valid iff the sum is 0 mod 10.

    Spaces and dashes are ignored; any other non-digit makes the number invalid.
    """
    digits = clean_card_number(number)
    if not digits or not (digits.isascii() and digits.isdigit()):
        return False
    total = 0
    for position, char in enumerate(reversed(digits)):
        digit = int(char)
        if position % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def clean_card_number(number: str) -> str:
    return _SEPARATORS.sub("", number or "")


def validate_card(
    card: CardDetails,
    number_pattern: re.Pattern[str],
    *,
    now: Optional[datetime] = None,
) -> str:
    """Return the cleaned card number or raise :class:`CardValidationError`."""
    number = clean_card_number(card.number)
    if not number_pattern.match(number):
        raise CardValidationError("INVALID_CARD", "Invalid card number format")

    if not luhn_check(number):
        raise CardValidationError(
            "CARD_VALIDATION_FAILED", "Invalid card number (checksum failed)"
        )

    try:
        month = int(card.expiry_month)
        year = int(card.expiry_year)
    except (TypeError, ValueError):
        raise CardValidationError("INVALID_EXPIRY", "Invalid expiry date") from None
    if not 1 <= month <= 12:
        raise CardValidationError("INVALID_EXPIRY", "Invalid expiry date")
    if year < 100:
        year += 2000

    now = now or datetime.now(timezone.utc)
    if (year, month) < (now.year, now.month):
        raise CardValidationError("CARD_EXPIRED", "Card has expired")

    if not _CVV.match(card.cvv or ""):
        raise CardValidationError("INVALID_CVV", "Invalid CVV")

    return number


class DomesticCardStrategy(HttpRail, PaymentStrategy):
    """Shared flow for the local interbank networks."""

    number_pattern: re.Pattern[str] = re.compile(r"^\d{16}$")
    transaction_prefix: str = "CARD"
    # Simulated rail: approve these prefixes, decline everything else.
    approve_prefixes: tuple[str, ...] = ()
    simulated_decline_code: str = "CARD_DECLINED"
    simulated_decline_error: str = "Card declined by issuer"

    def __init__(
        self,
        config: DomesticCardSettings,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.merchant_id = config.merchant_id
        self._api_key = config.api_key
        self.api_url = config.api_url.rstrip("/")
        self.simulate = config.simulate
        self.http_client = http_client
        self._clock = clock

    async def process(self, request: PaymentRequest) -> PaymentResult:
        card = request.instrument.card
        if card is None:
            return PaymentResult.failure(
                "CARD_REQUIRED", "Card details required", method=self.method
            )
        try:
            number = validate_card(card, self.number_pattern, now=self._clock())
        except CardValidationError as exc:
            return PaymentResult.failure(
                exc.code, str(exc), method=self.method
            )

        currency = request.currency or "DZD"
        if self.simulate:
            return self._simulated_charge(number, request, currency)

        try:
            body = await self._post(
                f"{self.api_url}/charges",
                json={
                    "merchant_id": self.merchant_id,
                    "card_number": number,
                    "expiry_month": card.expiry_month,
                    "expiry_year": card.expiry_year,
                    "cvv": card.cvv,
                    "card_holder": card.holder,
                    "amount": str(request.amount),
                    "currency": currency,
                    "order_id": request.booking_id,
                    "description": request.description,
                },
                headers=self._headers(request.idempotency_key),
            )
        except httpx.TimeoutException:
            return PaymentResult.failure(
                "PAYMENT_TIMEOUT", "Card network timed out", method=self.method
            )
        except httpx.HTTPError as exc:
            logger.warning("%s charge failed: %s", self.method, type(exc).__name__)
            return PaymentResult.failure(
                "PAYMENT_ERROR", "Card network unavailable", method=self.method
            )
        return self._format_charge(body, request, currency, number)

    async def refund(self, request: RefundRequest) -> PaymentResult:
        if self.simulate:
            return PaymentResult(
                success=True,
                status="refunded",
                transaction_id=new_transaction_id("REF"),
                amount=request.amount,
                currency=request.currency,
                method=self.method,
                details={"original_transaction_id": request.transaction_id},
            )
        try:
            body = await self._post(
                f"{self.api_url}/refunds",
                json={
                    "merchant_id": self.merchant_id,
                    "transaction_id": request.transaction_id,
                    "amount": str(request.amount),
                    "reason": request.reason,
                },
                headers=self._headers(request.idempotency_key),
            )
        except httpx.HTTPError as exc:
            logger.warning("%s refund failed: %s", self.method, type(exc).__name__)
            return PaymentResult.failure(
                "REFUND_ERROR", "Card network unavailable", method=self.method
            )
        if body.get("status") != "refunded":
            return PaymentResult.failure(
                "REFUND_ERROR",
                body.get("error") or "Refund rejected",
                method=self.method,
            )
        return PaymentResult(
            success=True,
            status="refunded",
            transaction_id=body.get("refund_id"),
            amount=request.amount,
            currency=request.currency,
            method=self.method,
            details={"original_transaction_id": request.transaction_id},
        )

    # ── Internals ─────────────────────────────────────────────────────

    def _headers(self, idempotency_key: Optional[str]) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self._api_key.get_secret_value()}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def _simulated_charge(
        self, number: str, request: PaymentRequest, currency: str
    ) -> PaymentResult:
        if number.startswith(self.approve_prefixes):
            return PaymentResult(
                success=True,
                status="completed",
                transaction_id=new_transaction_id(self.transaction_prefix),
                amount=request.amount,
                currency=currency,
                method=self.method,
                message="Payment processed successfully (SIMULATED)",
                details={"card_last4": number[-4:]},
            )
        return PaymentResult.failure(
            self.simulated_decline_code,
            self.simulated_decline_error,
            method=self.method,
            status="declined",
        )

    def _format_charge(
        self,
        body: dict[str, Any],
        request: PaymentRequest,
        currency: str,
        number: str,
    ) -> PaymentResult:
        if body.get("status") != "approved":
            return PaymentResult.failure(
                body.get("code") or "CARD_DECLINED",
                body.get("error") or "Card declined by issuer",
                method=self.method,
                status="declined",
                decline_reason=body.get("decline_reason"),
            )
        return PaymentResult(
            success=True,
            status="completed",
            transaction_id=body.get("transaction_id"),
            amount=request.amount,
            currency=currency,
            method=self.method,
            details={"card_last4": number[-4:]},
        )

    def requires_online(self) -> bool:
        return True

    def supports_recurring(self) -> bool:
        return True

    def get_supported_currencies(self) -> tuple[str, ...]:
        return ("DZD",)
