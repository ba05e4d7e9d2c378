"""
Payment settlement contract  (Strategy Pattern)
===============================================

Every payment rail implements :class:`PaymentStrategy`.  Strategies hold
configuration only, so one instance is shared by all concurrent calls.

Expected rail failures (declines, validation errors, transport errors) come
back as ``PaymentResult(success=False, code=...)``; they are not raised.
"""

from __future__ import annotations

import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping, Optional

import httpx


# ── Value objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class CardDetails:
    number: str
    expiry_month: str
    expiry_year: str
    cvv: str
    holder: str = ""

    @property
    def last4(self) -> str:
        return self.number[-4:]

    def __repr__(self) -> str:  # keep PAN and CVV out of logs
        return f"CardDetails(last4={self.last4!r}, holder={self.holder!r})"


@dataclass(frozen=True)
class PaymentInstrument:
    """Method-specific inputs the passenger supplies for a booking."""

    card: Optional[CardDetails] = None
    payment_method_id: Optional[str] = None  # stripe
    payment_intent_id: Optional[str] = None  # stripe, pre-authorised
    order_id: Optional[str] = None  # paypal, client-approved
    customer_email: Optional[str] = None
    save_payment_method: bool = False


@dataclass(frozen=True)
class PaymentRequest:
    amount: Decimal
    currency: Optional[str] = None
    booking_id: Optional[str] = None
    description: str = ""
    instrument: PaymentInstrument = field(default_factory=PaymentInstrument)
    idempotency_key: Optional[str] = None


@dataclass(frozen=True)
class RefundRequest:
    transaction_id: str
    amount: Decimal
    currency: Optional[str] = None
    booking_id: Optional[str] = None
    reason: str = ""
    idempotency_key: Optional[str] = None


@dataclass(frozen=True)
class PaymentResult:
    success: bool
    status: str
    transaction_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    method: Optional[str] = None
    error: Optional[str] = None
    code: Optional[str] = None
    message: Optional[str] = None
    details: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(
        cls,
        code: str,
        error: str,
        *,
        method: Optional[str] = None,
        status: str = "failed",
        **details: Any,
    ) -> "PaymentResult":
        return cls(
            success=False,
            status=status,
            method=method,
            error=error,
            code=code,
            details=details,
        )


@dataclass(frozen=True)
class PaymentMethodInfo:
    id: str
    name: str
    description: str
    requires_online: bool
    supports_recurring: bool
    supported_currencies: tuple[str, ...]


def new_transaction_id(prefix: str) -> str:
    """``PREFIX_<epoch-millis>_<random>`` -- unique, sortable, rail-tagged."""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


# ── Strategy hierarchy ────────────────────────────────────────────────


class PaymentStrategy(ABC):
    method: str = ""

    @abstractmethod
    async def process(self, request: PaymentRequest) -> PaymentResult: ...

    @abstractmethod
    async def refund(self, request: RefundRequest) -> PaymentResult: ...

    @abstractmethod
    def get_name(self) -> str: ...

    @abstractmethod
    def get_description(self) -> str: ...

    @abstractmethod
    def requires_online(self) -> bool: ...

    @abstractmethod
    def supports_recurring(self) -> bool: ...

    @abstractmethod
    def get_supported_currencies(self) -> tuple[str, ...]: ...

    def describe(self) -> PaymentMethodInfo:
        return PaymentMethodInfo(
            id=self.method,
            name=self.get_name(),
            description=self.get_description(),
            requires_online=self.requires_online(),
            supports_recurring=self.supports_recurring(),
            supported_currencies=self.get_supported_currencies(),
        )


# ── HTTP transport shared by online rails ─────────────────────────────


class HttpRail:
    """Mixin for strategies that talk JSON over HTTP.

    A shared ``httpx.AsyncClient`` may be injected (tests use one backed by
    ``httpx.MockTransport``); otherwise a short-lived client is opened per call.
    """

    http_client: Optional[httpx.AsyncClient] = None
    request_timeout: float = 30.0

    async def _post(self, url: str, **kwargs: Any) -> dict[str, Any]:
        if self.http_client is not None:
            response = await self.http_client.post(url, **kwargs)
        else:
            async with httpx.AsyncClient(timeout=self.request_timeout) as client:
                response = await client.post(url, **kwargs)
        response.raise_for_status()
        return response.json()
