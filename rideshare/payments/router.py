"""
Payment router -- method id -> strategy registry
=================================================

Built once at startup (``PaymentRouter.from_settings``) and read-only
afterwards; strategies carry configuration only, so a single router is safe
to share across concurrent bookings.

Every settlement/refund call is bounded by a timeout.  A timeout is reported
as ``PAYMENT_TIMEOUT`` so callers run the same rollback path as for a decline.
"""

from __future__ import annotations

import asyncio
import logging
from types import MappingProxyType
from typing import Mapping, Optional

import httpx

from rideshare.config import PaymentSettings
from rideshare.domain.exceptions import CardValidationError, UnsupportedMethodError

from .base import (
    PaymentMethodInfo,
    PaymentRequest,
    PaymentResult,
    PaymentStrategy,
    RefundRequest,
)
from .cash import CashStrategy
from .cib import CIBStrategy
from .edahabia import EdahabiaStrategy
from .paypal import PayPalStrategy
from .stripe import StripeStrategy

logger = logging.getLogger(__name__)


class PaymentRouter:
    def __init__(
        self,
        strategies: Mapping[str, PaymentStrategy],
        *,
        timeout_seconds: Optional[float] = 30.0,
    ):
        self._strategies: Mapping[str, PaymentStrategy] = MappingProxyType(
            {name.lower(): strategy for name, strategy in strategies.items()}
        )
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(
        cls,
        config: PaymentSettings,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "PaymentRouter":
        strategies: list[PaymentStrategy] = [
            CashStrategy(config.cash),
            CIBStrategy(config.cib, http_client=http_client),
            EdahabiaStrategy(config.edahabia, http_client=http_client),
            StripeStrategy(config.stripe),
            PayPalStrategy(config.paypal, http_client=http_client),
        ]
        for strategy in strategies:
            if hasattr(strategy, "request_timeout"):
                strategy.request_timeout = config.timeout_seconds
        return cls(
            {s.method: s for s in strategies},
            timeout_seconds=config.timeout_seconds,
        )

    # ── Lookup ────────────────────────────────────────────────────────

    def get_strategy(self, method: str) -> PaymentStrategy:
        strategy = self._strategies.get((method or "").lower())
        if strategy is None:
            raise UnsupportedMethodError(method)
        return strategy

    def is_method_available(self, method: str) -> bool:
        return (method or "").lower() in self._strategies

    def get_available_methods(self) -> list[PaymentMethodInfo]:
        return [strategy.describe() for strategy in self._strategies.values()]

    # ── Settlement ────────────────────────────────────────────────────

    async def process_payment(
        self,
        method: str,
        request: PaymentRequest,
        timeout: Optional[float] = None,
    ) -> PaymentResult:
        strategy = self.get_strategy(method)
        return await self._bounded(
            strategy, strategy.process(request), timeout, "PAYMENT_TIMEOUT"
        )

    async def refund_payment(
        self,
        method: str,
        request: RefundRequest,
        timeout: Optional[float] = None,
    ) -> PaymentResult:
        strategy = self.get_strategy(method)
        return await self._bounded(
            strategy, strategy.refund(request), timeout, "REFUND_TIMEOUT"
        )

    async def _bounded(self, strategy, call, timeout, timeout_code) -> PaymentResult:
        timeout = self.timeout_seconds if timeout is None else timeout
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("%s call timed out after %ss", strategy.method, timeout)
            return PaymentResult.failure(
                timeout_code,
                "Payment provider did not answer in time",
                method=strategy.method,
                status="timeout",
            )
        except CardValidationError as exc:
            return PaymentResult.failure(exc.code, str(exc), method=strategy.method)
