"""
services/payment/gateway.py
Razorpay adapter. The SDK is synchronous, so every call runs in a worker
thread behind a circuit breaker; idempotent reads are retried on
transient network errors. Gateway error text is logged, never returned.
"""

import asyncio
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Optional

import razorpay
import requests
from razorpay.errors import BadRequestError as GatewayBadRequestError
from pybreaker import CircuitBreaker, CircuitBreakerError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.settings import settings
from shared.utils.errors import UpstreamError
from shared.utils.security import verify_razorpay_signature

logger = logging.getLogger(__name__)

# Payment statuses that mean money has actually moved
SETTLED_PAYMENT_STATUSES = frozenset({"captured", "authorized"})

_retry_transient = retry(
    retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, max=2),
    reraise=True,
)


def to_minor_units(amount: Decimal) -> int:
    """Rupees -> paise."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class RazorpayGateway:
    def __init__(
        self,
        key_id: str,
        key_secret: str,
        currency: str = "INR",
        client: Optional[Any] = None,
        fail_max: int = 5,
        reset_timeout: int = 60,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.currency = currency
        if client is None and key_id and key_secret:
            client = razorpay.Client(auth=(key_id, key_secret))
        self.client = client
        # 4xx from the gateway is a caller problem, not an outage
        self.breaker = CircuitBreaker(
            fail_max=fail_max,
            reset_timeout=reset_timeout,
            exclude=[GatewayBadRequestError],
            name="razorpay",
        )

    @classmethod
    def from_settings(cls) -> "RazorpayGateway":
        return cls(
            key_id=settings.RAZORPAY_KEY_ID,
            key_secret=settings.RAZORPAY_KEY_SECRET,
            currency=settings.RAZORPAY_CURRENCY,
            fail_max=settings.GATEWAY_FAIL_MAX,
            reset_timeout=settings.GATEWAY_RESET_TIMEOUT,
        )

    @property
    def configured(self) -> bool:
        return self.client is not None and bool(self.key_secret)

    async def _call(self, operation: str, fn: Callable[[], dict], user_message: str) -> dict:
        if self.client is None:
            raise UpstreamError("Payment gateway is not configured. Please contact support.")
        try:
            return await asyncio.to_thread(self.breaker.call, fn)
        except CircuitBreakerError:
            logger.error(f"Razorpay circuit open, skipping {operation}")
            raise UpstreamError("Payment service is temporarily unavailable. Please try again shortly.")
        except Exception as e:
            logger.error(f"Razorpay {operation} failed: {e}", exc_info=True)
            raise UpstreamError(user_message)

    # ── Orders ───────────────────────────────────────────────

    async def create_order(self, amount_minor: int, receipt: str, notes: dict) -> dict:
        """
        Not retried: a timed-out create may still have produced an order,
        and a blind retry would open a second one.
        """
        payload = {
            "amount": amount_minor,
            "currency": self.currency,
            "receipt": receipt[:40],
            "notes": notes,
        }
        return await self._call(
            "order.create",
            lambda: self.client.order.create(payload),
            user_message="Failed to create payment order. Please try again.",
        )

    async def fetch_order(self, order_id: str) -> dict:
        @_retry_transient
        def _fetch():
            return self.client.order.fetch(order_id)

        return await self._call(
            "order.fetch", _fetch, user_message="Unable to verify payment order. Please contact support."
        )

    # ── Payments ─────────────────────────────────────────────

    async def fetch_payment(self, payment_id: str) -> dict:
        @_retry_transient
        def _fetch():
            return self.client.payment.fetch(payment_id)

        return await self._call(
            "payment.fetch", _fetch, user_message="Unable to verify payment. Please contact support."
        )

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        return verify_razorpay_signature(order_id, payment_id, signature, self.key_secret)
