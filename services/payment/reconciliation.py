"""
services/payment/reconciliation.py
The only path that creates a paid booking and books a slot.
Booking insert and the conditional slot update share one transaction,
so a lost race leaves neither behind.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.redis_client import RedisCache
from services.booking.state_machine import BookingStateMachine
from services.payment.gateway import SETTLED_PAYMENT_STATUSES, RazorpayGateway
from services.slots.ledger import SlotLedger
from shared.models.models import Booking, PaymentStatus, PaymentType, SlotStatus, User
from shared.schemas.schemas import BookingIntent
from shared.utils.errors import (
    AppError,
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    UpstreamError,
)

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Payment received. Once slot assigned to a staff we'll let you know."
SLOT_TAKEN_MESSAGE = (
    "This slot has been booked by another user. Please select a different slot "
    "and contact support for a refund."
)
REFUND_NOTICE = "Your payment was received; please contact support for a refund."


def _captured_amount(payment: dict, notes: dict) -> Optional[Decimal]:
    """Amount the gateway actually took, falling back to the amount declared at checkout."""
    try:
        if payment.get("amount") is not None:
            return (Decimal(str(payment["amount"])) / 100).quantize(Decimal("0.01"))
        if notes.get("amount_paid"):
            return Decimal(str(notes["amount_paid"])).quantize(Decimal("0.01"))
    except (InvalidOperation, TypeError, ValueError):
        logger.warning(f"Unreadable amount on payment {payment.get('id')}")
    return None


class ReconciliationCoordinator:
    def __init__(
        self,
        db: AsyncSession,
        redis,
        gateway: RazorpayGateway,
        ledger: SlotLedger,
        bookings: BookingStateMachine,
    ):
        self.db = db
        self.cache = RedisCache(redis)
        self.gateway = gateway
        self.ledger = ledger
        self.bookings = bookings

    async def _booking_for_payment(self, payment_id: str) -> Optional[Booking]:
        result = await self.db.execute(
            select(Booking).where(Booking.razorpay_payment_id == payment_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _already_verified(booking: Booking, user_id, order_id: str, payment_id: str) -> dict:
        if booking.user_id != user_id:
            raise ConflictError("This payment has already been used for another booking")
        logger.info(f"Replayed verification for payment {payment_id}: booking {booking.id}")
        return {
            "success": True,
            "booking_id": str(booking.id),
            "message": SUCCESS_MESSAGE,
            "payment_id": payment_id,
            "order_id": order_id,
        }

    # ── Success path ─────────────────────────────────────────

    async def verify_and_materialize(
        self,
        user: User,
        order_id: str,
        payment_id: str,
        signature: str,
    ) -> dict:
        """
        1. signature check (forged callbacks)
        2. payment must be captured/authorized at the gateway
        3. intent read back from the order notes
        4. booking built against the current ledger
        5. booking insert + conditional reserve, committed together
        """
        if not (order_id and payment_id and signature):
            raise InvalidInputError("All payment verification fields are required")

        if not self.gateway.verify_signature(order_id, payment_id, signature):
            logger.warning(f"Invalid payment signature for order {order_id} by user {user.id}")
            raise UpstreamError("Invalid payment signature")

        existing = await self._booking_for_payment(payment_id)
        if existing:
            return self._already_verified(existing, user.id, order_id, payment_id)

        async with self.cache.payment_lock(payment_id) as acquired:
            if not acquired:
                raise ConflictError("This payment is already being processed")
            existing = await self._booking_for_payment(payment_id)
            if existing:
                return self._already_verified(existing, user.id, order_id, payment_id)
            return await self._materialize(user, order_id, payment_id)

    async def _materialize(self, user: User, order_id: str, payment_id: str) -> dict:
        # user is expired by a rollback below; keep the id
        user_id = user.id
        payment = await self.gateway.fetch_payment(payment_id)
        if payment.get("status") not in SETTLED_PAYMENT_STATUSES:
            logger.warning(f"Payment {payment_id} not settled: status={payment.get('status')}")
            raise UpstreamError("Payment not completed")
        if payment.get("order_id") and payment["order_id"] != order_id:
            logger.warning(f"Payment {payment_id} belongs to order {payment['order_id']}, not {order_id}")
            raise UpstreamError("Payment does not match this order")

        order = await self.gateway.fetch_order(order_id)
        notes = order.get("notes") or {}
        if not notes.get("booking_data"):
            raise UpstreamError("Booking data not found in payment order")
        if notes.get("user_id") != str(user.id):
            raise ForbiddenError("This payment belongs to a different account")

        try:
            intent = BookingIntent.model_validate_json(notes["booking_data"])
            payment_type = PaymentType(notes.get("payment_type") or PaymentType.FULL.value)
        except (ValidationError, ValueError):
            logger.error(f"Order {order_id} carries an unreadable booking intent")
            raise UpstreamError("Booking data in payment order is invalid")

        amount_paid = _captured_amount(payment, notes)

        try:
            booking, slot, _ = await self.bookings.create_from_intent(user, intent, payment_type)
            booking_id = booking.id

            if payment_type == PaymentType.ADVANCE:
                if amount_paid is not None:
                    booking.advance_amount = amount_paid
            elif amount_paid is not None and abs(amount_paid - booking.total_amount) > Decimal("0.01"):
                logger.warning(
                    f"Payment amount mismatch on order {order_id}: "
                    f"paid {amount_paid}, expected {booking.total_amount}"
                )

            current = await self.ledger.get_slot(slot.id)
            if current is None or current.status != SlotStatus.AVAILABLE:
                raise ConflictError(SLOT_TAKEN_MESSAGE)

            booking.payment_status = PaymentStatus.PAID
            booking.razorpay_order_id = order_id
            booking.razorpay_payment_id = payment_id
            await self.db.flush()

            await self.ledger.reserve(slot.id, booking_id)
            await self.db.commit()
        except ConflictError:
            await self.db.rollback()
            logger.error(
                f"Paid but unbookable: order {order_id} payment {payment_id} "
                f"user {user_id} slot taken before reservation"
            )
            raise ConflictError(SLOT_TAKEN_MESSAGE)
        except IntegrityError:
            await self.db.rollback()
            existing = await self._booking_for_payment(payment_id)
            if existing:
                return self._already_verified(existing, user_id, order_id, payment_id)
            logger.error(f"Integrity failure materializing order {order_id} payment {payment_id}")
            raise ConflictError(SLOT_TAKEN_MESSAGE)
        except AppError as exc:
            await self.db.rollback()
            logger.error(
                f"Paid but unbookable: order {order_id} payment {payment_id} "
                f"user {user_id}: {exc.message}"
            )
            raise type(exc)(f"{exc.message}. {REFUND_NOTICE}")

        logger.info(f"Booking {booking_id} materialized from order {order_id} payment {payment_id}")
        return {
            "success": True,
            "booking_id": str(booking_id),
            "message": SUCCESS_MESSAGE,
            "payment_id": payment_id,
            "order_id": order_id,
        }

    # ── Failure path ─────────────────────────────────────────

    async def handle_failure(
        self,
        user: User,
        session_id: str,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> dict:
        """No booking exists before payment succeeds, so nothing is rolled back."""
        if not session_id:
            raise InvalidInputError("session_id is required")
        logger.info(f"Checkout {session_id} failed for user {user.id}: {error_code or 'unknown'}")
        return {
            "success": False,
            "booking_id": "",
            "message": error_message or "Payment failed",
        }
