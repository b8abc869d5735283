"""
services/payment/broker.py
Opens a gateway order for a booking intent. Nothing is stored locally:
the intent rides in the order's notes and is read back on verification.
"""

import json
import logging
import secrets
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.payment.gateway import RazorpayGateway, to_minor_units
from services.pricing.resolver import PricingResolver
from services.slots.ledger import SlotLedger, slot_keys
from shared.models.models import PaymentType, SlotStatus, User, UserAddress, Vehicle
from shared.schemas.schemas import BookingIntent
from shared.utils.errors import ConflictError, InvalidInputError, NotFoundError

logger = logging.getLogger(__name__)


def parse_intent(booking_data: dict) -> BookingIntent:
    try:
        return BookingIntent.model_validate(booking_data)
    except ValidationError as e:
        missing = [
            str(err["loc"][0]) for err in e.errors() if err["type"] == "missing" and err["loc"]
        ]
        if missing:
            raise InvalidInputError(
                f"service_id, vehicle_id and scheduled_at are required in booking_data "
                f"(missing: {', '.join(missing)})"
            )
        raise InvalidInputError("Invalid booking_data")


def generate_receipt() -> str:
    """RCP + last 8 digits of epoch millis + 4 hex chars; well under the 40-char limit."""
    millis = str(int(time.time() * 1000))
    return f"RCP{millis[-8:]}{secrets.token_hex(2)}"


class PaymentSessionBroker:
    def __init__(
        self,
        db: AsyncSession,
        ledger: SlotLedger,
        pricing: PricingResolver,
        gateway: RazorpayGateway,
    ):
        self.db = db
        self.ledger = ledger
        self.pricing = pricing
        self.gateway = gateway

    async def create_session(
        self,
        user: User,
        booking_data: dict,
        payment_type: PaymentType,
        declared_amount: Decimal,
    ) -> dict:
        """
        Validate the intent, check the slot (advisory), cap the amount at the
        authoritative quote, then open a gateway order carrying the intent.
        """
        intent = parse_intent(booking_data)
        payment_type = PaymentType(payment_type)
        declared_amount = Decimal(declared_amount)
        if declared_amount <= 0:
            raise InvalidInputError("Amount must be greater than zero")

        date_key, time_key = slot_keys(intent.scheduled_at)
        slot = await self.ledger.find_slot(date_key, time_key)
        if not slot:
            raise NotFoundError("Slot not found for the selected date and time")
        if slot.status != SlotStatus.AVAILABLE:
            raise ConflictError(
                "This slot has been booked by another user. Please select a different slot."
            )

        result = await self.db.execute(
            select(Vehicle.id).where(Vehicle.id == intent.vehicle_id, Vehicle.user_id == user.id)
        )
        if result.scalar_one_or_none() is None:
            raise NotFoundError("Vehicle not found")

        if intent.address_id:
            result = await self.db.execute(
                select(UserAddress.id).where(
                    UserAddress.id == intent.address_id,
                    UserAddress.user_id == user.id,
                )
            )
            if result.scalar_one_or_none() is None:
                raise NotFoundError("Address not found")
        elif not intent.address:
            raise InvalidInputError("Address is required")

        quote = await self.pricing.quote(
            intent.service_id,
            intent.vehicle_id,
            payment_type,
            add_ons=intent.add_ons,
            coupon_code=intent.coupon_code,
        )
        if declared_amount > quote.payable_amount:
            raise InvalidInputError("Requested amount exceeds payable amount")

        notes = {
            "user_id": str(user.id),
            "payment_type": payment_type.value,
            "amount_paid": str(declared_amount),
            "booking_data": json.dumps(intent.model_dump(mode="json")),
        }
        order = await self.gateway.create_order(
            to_minor_units(declared_amount), generate_receipt(), notes
        )

        session_id = f"sess_{secrets.token_hex(12)}"
        expires_at = datetime.now(timezone.utc) + timedelta(
            minutes=settings.CHECKOUT_SESSION_TTL_MINUTES
        )
        logger.info(
            f"Checkout session {session_id} opened: order {order['id']} "
            f"for {declared_amount} ({payment_type.value}) slot {date_key} {time_key}"
        )
        return {
            "session_id": session_id,
            "order_id": order["id"],
            "amount": declared_amount,
            "currency": order.get("currency", self.gateway.currency),
            "expires_at": expires_at,
            "key_id": self.gateway.key_id,
        }
