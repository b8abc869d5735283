"""
tests/utils.py
Test helpers: auth headers, an in-memory stand-in for the Razorpay SDK
client, and a checkout round-trip.
"""

import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from httpx import AsyncClient
from razorpay.errors import BadRequestError
from sqlalchemy.ext.asyncio import AsyncSession

from services.slots.ledger import business_tz
from shared.models.models import (
    Booking,
    BookingStatus,
    PaymentStatus,
    PaymentType,
    Service,
    Slot,
    SlotStatus,
    User,
    Vehicle,
)
from shared.utils.security import compute_razorpay_signature, create_access_token

TEST_KEY_ID = "rzp_test_key"
TEST_KEY_SECRET = "rzp_test_secret"


def auth_headers(user: User) -> dict:
    token, _ = create_access_token(str(user.id), user.role.value, user.email)
    return {"Authorization": f"Bearer {token}"}


def sign(order_id: str, payment_id: str) -> str:
    return compute_razorpay_signature(order_id, payment_id, TEST_KEY_SECRET)


def future_day(days: int = 3) -> str:
    """A date key `days` ahead of today in the business timezone."""
    return (datetime.now(business_tz()).date() + timedelta(days=days)).isoformat()


def scheduled_at(day: str, time_key: str = "09:00") -> str:
    return f"{day}T{time_key}:00+05:30"


# ── Fake Razorpay SDK client ──────────────────────────────────

class _OrderResource:
    def __init__(self, client: "FakeRazorpayClient"):
        self._client = client

    def create(self, data: dict) -> dict:
        self._client.calls.append(("order.create", data))
        if self._client.fail_with:
            raise self._client.fail_with
        order_id = f"order_{uuid.uuid4().hex[:14]}"
        order = {
            "id": order_id,
            "entity": "order",
            "amount": data["amount"],
            "currency": data["currency"],
            "receipt": data["receipt"],
            "notes": dict(data.get("notes") or {}),
            "status": "created",
        }
        self._client.orders[order_id] = order
        return dict(order)

    def fetch(self, order_id: str) -> dict:
        self._client.calls.append(("order.fetch", order_id))
        if self._client.fail_with:
            raise self._client.fail_with
        if order_id not in self._client.orders:
            raise BadRequestError("The id provided does not exist")
        return dict(self._client.orders[order_id])


class _PaymentResource:
    def __init__(self, client: "FakeRazorpayClient"):
        self._client = client

    def fetch(self, payment_id: str) -> dict:
        self._client.calls.append(("payment.fetch", payment_id))
        if self._client.fail_with:
            raise self._client.fail_with
        if payment_id not in self._client.payments:
            raise BadRequestError("The id provided does not exist")
        return dict(self._client.payments[payment_id])


class FakeRazorpayClient:
    """Implements the slice of razorpay.Client the gateway adapter uses."""

    def __init__(self):
        self.orders: dict = {}
        self.payments: dict = {}
        self.calls: list = []
        self.fail_with: Optional[Exception] = None
        self.order = _OrderResource(self)
        self.payment = _PaymentResource(self)

    def pay(self, order_id: str, status: str = "captured", amount: Optional[int] = None) -> str:
        """Simulate the customer paying for an order. Returns the payment id."""
        payment_id = f"pay_{uuid.uuid4().hex[:14]}"
        order = self.orders[order_id]
        self.payments[payment_id] = {
            "id": payment_id,
            "entity": "payment",
            "order_id": order_id,
            "amount": order["amount"] if amount is None else amount,
            "currency": order["currency"],
            "status": status,
        }
        return payment_id

    def count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)


# ── Checkout round-trip ───────────────────────────────────────

def booking_data(service, vehicle, address, day: str, time_key: str = "09:00", **extra) -> dict:
    data = {
        "service_id": str(service.id),
        "vehicle_id": str(vehicle.id),
        "address_id": str(address.id),
        "scheduled_at": scheduled_at(day, time_key),
    }
    data.update(extra)
    return data


async def open_session(
    client: AsyncClient,
    user: User,
    data: dict,
    amount,
    payment_type: str = "full",
):
    return await client.post(
        "/checkout/session",
        headers=auth_headers(user),
        json={"booking_data": data, "payment_type": payment_type, "amount": str(amount)},
    )


async def verify(client: AsyncClient, user: User, order_id: str, payment_id: str, signature=None):
    return await client.post(
        "/checkout/verify",
        headers=auth_headers(user),
        json={
            "razorpay_order_id": order_id,
            "razorpay_payment_id": payment_id,
            "razorpay_signature": signature if signature is not None else sign(order_id, payment_id),
        },
    )


async def checkout(
    client: AsyncClient,
    rzp: FakeRazorpayClient,
    user: User,
    data: dict,
    amount,
    payment_type: str = "full",
):
    """Open a session, pay for it at the fake gateway, and verify. Returns the verify response."""
    session = await open_session(client, user, data, amount, payment_type)
    assert session.status_code == 201, session.text
    order_id = session.json()["order_id"]
    payment_id = rzp.pay(order_id)
    return await verify(client, user, order_id, payment_id)


# ── Direct fixtures for lifecycle tests ───────────────────────

async def make_booking(
    db: AsyncSession,
    user: User,
    service: Service,
    vehicle: Vehicle,
    slot: Slot,
    status: BookingStatus = BookingStatus.PENDING,
    staff: Optional[User] = None,
    payment_status: PaymentStatus = PaymentStatus.PAID,
) -> Booking:
    """A booking holding slot, as reconciliation would have left it."""
    booking = Booking(
        id=uuid.uuid4(),
        booking_number=f"BK-TEST-{uuid.uuid4().hex[:8].upper()}",
        user_id=user.id,
        service_id=service.id,
        service_name=service.name,
        vehicle_id=vehicle.id,
        slot_id=slot.id,
        staff_id=staff.id if staff else None,
        scheduled_at=datetime.fromisoformat(scheduled_at(slot.date, slot.time)),
        address={"line1": "12 MG Road", "city": "Bengaluru", "state": "Karnataka", "pincode": "560001"},
        add_ons=[],
        notes=[],
        status=status,
        payment_status=payment_status,
        payment_type=PaymentType.FULL,
        amount=Decimal("500.00"),
        total_amount=Decimal("500.00"),
    )
    db.add(booking)
    slot.status = SlotStatus.BOOKED
    slot.booking_id = booking.id
    await db.commit()
    return booking
