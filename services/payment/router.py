"""
services/payment/router.py
Razorpay checkout: session creation, client-side verification callback,
and the failure callback.
"""

from fastapi import APIRouter, Depends, status

from services.dependencies import get_reconciliation_coordinator, get_session_broker
from services.payment.broker import PaymentSessionBroker
from services.payment.reconciliation import ReconciliationCoordinator
from shared.middleware.auth import get_current_user
from shared.models.models import User
from shared.schemas.schemas import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    PaymentFailureRequest,
    PaymentVerifyRequest,
    PaymentVerifyResponse,
)

router = APIRouter(prefix="/checkout", tags=["Checkout"])


# ── Create Session ────────────────────────────────────────────

@router.post("/session", response_model=CheckoutSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    data: CheckoutSessionRequest,
    current_user: User = Depends(get_current_user),
    broker: PaymentSessionBroker = Depends(get_session_broker),
):
    """
    Open a Razorpay order for a booking intent.
    Client uses order_id + key_id to open Razorpay checkout.
    No booking exists until /checkout/verify succeeds.
    """
    return await broker.create_session(
        current_user, data.booking_data, data.payment_type, data.amount
    )


# ── Verify Payment (called from client after checkout) ────────

@router.post("/verify", response_model=PaymentVerifyResponse)
async def verify_payment(
    data: PaymentVerifyRequest,
    current_user: User = Depends(get_current_user),
    coordinator: ReconciliationCoordinator = Depends(get_reconciliation_coordinator),
):
    """
    Verify the Razorpay signature, confirm capture with Razorpay, then
    create the booking and book its slot. Safe to call again with the
    same payment: the existing booking is returned.
    """
    return await coordinator.verify_and_materialize(
        current_user,
        data.razorpay_order_id,
        data.razorpay_payment_id,
        data.razorpay_signature,
    )


@router.post("/failure", response_model=PaymentVerifyResponse)
async def payment_failed(
    data: PaymentFailureRequest,
    current_user: User = Depends(get_current_user),
    coordinator: ReconciliationCoordinator = Depends(get_reconciliation_coordinator),
):
    return await coordinator.handle_failure(
        current_user, data.session_id, data.error_code, data.error_message
    )
