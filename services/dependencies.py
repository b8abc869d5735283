"""
services/dependencies.py
FastAPI providers for the booking components. Components are built per
request around the request's DB session; the gateway adapter is built
once in create_app() and lives on app.state.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import get_redis
from services.booking.state_machine import BookingStateMachine
from services.payment.broker import PaymentSessionBroker
from services.payment.gateway import RazorpayGateway
from services.payment.reconciliation import ReconciliationCoordinator
from services.pricing.resolver import PricingResolver
from services.slots.ledger import SlotLedger


def get_payment_gateway(request: Request) -> RazorpayGateway:
    return request.app.state.payment_gateway


def get_slot_ledger(db: AsyncSession = Depends(get_db)) -> SlotLedger:
    return SlotLedger(db)


def get_pricing_resolver(db: AsyncSession = Depends(get_db)) -> PricingResolver:
    return PricingResolver(db)


def get_booking_state_machine(
    db: AsyncSession = Depends(get_db),
    ledger: SlotLedger = Depends(get_slot_ledger),
    pricing: PricingResolver = Depends(get_pricing_resolver),
) -> BookingStateMachine:
    return BookingStateMachine(db, ledger, pricing)


def get_session_broker(
    db: AsyncSession = Depends(get_db),
    ledger: SlotLedger = Depends(get_slot_ledger),
    pricing: PricingResolver = Depends(get_pricing_resolver),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
) -> PaymentSessionBroker:
    return PaymentSessionBroker(db, ledger, pricing, gateway)


def get_reconciliation_coordinator(
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
    ledger: SlotLedger = Depends(get_slot_ledger),
    bookings: BookingStateMachine = Depends(get_booking_state_machine),
) -> ReconciliationCoordinator:
    return ReconciliationCoordinator(db, redis, gateway, ledger, bookings)
