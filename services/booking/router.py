"""
services/booking/router.py
Customer-facing booking endpoints: slot calendar, price preview,
and the customer's own bookings (list, detail, cancel, feedback).
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from services.booking.state_machine import BookingStateMachine
from services.dependencies import (
    get_booking_state_machine,
    get_pricing_resolver,
    get_slot_ledger,
)
from services.pricing.resolver import PricingResolver
from services.slots.ledger import SlotLedger
from shared.middleware.auth import get_current_user
from shared.models.models import User
from shared.schemas.schemas import (
    AvailableDaysResponse,
    AvailableSlotResponse,
    BookingCancelRequest,
    BookingResponse,
    FeedbackRequest,
    PaginatedResponse,
    PriceQuote,
    PricingPreviewRequest,
)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


# ── Slot Calendar (public) ────────────────────────────────────

@router.get("/slots/available-days", response_model=AvailableDaysResponse)
async def available_days(
    service_id: Optional[UUID] = Query(None),
    days_ahead: Optional[int] = Query(None, ge=0, le=365),
    ledger: SlotLedger = Depends(get_slot_ledger),
):
    """Dates with at least one open slot. All services share one calendar."""
    days = await ledger.list_available_days(service_id, days_ahead)
    return AvailableDaysResponse(service_id=service_id, days=days)


@router.get("/slots", response_model=List[AvailableSlotResponse])
async def available_slots(
    date: str = Query(..., description="YYYY-MM-DD"),
    ledger: SlotLedger = Depends(get_slot_ledger),
):
    return await ledger.list_available_slots(date)


# ── Pricing ───────────────────────────────────────────────────

@router.post("/pricing/preview", response_model=PriceQuote)
async def preview_pricing(
    data: PricingPreviewRequest,
    current_user: User = Depends(get_current_user),
    pricing: PricingResolver = Depends(get_pricing_resolver),
):
    """Quote shown before checkout. The checkout session re-quotes independently."""
    return await pricing.quote(
        data.service_id,
        data.vehicle_id,
        data.payment_type,
        add_ons=data.add_ons,
        coupon_code=data.coupon_code,
    )


# ── My Bookings ───────────────────────────────────────────────

@router.get("", response_model=PaginatedResponse)
async def list_my_bookings(
    status_filter: Optional[str] = Query(None, alias="status"),
    from_date: Optional[str] = Query(None),
    to_date: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    bookings: BookingStateMachine = Depends(get_booking_state_machine),
):
    """Customers see their own bookings; staff see jobs assigned to them."""
    return await bookings.list_bookings(
        current_user,
        status=status_filter,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
    )


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    bookings: BookingStateMachine = Depends(get_booking_state_machine),
):
    return await bookings.get_booking(current_user, booking_id)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    data: BookingCancelRequest,
    current_user: User = Depends(get_current_user),
    bookings: BookingStateMachine = Depends(get_booking_state_machine),
):
    """Cancel a pending/confirmed booking. Its slot goes back on sale."""
    return await bookings.cancel(current_user, booking_id, data.reason)


@router.post("/{booking_id}/feedback", response_model=BookingResponse)
async def submit_feedback(
    booking_id: UUID,
    data: FeedbackRequest,
    current_user: User = Depends(get_current_user),
    bookings: BookingStateMachine = Depends(get_booking_state_machine),
):
    return await bookings.submit_feedback(current_user, booking_id, data.rating, data.comment)
