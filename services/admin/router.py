"""
services/admin/router.py
Admin-only endpoints: slot calendar management and booking operations
(staff assignment, direct status edits).
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from services.booking.state_machine import BookingStateMachine
from services.dependencies import get_booking_state_machine, get_slot_ledger
from services.slots.ledger import SlotLedger
from shared.middleware.auth import require_admin
from shared.models.models import User
from shared.schemas.schemas import (
    AssignStaffRequest,
    BookingResponse,
    BookingStatusUpdate,
    PaginatedResponse,
    SlotBulkStatusUpdate,
    SlotDeclareRequest,
    SlotResponse,
    SlotStatusUpdate,
)

router = APIRouter(prefix="/admin", tags=["Admin"])


# ── Slot Calendar ─────────────────────────────────────────────

@router.get("/slots", response_model=List[SlotResponse])
async def list_slots(
    date: str = Query(..., description="YYYY-MM-DD"),
    current_user: User = Depends(require_admin),
    ledger: SlotLedger = Depends(get_slot_ledger),
):
    """Every slot on a date, whatever its status."""
    return await ledger.list_slots(date)


@router.post("/slots", response_model=List[SlotResponse], status_code=status.HTTP_201_CREATED)
async def declare_slots(
    data: SlotDeclareRequest,
    current_user: User = Depends(require_admin),
    ledger: SlotLedger = Depends(get_slot_ledger),
):
    """
    Declare a day's operating hours as hourly slots.
    New slots start unavailable; existing ones are left untouched.
    """
    return await ledger.declare_slots(data.date, data.start_time, data.end_time)


@router.patch("/slots/{slot_id}", response_model=SlotResponse)
async def update_slot(
    slot_id: UUID,
    data: SlotStatusUpdate,
    current_user: User = Depends(require_admin),
    ledger: SlotLedger = Depends(get_slot_ledger),
):
    return await ledger.set_slot_status(slot_id, data.status)


@router.post("/slots/bulk-status", response_model=List[SlotResponse])
async def update_slots_for_date(
    data: SlotBulkStatusUpdate,
    current_user: User = Depends(require_admin),
    ledger: SlotLedger = Depends(get_slot_ledger),
):
    """Open or close a whole day. Booked slots are skipped."""
    return await ledger.bulk_set_status_for_date(data.date, data.status)


# ── Bookings ──────────────────────────────────────────────────

@router.get("/bookings", response_model=PaginatedResponse)
async def list_bookings(
    status_filter: Optional[str] = Query(None, alias="status"),
    staff_id: Optional[UUID] = Query(None),
    from_date: Optional[str] = Query(None),
    to_date: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_admin),
    bookings: BookingStateMachine = Depends(get_booking_state_machine),
):
    return await bookings.list_bookings(
        current_user,
        status=status_filter,
        from_date=from_date,
        to_date=to_date,
        staff_id=staff_id,
        search=search,
        page=page,
        page_size=page_size,
    )


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: User = Depends(require_admin),
    bookings: BookingStateMachine = Depends(get_booking_state_machine),
):
    return await bookings.get_booking(current_user, booking_id)


@router.post("/bookings/{booking_id}/assign", response_model=BookingResponse)
async def assign_staff(
    booking_id: UUID,
    data: AssignStaffRequest,
    current_user: User = Depends(require_admin),
    bookings: BookingStateMachine = Depends(get_booking_state_machine),
):
    """Assign an active staff member. A pending booking becomes confirmed."""
    return await bookings.assign_staff(current_user, booking_id, data.staff_id)


@router.delete("/bookings/{booking_id}/assign", response_model=BookingResponse)
async def unassign_staff(
    booking_id: UUID,
    current_user: User = Depends(require_admin),
    bookings: BookingStateMachine = Depends(get_booking_state_machine),
):
    """Remove the assigned staff member. A confirmed booking falls back to pending."""
    return await bookings.unassign_staff(current_user, booking_id)


@router.patch("/bookings/{booking_id}/status", response_model=BookingResponse)
async def update_booking_status(
    booking_id: UUID,
    data: BookingStatusUpdate,
    current_user: User = Depends(require_admin),
    bookings: BookingStateMachine = Depends(get_booking_state_machine),
):
    return await bookings.set_status(current_user, booking_id, data.status, data.note)
