"""
services/staff/router.py
Staff job endpoints. Routes only check the staff role; the state machine
checks that the caller is the staff member assigned to the job.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from services.booking.state_machine import BookingStateMachine
from services.dependencies import get_booking_state_machine
from shared.middleware.auth import require_staff
from shared.models.models import User
from shared.schemas.schemas import (
    BookingResponse,
    JobCompleteRequest,
    JobCouldntReachRequest,
    PaginatedResponse,
)

router = APIRouter(prefix="/staff", tags=["Staff"])


@router.get("/jobs", response_model=PaginatedResponse)
async def list_jobs(
    status_filter: Optional[str] = Query(None, alias="status"),
    from_date: Optional[str] = Query(None),
    to_date: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=50),
    current_user: User = Depends(require_staff),
    bookings: BookingStateMachine = Depends(get_booking_state_machine),
):
    """Jobs assigned to the calling staff member."""
    return await bookings.list_bookings(
        current_user,
        status=status_filter,
        from_date=from_date,
        to_date=to_date,
        search=search,
        page=page,
        page_size=page_size,
    )


@router.get("/jobs/history", response_model=PaginatedResponse)
async def work_history(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=50),
    current_user: User = Depends(require_staff),
    bookings: BookingStateMachine = Depends(get_booking_state_machine),
):
    """Completed jobs, latest visit first, with amount and customer rating."""
    return await bookings.work_history(current_user, page=page, page_size=page_size)


@router.get("/jobs/{job_id}", response_model=BookingResponse)
async def get_job(
    job_id: UUID,
    current_user: User = Depends(require_staff),
    bookings: BookingStateMachine = Depends(get_booking_state_machine),
):
    return await bookings.get_booking(current_user, job_id)


@router.post("/jobs/{job_id}/complete", response_model=BookingResponse)
async def complete_job(
    job_id: UUID,
    data: JobCompleteRequest,
    current_user: User = Depends(require_staff),
    bookings: BookingStateMachine = Depends(get_booking_state_machine),
):
    """Close the job. payment_received=true marks the booking paid."""
    return await bookings.complete(current_user, job_id, data.payment_received, data.notes)


@router.post("/jobs/{job_id}/couldnt-reach", response_model=BookingResponse)
async def mark_couldnt_reach(
    job_id: UUID,
    data: JobCouldntReachRequest,
    current_user: User = Depends(require_staff),
    bookings: BookingStateMachine = Depends(get_booking_state_machine),
):
    return await bookings.mark_couldnt_reach(current_user, job_id, data.notes)
