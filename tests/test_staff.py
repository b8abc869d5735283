"""
tests/test_staff.py
Staff job endpoints: only the assigned staff member may see or close a job.
"""

import uuid
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Booking, BookingStatus, PaymentStatus, Slot, SlotStatus, User
from tests.utils import auth_headers, make_booking


async def _refresh(db: AsyncSession, booking_id) -> Booking:
    result = await db.execute(
        select(Booking).where(Booking.id == booking_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


@pytest_asyncio.fixture
async def job(db: AsyncSession, customer: User, staff: User, service, vehicle, slots: dict) -> Booking:
    """Confirmed, staff-assigned, not yet paid (pay-on-service)."""
    return await make_booking(
        db, customer, service, vehicle, slots["09:00"],
        status=BookingStatus.CONFIRMED, staff=staff, payment_status=PaymentStatus.PENDING,
    )


# ── Listing ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_staff_sees_only_assigned_jobs(
    client: AsyncClient, db: AsyncSession, job: Booking, staff: User, other_staff: User,
    customer: User, service, vehicle, slots: dict,
):
    await make_booking(
        db, customer, service, vehicle, slots["10:00"],
        status=BookingStatus.CONFIRMED, staff=other_staff,
    )

    response = await client.get("/staff/jobs", headers=auth_headers(staff))
    assert response.status_code == 200
    assert [j["id"] for j in response.json()["items"]] == [str(job.id)]


@pytest.mark.asyncio
async def test_staff_job_detail(client: AsyncClient, job: Booking, staff: User, other_staff: User):
    mine = await client.get(f"/staff/jobs/{job.id}", headers=auth_headers(staff))
    assert mine.status_code == 200
    assert mine.json()["slot_time"] == "09:00"

    theirs = await client.get(f"/staff/jobs/{job.id}", headers=auth_headers(other_staff))
    assert theirs.status_code == 403


@pytest.mark.asyncio
async def test_customer_cannot_use_staff_endpoints(client: AsyncClient, job: Booking, customer: User):
    response = await client.post(
        f"/staff/jobs/{job.id}/complete",
        headers=auth_headers(customer),
        json={"payment_received": True},
    )
    assert response.status_code == 403


# ── Complete ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_assigned_staff_completes_job(
    client: AsyncClient, db: AsyncSession, job: Booking, staff: User,
):
    response = await client.post(
        f"/staff/jobs/{job.id}/complete",
        headers=auth_headers(staff),
        json={"payment_received": True, "notes": "Collected cash"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "completed"
    assert data["payment_status"] == "paid"
    assert data["notes"][0]["added_by"] == "staff"

    refreshed = await _refresh(db, job.id)
    assert refreshed.completed_at is not None


@pytest.mark.asyncio
async def test_complete_without_payment_keeps_payment_status(
    client: AsyncClient, job: Booking, staff: User,
):
    response = await client.post(
        f"/staff/jobs/{job.id}/complete",
        headers=auth_headers(staff),
        json={"payment_received": False},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "completed"
    assert response.json()["payment_status"] == "pending"


@pytest.mark.asyncio
async def test_unassigned_staff_cannot_complete(
    client: AsyncClient, db: AsyncSession, job: Booking, other_staff: User,
):
    response = await client.post(
        f"/staff/jobs/{job.id}/complete",
        headers=auth_headers(other_staff),
        json={"payment_received": True},
    )
    assert response.status_code == 403

    refreshed = await _refresh(db, job.id)
    assert refreshed.status == BookingStatus.CONFIRMED
    assert refreshed.payment_status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_complete_requires_boolean_payment_flag(client: AsyncClient, job: Booking, staff: User):
    response = await client.post(
        f"/staff/jobs/{job.id}/complete",
        headers=auth_headers(staff),
        json={"payment_received": "yes"},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_completed_job_cannot_be_completed_again(
    client: AsyncClient, db: AsyncSession, job: Booking, staff: User,
):
    first = await client.post(
        f"/staff/jobs/{job.id}/complete",
        headers=auth_headers(staff),
        json={"payment_received": True},
    )
    assert first.status_code == 200

    again = await client.post(
        f"/staff/jobs/{job.id}/couldnt-reach",
        headers=auth_headers(staff),
        json={"notes": "Nobody home"},
    )
    assert again.status_code == 409
    assert (await _refresh(db, job.id)).status == BookingStatus.COMPLETED


# ── Couldn't reach ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_mark_couldnt_reach(client: AsyncClient, job: Booking, staff: User):
    response = await client.post(
        f"/staff/jobs/{job.id}/couldnt-reach",
        headers=auth_headers(staff),
        json={"notes": "Gate locked, phone unanswered"},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "couldnt_reach"
    assert response.json()["notes"][0]["note"] == "Gate locked, phone unanswered"


@pytest.mark.asyncio
async def test_unassigned_staff_cannot_mark_couldnt_reach(
    client: AsyncClient, job: Booking, other_staff: User,
):
    response = await client.post(
        f"/staff/jobs/{job.id}/couldnt-reach",
        headers=auth_headers(other_staff),
        json={},
    )
    assert response.status_code == 403


# ── Search & History ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_staff_searches_jobs_by_service_name_or_id(client: AsyncClient, job: Booking, staff: User):
    headers = auth_headers(staff)

    by_name = await client.get("/staff/jobs?search=FOAM", headers=headers)
    assert [j["id"] for j in by_name.json()["items"]] == [str(job.id)]

    by_id = await client.get(f"/staff/jobs?search={job.id}", headers=headers)
    assert by_id.json()["total"] == 1

    no_match = await client.get("/staff/jobs?search=ceramic", headers=headers)
    assert no_match.json()["total"] == 0


@pytest.mark.asyncio
async def test_work_history_lists_completed_jobs_latest_first(
    client: AsyncClient, db: AsyncSession, staff: User, other_staff: User, customer: User,
    service, vehicle, slots: dict, day: str,
):
    early = await make_booking(
        db, customer, service, vehicle, slots["09:00"], status=BookingStatus.COMPLETED, staff=staff,
    )
    early.feedback = {"rating": 4, "comment": "Spotless", "created_at": "2030-01-01T10:00:00+00:00"}
    await db.commit()
    late = await make_booking(
        db, customer, service, vehicle, slots["10:00"], status=BookingStatus.COMPLETED, staff=staff,
    )
    await make_booking(
        db, customer, service, vehicle, slots["11:00"], status=BookingStatus.CONFIRMED, staff=staff,
    )
    extra_slot = Slot(id=uuid.uuid4(), date=day, time="12:00", status=SlotStatus.AVAILABLE)
    db.add(extra_slot)
    await db.commit()
    await make_booking(
        db, customer, service, vehicle, extra_slot, status=BookingStatus.COMPLETED, staff=other_staff,
    )

    response = await client.get("/staff/jobs/history", headers=auth_headers(staff))
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert [j["id"] for j in data["items"]] == [str(late.id), str(early.id)]
    assert data["items"][1]["feedback"]["rating"] == 4
    assert Decimal(data["items"][0]["total_amount"]) == Decimal("500.00")


@pytest.mark.asyncio
async def test_customer_cannot_view_work_history(client: AsyncClient, customer: User):
    response = await client.get("/staff/jobs/history", headers=auth_headers(customer))
    assert response.status_code == 403
