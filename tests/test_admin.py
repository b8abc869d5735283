"""
tests/test_admin.py
Admin booking operations: staff assignment, direct status edits,
terminal-state immutability, and the all-bookings view.
"""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Booking, BookingStatus, Service, Slot, SlotStatus, User
from shared.utils.security import verify_access_token
from tests.utils import auth_headers, make_booking


async def _refresh(db: AsyncSession, model, obj_id):
    result = await db.execute(
        select(model).where(model.id == obj_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


# ── Access Control ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_customer_cannot_access_admin_endpoints(client: AsyncClient, customer: User):
    response = await client.get("/admin/bookings", headers=auth_headers(customer))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_staff_cannot_access_admin_endpoints(client: AsyncClient, staff: User):
    response = await client.get("/admin/bookings", headers=auth_headers(staff))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_unauthenticated_cannot_access_admin(client: AsyncClient):
    response = await client.get("/admin/bookings")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_garbage_token_is_rejected(client: AsyncClient):
    response = await client.get("/admin/bookings", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_revoked_token_is_rejected(client: AsyncClient, redis, admin: User):
    headers = auth_headers(admin)
    jti = verify_access_token(headers["Authorization"].split(" ", 1)[1])["jti"]
    await redis.setex(f"jwt_revoked:{jti}", 60, "1")

    response = await client.get("/admin/bookings", headers=headers)
    assert response.status_code == 401


# ── Listing ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_admin_lists_all_bookings(
    client: AsyncClient, db: AsyncSession, admin: User, customer: User, other_customer: User,
    staff: User, service, vehicle, slots: dict,
):
    await make_booking(db, customer, service, vehicle, slots["09:00"])
    assigned = await make_booking(
        db, other_customer, service, vehicle, slots["10:00"],
        status=BookingStatus.CONFIRMED, staff=staff,
    )

    everything = await client.get("/admin/bookings", headers=auth_headers(admin))
    assert everything.json()["total"] == 2

    by_staff = await client.get(f"/admin/bookings?staff_id={staff.id}", headers=auth_headers(admin))
    assert [b["id"] for b in by_staff.json()["items"]] == [str(assigned.id)]

    confirmed = await client.get("/admin/bookings?status=confirmed", headers=auth_headers(admin))
    assert confirmed.json()["total"] == 1


@pytest.mark.asyncio
async def test_admin_gets_any_booking(
    client: AsyncClient, db: AsyncSession, admin: User, customer: User, service, vehicle, slots: dict,
):
    booking = await make_booking(db, customer, service, vehicle, slots["09:00"])
    response = await client.get(f"/admin/bookings/{booking.id}", headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json()["user_id"] == str(customer.id)


@pytest.mark.asyncio
async def test_admin_searches_bookings(
    client: AsyncClient, db: AsyncSession, admin: User, customer: User, service, vehicle, slots: dict,
):
    interior = Service(
        id=uuid.uuid4(), name="Interior Deep Clean", pricing=[{"vehicle_type": "sedan", "price": 900}],
    )
    db.add(interior)
    await db.commit()
    foam = await make_booking(db, customer, service, vehicle, slots["09:00"])
    deep = await make_booking(db, customer, interior, vehicle, slots["10:00"])
    headers = auth_headers(admin)

    by_name = await client.get("/admin/bookings?search=deep%20clean", headers=headers)
    assert [b["id"] for b in by_name.json()["items"]] == [str(deep.id)]

    by_id = await client.get(f"/admin/bookings?search={foam.id}", headers=headers)
    assert [b["id"] for b in by_id.json()["items"]] == [str(foam.id)]

    by_number = await client.get(
        f"/admin/bookings?search={foam.booking_number.lower()}", headers=headers
    )
    assert [b["id"] for b in by_number.json()["items"]] == [str(foam.id)]


@pytest.mark.asyncio
async def test_error_body_carries_code_and_request_id(client: AsyncClient, admin: User):
    response = await client.get(
        f"/admin/bookings/{uuid.uuid4()}",
        headers={**auth_headers(admin), "X-Request-ID": "req-42"},
    )
    assert response.status_code == 404
    assert response.json() == {"detail": "Booking not found", "code": "not_found", "request_id": "req-42"}
    assert response.headers["X-Request-ID"] == "req-42"


# ── Staff Assignment ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_assign_staff_confirms_pending_booking(
    client: AsyncClient, db: AsyncSession, admin: User, customer: User, staff: User,
    service, vehicle, slots: dict,
):
    booking = await make_booking(db, customer, service, vehicle, slots["09:00"])
    response = await client.post(
        f"/admin/bookings/{booking.id}/assign",
        headers=auth_headers(admin),
        json={"staff_id": str(staff.id)},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "confirmed"
    assert data["staff_id"] == str(staff.id)
    assert data["payment_status"] == "paid"


@pytest.mark.asyncio
async def test_reassign_keeps_confirmed(
    client: AsyncClient, db: AsyncSession, admin: User, customer: User, staff: User,
    other_staff: User, service, vehicle, slots: dict,
):
    booking = await make_booking(
        db, customer, service, vehicle, slots["09:00"], status=BookingStatus.CONFIRMED, staff=staff
    )
    response = await client.post(
        f"/admin/bookings/{booking.id}/assign",
        headers=auth_headers(admin),
        json={"staff_id": str(other_staff.id)},
    )
    assert response.json()["status"] == "confirmed"
    assert response.json()["staff_id"] == str(other_staff.id)


@pytest.mark.asyncio
async def test_assign_unknown_staff(
    client: AsyncClient, db: AsyncSession, admin: User, customer: User, service, vehicle, slots: dict,
):
    booking = await make_booking(db, customer, service, vehicle, slots["09:00"])
    response = await client.post(
        f"/admin/bookings/{booking.id}/assign",
        headers=auth_headers(admin),
        json={"staff_id": str(uuid.uuid4())},
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_assign_customer_as_staff(
    client: AsyncClient, db: AsyncSession, admin: User, customer: User, other_customer: User,
    service, vehicle, slots: dict,
):
    booking = await make_booking(db, customer, service, vehicle, slots["09:00"])
    response = await client.post(
        f"/admin/bookings/{booking.id}/assign",
        headers=auth_headers(admin),
        json={"staff_id": str(other_customer.id)},
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_assign_inactive_staff(
    client: AsyncClient, db: AsyncSession, admin: User, customer: User, inactive_staff: User,
    service, vehicle, slots: dict,
):
    booking = await make_booking(db, customer, service, vehicle, slots["09:00"])
    response = await client.post(
        f"/admin/bookings/{booking.id}/assign",
        headers=auth_headers(admin),
        json={"staff_id": str(inactive_staff.id)},
    )
    assert response.status_code == 400
    assert (await _refresh(db, Booking, booking.id)).staff_id is None


@pytest.mark.asyncio
async def test_unassign_staff_returns_to_pending(
    client: AsyncClient, db: AsyncSession, admin: User, customer: User, staff: User,
    service, vehicle, slots: dict,
):
    booking = await make_booking(
        db, customer, service, vehicle, slots["09:00"], status=BookingStatus.CONFIRMED, staff=staff
    )
    response = await client.delete(
        f"/admin/bookings/{booking.id}/assign", headers=auth_headers(admin)
    )
    assert response.status_code == 200
    assert response.json()["status"] == "pending"
    assert response.json()["staff_id"] is None


# ── Direct Status Edits ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_set_status_with_note(
    client: AsyncClient, db: AsyncSession, admin: User, customer: User, service, vehicle, slots: dict,
):
    booking = await make_booking(db, customer, service, vehicle, slots["09:00"])
    response = await client.patch(
        f"/admin/bookings/{booking.id}/status",
        headers=auth_headers(admin),
        json={"status": "couldnt_reach", "note": "Customer phone switched off"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "couldnt_reach"
    assert data["notes"][0]["note"] == "Customer phone switched off"
    assert data["notes"][0]["added_by"] == "admin"


@pytest.mark.asyncio
async def test_set_status_cancelled_releases_slot(
    client: AsyncClient, db: AsyncSession, admin: User, customer: User, service, vehicle, slots: dict,
):
    booking = await make_booking(db, customer, service, vehicle, slots["09:00"])
    response = await client.patch(
        f"/admin/bookings/{booking.id}/status",
        headers=auth_headers(admin),
        json={"status": "cancelled"},
    )
    assert response.status_code == 200

    slot = await _refresh(db, Slot, slots["09:00"].id)
    assert slot.status == SlotStatus.AVAILABLE
    assert slot.booking_id is None


@pytest.mark.asyncio
async def test_set_status_invalid_value(
    client: AsyncClient, db: AsyncSession, admin: User, customer: User, service, vehicle, slots: dict,
):
    booking = await make_booking(db, customer, service, vehicle, slots["09:00"])
    response = await client.patch(
        f"/admin/bookings/{booking.id}/status",
        headers=auth_headers(admin),
        json={"status": "refunded"},
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_set_status_unknown_booking(client: AsyncClient, admin: User):
    response = await client.patch(
        f"/admin/bookings/{uuid.uuid4()}/status",
        headers=auth_headers(admin),
        json={"status": "confirmed"},
    )
    assert response.status_code == 404


# ── Terminal States ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
@pytest.mark.parametrize("terminal", [BookingStatus.COMPLETED, BookingStatus.CANCELLED])
async def test_terminal_booking_rejects_admin_transitions(
    client: AsyncClient, db: AsyncSession, admin: User, customer: User, staff: User,
    service, vehicle, slots: dict, terminal: BookingStatus,
):
    booking = await make_booking(
        db, customer, service, vehicle, slots["09:00"], status=terminal, staff=staff
    )
    headers = auth_headers(admin)

    attempts = [
        await client.patch(
            f"/admin/bookings/{booking.id}/status", headers=headers, json={"status": "pending"}
        ),
        await client.post(
            f"/admin/bookings/{booking.id}/assign", headers=headers, json={"staff_id": str(staff.id)}
        ),
        await client.delete(f"/admin/bookings/{booking.id}/assign", headers=headers),
        await client.post(f"/bookings/{booking.id}/cancel", headers=headers, json={}),
    ]
    assert [r.status_code for r in attempts] == [409, 409, 409, 409]

    refreshed = await _refresh(db, Booking, booking.id)
    assert refreshed.status == terminal
    assert refreshed.staff_id == staff.id
    assert (await _refresh(db, Slot, slots["09:00"].id)).status == SlotStatus.BOOKED
