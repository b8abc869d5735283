"""
services/booking/state_machine.py
Booking lifecycle.
States: PENDING → CONFIRMED → COMPLETED
        PENDING | CONFIRMED → CANCELLED | COULDNT_REACH
COMPLETED and CANCELLED are terminal.
"""

import logging
import math
import random
import string
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from services.pricing.resolver import PricingResolver
from services.slots.ledger import SlotLedger, parse_date_key, slot_keys
from shared.models.models import (
    Booking,
    BookingAuditLog,
    BookingStatus,
    PaymentStatus,
    PaymentType,
    Slot,
    SlotStatus,
    User,
    UserAddress,
    UserRole,
    Vehicle,
)
from shared.schemas.schemas import BookingIntent, BookingResponse, PriceQuote
from shared.utils.errors import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
)

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})
ACTIVE_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})


# ── Helpers ───────────────────────────────────────────────────

def generate_booking_number() -> str:
    """Human-readable booking number like BK-20251110-X7K9M."""
    day = datetime.now(timezone.utc).strftime("%Y%m%d")
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=5))
    return f"BK-{day}-{suffix}"


def _search_clause(term: str):
    try:
        return Booking.id == uuid.UUID(term)
    except ValueError:
        pattern = f"%{term}%"
        return or_(Booking.service_name.ilike(pattern), Booking.booking_number.ilike(pattern))


def parse_booking_status(value: str) -> BookingStatus:
    try:
        return BookingStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in BookingStatus)
        raise InvalidInputError(f"Invalid status. Must be one of: {allowed}")


def _note(text: str, added_by: UserRole) -> dict:
    return {
        "note": text,
        "added_by": added_by.value,
        "added_at": datetime.now(timezone.utc).isoformat(),
    }


class BookingStateMachine:
    def __init__(
        self,
        db: AsyncSession,
        ledger: SlotLedger,
        pricing: PricingResolver,
    ):
        self.db = db
        self.ledger = ledger
        self.pricing = pricing

    # ── Internals ────────────────────────────────────────────

    async def _get_booking_or_404(self, booking_id: uuid.UUID) -> Booking:
        result = await self.db.execute(select(Booking).where(Booking.id == booking_id))
        booking = result.scalar_one_or_none()
        if not booking:
            raise NotFoundError("Booking not found")
        return booking

    def _log_status_change(
        self,
        booking: Booking,
        from_status: Optional[BookingStatus],
        to_status: BookingStatus,
        changed_by: Optional[User],
        reason: Optional[str] = None,
    ) -> None:
        """Append an immutable audit log entry for every status change."""
        self.db.add(BookingAuditLog(
            booking_id=booking.id,
            from_status=from_status.value if from_status else None,
            to_status=to_status.value,
            changed_by_id=changed_by.id if changed_by else None,
            reason=reason,
        ))

    def _transition(
        self,
        booking: Booking,
        to_status: BookingStatus,
        actor: Optional[User],
        reason: Optional[str] = None,
    ) -> None:
        from_status = booking.status
        booking.status = to_status
        if to_status == BookingStatus.COMPLETED:
            booking.completed_at = datetime.now(timezone.utc)
        elif to_status == BookingStatus.CANCELLED:
            booking.cancelled_at = datetime.now(timezone.utc)
        self._log_status_change(booking, from_status, to_status, actor, reason)
        logger.info(
            f"Booking {booking.booking_number}: {from_status.value} -> {to_status.value}"
        )

    @staticmethod
    def _ensure_not_terminal(booking: Booking) -> None:
        if booking.status in TERMINAL_STATUSES:
            raise ConflictError(f"Booking is already {booking.status.value}")

    @staticmethod
    def _ensure_active(booking: Booking, action: str) -> None:
        if booking.status not in ACTIVE_STATUSES:
            raise ConflictError(f"Cannot {action} a booking in '{booking.status.value}' state")

    @staticmethod
    def _ensure_assigned_staff(booking: Booking, staff: User) -> None:
        if booking.staff_id is None or booking.staff_id != staff.id:
            raise ForbiddenError("You do not have access to this job")

    async def _release_slot(self, booking: Booking) -> None:
        await self.ledger.release(booking.slot_id, booking.id)

    def _projection(self):
        return (
            select(Booking, Slot.date, Slot.time, Vehicle.category, Vehicle.body_type)
            .outerjoin(Slot, Slot.id == Booking.slot_id)
            .outerjoin(Vehicle, Vehicle.id == Booking.vehicle_id)
        )

    @staticmethod
    def _to_response(row) -> BookingResponse:
        booking, slot_date, slot_time, category, body_type = row
        return BookingResponse.model_validate(booking).model_copy(update={
            "slot_date": slot_date,
            "slot_time": slot_time,
            "vehicle_category": category,
            "vehicle_body_type": body_type,
        })

    async def _view(self, booking_id: uuid.UUID) -> BookingResponse:
        result = await self.db.execute(self._projection().where(Booking.id == booking_id))
        row = result.one_or_none()
        if row is None:
            raise NotFoundError("Booking not found")
        return self._to_response(row)

    # ── Creation (called by reconciliation only) ─────────────

    async def create_from_intent(
        self,
        user: User,
        intent: BookingIntent,
        payment_type: PaymentType,
    ) -> Tuple[Booking, Slot, PriceQuote]:
        """
        Build a PENDING booking from a verified booking intent.
        Re-validates the slot against the current ledger and re-quotes the
        price. Flushes but does not commit; the caller reserves the slot
        in the same transaction.
        """
        payment_type = PaymentType(payment_type)
        date_key, time_key = slot_keys(intent.scheduled_at)
        slot = await self.ledger.find_slot(date_key, time_key)
        if not slot:
            raise NotFoundError("Slot not found for this booking")
        if slot.status != SlotStatus.AVAILABLE:
            raise ConflictError(
                "This slot has been booked by another user. Please select a different slot."
            )

        result = await self.db.execute(
            select(Vehicle).where(Vehicle.id == intent.vehicle_id, Vehicle.user_id == user.id)
        )
        if not result.scalar_one_or_none():
            raise NotFoundError("Vehicle not found")

        if intent.address_id:
            result = await self.db.execute(
                select(UserAddress).where(
                    UserAddress.id == intent.address_id,
                    UserAddress.user_id == user.id,
                )
            )
            saved = result.scalar_one_or_none()
            if not saved:
                raise NotFoundError("Address not found")
            address = saved.snapshot()
        elif intent.address:
            address = intent.address.model_dump()
        else:
            raise InvalidInputError("Address is required")

        quote = await self.pricing.quote(
            intent.service_id,
            intent.vehicle_id,
            payment_type,
            add_ons=intent.add_ons,
            coupon_code=intent.coupon_code,
        )

        booking = Booking(
            id=uuid.uuid4(),
            booking_number=generate_booking_number(),
            user_id=user.id,
            service_id=intent.service_id,
            service_name=quote.service_name,
            vehicle_id=intent.vehicle_id,
            slot_id=slot.id,
            scheduled_at=intent.scheduled_at,
            address=address,
            coordinates=intent.coordinates.model_dump() if intent.coordinates else None,
            add_ons=list(intent.add_ons),
            coupon_code=intent.coupon_code,
            status=BookingStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            payment_type=payment_type,
            amount=quote.service_price,
            total_amount=quote.total_amount,
            advance_amount=quote.advance_amount,
            notes=[],
        )
        self.db.add(booking)
        await self.db.flush()
        self._log_status_change(booking, None, BookingStatus.PENDING, user, "payment verified")
        return booking, slot, quote

    # ── Admin transitions ────────────────────────────────────

    async def assign_staff(
        self, admin: User, booking_id: uuid.UUID, staff_id: uuid.UUID
    ) -> BookingResponse:
        """Assign staff; a PENDING booking moves to CONFIRMED."""
        booking = await self._get_booking_or_404(booking_id)
        self._ensure_not_terminal(booking)

        result = await self.db.execute(
            select(User).where(User.id == staff_id, User.role == UserRole.STAFF)
        )
        staff = result.scalar_one_or_none()
        if not staff:
            raise NotFoundError("Staff member not found")
        if not staff.is_active:
            raise InvalidInputError("Staff member is not active")

        booking.staff_id = staff.id
        if booking.status == BookingStatus.PENDING:
            self._transition(booking, BookingStatus.CONFIRMED, admin, "staff assigned")

        await self.db.commit()
        return await self._view(booking.id)

    async def unassign_staff(self, admin: User, booking_id: uuid.UUID) -> BookingResponse:
        """Remove staff; a CONFIRMED booking falls back to PENDING."""
        booking = await self._get_booking_or_404(booking_id)
        self._ensure_not_terminal(booking)

        booking.staff_id = None
        if booking.status == BookingStatus.CONFIRMED:
            self._transition(booking, BookingStatus.PENDING, admin, "staff unassigned")

        await self.db.commit()
        return await self._view(booking.id)

    async def set_status(
        self,
        admin: User,
        booking_id: uuid.UUID,
        status: str,
        note: Optional[str] = None,
    ) -> BookingResponse:
        """Direct admin edit. Any non-terminal booking may move to any status."""
        new_status = parse_booking_status(status)
        booking = await self._get_booking_or_404(booking_id)
        self._ensure_not_terminal(booking)

        if new_status != booking.status:
            self._transition(booking, new_status, admin, note)
            if new_status == BookingStatus.CANCELLED:
                await self._release_slot(booking)
        if note:
            booking.notes = [*(booking.notes or []), _note(note, UserRole.ADMIN)]

        await self.db.commit()
        return await self._view(booking.id)

    # ── Customer transitions ─────────────────────────────────

    async def cancel(
        self, user: User, booking_id: uuid.UUID, reason: Optional[str] = None
    ) -> BookingResponse:
        """Owner (or admin) cancels a PENDING/CONFIRMED booking and frees its slot."""
        booking = await self._get_booking_or_404(booking_id)
        if user.role != UserRole.ADMIN and booking.user_id != user.id:
            raise ForbiddenError("Not authorized")
        self._ensure_active(booking, "cancel")

        self._transition(booking, BookingStatus.CANCELLED, user, reason)
        await self._release_slot(booking)

        await self.db.commit()
        return await self._view(booking.id)

    async def submit_feedback(
        self,
        user: User,
        booking_id: uuid.UUID,
        rating: int,
        comment: Optional[str] = None,
    ) -> BookingResponse:
        booking = await self._get_booking_or_404(booking_id)
        if booking.user_id != user.id:
            raise ForbiddenError("Not authorized")
        if rating is None or not 1 <= rating <= 5:
            raise InvalidInputError("Rating must be between 1 and 5")

        booking.feedback = {
            "rating": rating,
            "comment": comment or "",
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        await self.db.commit()
        return await self._view(booking.id)

    # ── Staff transitions ────────────────────────────────────

    async def complete(
        self,
        staff: User,
        booking_id: uuid.UUID,
        payment_received: bool,
        notes: Optional[str] = None,
    ) -> BookingResponse:
        """Assigned staff closes the job. payment_received=True marks it paid."""
        if not isinstance(payment_received, bool):
            raise InvalidInputError("payment_received must be a boolean")
        booking = await self._get_booking_or_404(booking_id)
        self._ensure_assigned_staff(booking, staff)
        self._ensure_active(booking, "complete")

        self._transition(booking, BookingStatus.COMPLETED, staff, notes)
        if payment_received:
            booking.payment_status = PaymentStatus.PAID
        if notes:
            booking.notes = [*(booking.notes or []), _note(notes, UserRole.STAFF)]

        await self.db.commit()
        return await self._view(booking.id)

    async def mark_couldnt_reach(
        self,
        staff: User,
        booking_id: uuid.UUID,
        notes: Optional[str] = None,
    ) -> BookingResponse:
        booking = await self._get_booking_or_404(booking_id)
        self._ensure_assigned_staff(booking, staff)
        self._ensure_active(booking, "mark as couldn't reach")

        self._transition(booking, BookingStatus.COULDNT_REACH, staff, notes)
        if notes:
            booking.notes = [*(booking.notes or []), _note(notes, UserRole.STAFF)]

        await self.db.commit()
        return await self._view(booking.id)

    # ── Reads ────────────────────────────────────────────────

    async def get_booking(self, user: User, booking_id: uuid.UUID) -> BookingResponse:
        """Owner, assigned staff, or admin."""
        view = await self._view(booking_id)
        if user.role == UserRole.ADMIN:
            return view
        if user.role == UserRole.STAFF:
            if view.staff_id != user.id:
                raise ForbiddenError("You do not have access to this job")
            return view
        if view.user_id != user.id:
            raise ForbiddenError("Not authorized")
        return view

    async def list_bookings(
        self,
        user: User,
        status: Optional[str] = None,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
        staff_id: Optional[uuid.UUID] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> dict:
        """
        Paginated listing scoped by role: customers see their own bookings,
        staff see jobs assigned to them, admins see everything.
        Date filters compare against the slot's date key. `search` is an
        exact booking id, or a case-insensitive fragment of the service
        name or booking number.
        """
        query = self._scoped(user, staff_id)

        if status:
            query = query.where(Booking.status == parse_booking_status(status))
        if from_date:
            parse_date_key(from_date)
            query = query.where(Slot.date >= from_date)
        if to_date:
            parse_date_key(to_date)
            query = query.where(Slot.date <= to_date)
        if search and search.strip():
            query = query.where(_search_clause(search.strip()))

        return await self._paginate(query, Booking.created_at.desc(), page, page_size)

    async def work_history(self, staff: User, page: int = 1, page_size: int = 10) -> dict:
        """Completed jobs of the calling staff member, most recent visit first."""
        query = self._scoped(staff).where(Booking.status == BookingStatus.COMPLETED)
        return await self._paginate(query, Booking.scheduled_at.desc(), page, page_size)

    def _scoped(self, user: User, staff_id: Optional[uuid.UUID] = None):
        query = self._projection()
        if user.role == UserRole.CUSTOMER:
            return query.where(Booking.user_id == user.id)
        if user.role == UserRole.STAFF:
            return query.where(Booking.staff_id == user.id)
        if staff_id:
            return query.where(Booking.staff_id == staff_id)
        return query

    async def _paginate(self, query, ordering, page: int, page_size: int) -> dict:
        total = (
            await self.db.execute(select(func.count()).select_from(query.subquery()))
        ).scalar_one()

        result = await self.db.execute(
            query.order_by(ordering).offset((page - 1) * page_size).limit(page_size)
        )
        items: List[BookingResponse] = [self._to_response(row) for row in result.all()]
        return {
            "items": items,
            "total": total,
            "page": page,
            "page_size": page_size,
            "pages": math.ceil(total / page_size) if total else 0,
        }
