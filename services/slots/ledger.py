"""
services/slots/ledger.py
Slot ledger: the authoritative availability calendar.
One row per (date, time); only reserve() may flip a slot to BOOKED.
"""

import logging
import re
import uuid
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from shared.models.models import Slot, SlotStatus
from shared.utils.errors import ConflictError, InvalidInputError, NotFoundError

logger = logging.getLogger(__name__)

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

# Statuses an admin may set directly; BOOKED belongs to the booking lifecycle
_ADMIN_STATUSES = {SlotStatus.AVAILABLE, SlotStatus.UNAVAILABLE}


# ── Key helpers ───────────────────────────────────────────────

def business_tz() -> ZoneInfo:
    return ZoneInfo(settings.BUSINESS_TIMEZONE)


def slot_keys(scheduled_at: datetime) -> Tuple[str, str]:
    """
    Map a scheduled timestamp to its ("YYYY-MM-DD", "HH:MM") slot key.
    Keys are local to the business timezone; naive timestamps are
    taken to already be in that zone.
    """
    tz = business_tz()
    if scheduled_at.tzinfo is None:
        local = scheduled_at.replace(tzinfo=tz)
    else:
        local = scheduled_at.astimezone(tz)
    return local.strftime("%Y-%m-%d"), local.strftime("%H:%M")


def parse_date_key(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        raise InvalidInputError("Invalid date format. Use YYYY-MM-DD.")


def to_minutes(value: str) -> int:
    match = _TIME_RE.match(value or "")
    if not match:
        raise InvalidInputError("Invalid time format. Use HH:MM (24h) format.")
    return int(match.group(1)) * 60 + int(match.group(2))


def hourly_times(start_time: str, end_time: str) -> List[str]:
    """Hourly keys in [start_time, end_time)."""
    start = to_minutes(start_time)
    end = to_minutes(end_time)
    if start >= end:
        raise InvalidInputError("End time must be greater than start time")
    return [f"{m // 60:02d}:{m % 60:02d}" for m in range(start, end, 60)]


def _parse_admin_status(value: str) -> SlotStatus:
    try:
        status = SlotStatus(value)
    except ValueError:
        raise InvalidInputError(f"Invalid slot status: {value}")
    if status not in _ADMIN_STATUSES:
        raise InvalidInputError("Slot status can only be set to available or unavailable")
    return status


def _plus_one_hour(time_key: str) -> str:
    minutes = (to_minutes(time_key) + 60) % (24 * 60)
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


# ── Ledger ────────────────────────────────────────────────────

class SlotLedger:
    def __init__(self, db: AsyncSession):
        self.db = db

    # ── Admin operations ─────────────────────────────────────

    async def declare_slots(self, date_key: str, start_time: str, end_time: str) -> List[Slot]:
        """
        Upsert one UNAVAILABLE slot per hour in [start_time, end_time).
        Existing (date, time) rows are left exactly as they are.
        """
        parse_date_key(date_key)
        times = hourly_times(start_time, end_time)

        rows = [
            {"id": uuid.uuid4(), "date": date_key, "time": t, "status": SlotStatus.UNAVAILABLE}
            for t in times
        ]
        dialect = self.db.get_bind().dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = insert(Slot).values(rows).on_conflict_do_nothing(index_elements=["date", "time"])
        await self.db.execute(stmt)
        await self.db.commit()

        logger.info(f"Declared slots for {date_key}: {times[0]}-{end_time} ({len(times)} hourly)")
        return await self.list_slots(date_key)

    async def list_slots(self, date_key: str) -> List[Slot]:
        parse_date_key(date_key)
        result = await self.db.execute(
            select(Slot).where(Slot.date == date_key).order_by(Slot.time)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def set_slot_status(self, slot_id: uuid.UUID, status: str) -> Slot:
        """Toggle one slot between available and unavailable. Booked slots refuse."""
        new_status = _parse_admin_status(status)

        result = await self.db.execute(
            update(Slot)
            .where(Slot.id == slot_id, Slot.status != SlotStatus.BOOKED)
            .values(status=new_status)
        )
        if result.rowcount != 1:
            if await self.get_slot(slot_id) is None:
                raise NotFoundError("Slot not found")
            raise ConflictError("Cannot change status of a booked slot")
        await self.db.commit()

        return await self.get_slot(slot_id)

    async def bulk_set_status_for_date(self, date_key: str, status: str) -> List[Slot]:
        """Apply status to every non-booked slot on date_key; booked ones are skipped."""
        parse_date_key(date_key)
        new_status = _parse_admin_status(status)

        result = await self.db.execute(
            update(Slot)
            .where(Slot.date == date_key, Slot.status != SlotStatus.BOOKED)
            .values(status=new_status)
            .execution_options(synchronize_session="fetch")
        )
        await self.db.commit()
        logger.info(f"Set {result.rowcount} slot(s) on {date_key} to {new_status.value}")
        return await self.list_slots(date_key)

    # ── Customer-facing reads ────────────────────────────────

    async def list_available_days(
        self,
        service_id: Optional[uuid.UUID] = None,
        days_ahead: Optional[int] = None,
    ) -> List[str]:
        """
        Distinct dates in [today, today + days_ahead] with at least one
        AVAILABLE slot. service_id does not narrow anything: all services
        share one calendar.
        """
        if days_ahead is None:
            days_ahead = settings.AVAILABLE_DAYS_AHEAD
        if days_ahead < 0:
            raise InvalidInputError("days_ahead must not be negative")

        today = datetime.now(business_tz()).date()
        first = today.isoformat()
        last = (today + timedelta(days=days_ahead)).isoformat()

        result = await self.db.execute(
            select(Slot.date)
            .where(
                Slot.status == SlotStatus.AVAILABLE,
                Slot.date >= first,
                Slot.date <= last,
            )
            .distinct()
            .order_by(Slot.date)
        )
        return list(result.scalars().all())

    async def list_available_slots(self, date_key: str) -> List[dict]:
        """
        AVAILABLE slots on date_key in time order. Each slot's end_time is
        the next available slot's start, or one hour later for the last.
        """
        parse_date_key(date_key)
        result = await self.db.execute(
            select(Slot)
            .where(Slot.date == date_key, Slot.status == SlotStatus.AVAILABLE)
            .order_by(Slot.time)
        )
        slots = list(result.scalars().all())

        items = []
        for index, slot in enumerate(slots):
            if index + 1 < len(slots):
                end_time = slots[index + 1].time
            else:
                end_time = _plus_one_hour(slot.time)
            items.append({
                "id": slot.id,
                "date": slot.date,
                "start_time": slot.time,
                "end_time": end_time,
            })
        return items

    async def get_slot(self, slot_id: uuid.UUID) -> Optional[Slot]:
        result = await self.db.execute(
            select(Slot).where(Slot.id == slot_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_slot(self, date_key: str, time_key: str) -> Optional[Slot]:
        result = await self.db.execute(
            select(Slot).where(Slot.date == date_key, Slot.time == time_key)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # ── Booking lifecycle (caller owns the transaction) ──────

    async def reserve(self, slot_id: uuid.UUID, booking_id: uuid.UUID) -> None:
        """
        AVAILABLE -> BOOKED in a single conditional UPDATE.
        Of two concurrent callers exactly one matches the row; the other
        gets ConflictError. Does not commit.
        """
        result = await self.db.execute(
            update(Slot)
            .where(Slot.id == slot_id, Slot.status == SlotStatus.AVAILABLE)
            .values(status=SlotStatus.BOOKED, booking_id=booking_id)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            raise ConflictError(
                "This slot has been booked by another user. Please select a different slot."
            )

    async def release(self, slot_id: uuid.UUID, booking_id: uuid.UUID) -> bool:
        """
        BOOKED -> AVAILABLE, only while the slot still belongs to booking_id.
        Returns False (and changes nothing) for a stale booking id. Does not commit.
        """
        result = await self.db.execute(
            update(Slot)
            .where(
                Slot.id == slot_id,
                Slot.status == SlotStatus.BOOKED,
                Slot.booking_id == booking_id,
            )
            .values(status=SlotStatus.AVAILABLE, booking_id=None)
            .execution_options(synchronize_session="fetch")
        )
        released = result.rowcount == 1
        if not released:
            logger.info(f"Slot {slot_id} not released: not held by booking {booking_id}")
        return released
