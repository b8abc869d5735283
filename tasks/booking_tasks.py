"""
tasks/booking_tasks.py
Periodic consistency audit between the slot ledger and bookings.

Read-only: mismatches are logged for support to resolve (refund, rebook),
never repaired automatically.
"""

import logging
from typing import Dict, List

from sqlalchemy import and_, create_engine, or_, select
from sqlalchemy.orm import Session, sessionmaker

from config.settings import settings
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


# ── Helpers ────────────────────────────────────────────────────────────────────

def _get_sync_session() -> Session:
    """Create a synchronous SQLAlchemy session (Celery runs sync by default)."""
    engine = create_engine(settings.sync_database_url, pool_pre_ping=True)
    return sessionmaker(bind=engine)()


def find_slot_booking_mismatches(db: Session) -> Dict[str, List[str]]:
    """
    Returns ids grouped by the kind of violation:
    - booked_without_booking: slot BOOKED but booking_id is empty
    - dangling_slot_reference: slot points at a missing booking, or at a
      booking whose slot_id is a different slot
    - held_but_not_booked: slot carries a booking_id while not BOOKED
    - paid_without_slot: paid, active booking whose slot is not held by it
    """
    from shared.models.models import Booking, BookingStatus, PaymentStatus, Slot, SlotStatus

    booked_without_booking = db.execute(
        select(Slot.id).where(Slot.status == SlotStatus.BOOKED, Slot.booking_id.is_(None))
    ).scalars().all()

    dangling = db.execute(
        select(Slot.id)
        .outerjoin(Booking, Booking.id == Slot.booking_id)
        .where(
            Slot.booking_id.is_not(None),
            or_(Booking.id.is_(None), Booking.slot_id != Slot.id),
        )
    ).scalars().all()

    held_but_not_booked = db.execute(
        select(Slot.id).where(Slot.booking_id.is_not(None), Slot.status != SlotStatus.BOOKED)
    ).scalars().all()

    paid_without_slot = db.execute(
        select(Booking.id)
        .outerjoin(
            Slot,
            and_(
                Slot.id == Booking.slot_id,
                Slot.booking_id == Booking.id,
                Slot.status == SlotStatus.BOOKED,
            ),
        )
        .where(
            Booking.payment_status == PaymentStatus.PAID,
            Booking.status.in_([BookingStatus.PENDING, BookingStatus.CONFIRMED]),
            Slot.id.is_(None),
        )
    ).scalars().all()

    return {
        "booked_without_booking": [str(i) for i in booked_without_booking],
        "dangling_slot_reference": [str(i) for i in dangling],
        "held_but_not_booked": [str(i) for i in held_but_not_booked],
        "paid_without_slot": [str(i) for i in paid_without_slot],
    }


# ── Tasks ──────────────────────────────────────────────────────────────────────

@celery_app.task
def audit_slot_booking_symmetry() -> Dict[str, int]:
    """Hourly. Logs every slot/booking that breaks the booked <-> booking link."""
    db = _get_sync_session()
    try:
        mismatches = find_slot_booking_mismatches(db)
        for kind, ids in mismatches.items():
            if ids:
                logger.warning(f"audit_slot_booking_symmetry: {len(ids)} {kind}: {', '.join(ids)}")
        counts = {kind: len(ids) for kind, ids in mismatches.items()}
        if not any(counts.values()):
            logger.info("audit_slot_booking_symmetry: ledger consistent")
        return counts
    except Exception as e:
        logger.exception(f"audit_slot_booking_symmetry failed: {e}")
        raise
    finally:
        db.close()
