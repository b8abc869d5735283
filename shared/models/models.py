"""
shared/models/models.py
All SQLAlchemy ORM models for the vehicle-care booking platform.
Portable types (Uuid, JSON) so the same models run on PostgreSQL and SQLite.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    """Store enum values ("available"), not member names ("AVAILABLE")."""
    return Enum(enum_cls, name=name, values_callable=lambda e: [m.value for m in e])


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    CUSTOMER = "customer"
    STAFF = "staff"
    ADMIN = "admin"


class UserStatus(str, PyEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class SlotStatus(str, PyEnum):
    AVAILABLE = "available"
    BOOKED = "booked"
    UNAVAILABLE = "unavailable"


class BookingStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    COULDNT_REACH = "couldnt_reach"


class PaymentStatus(str, PyEnum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class PaymentType(str, PyEnum):
    FULL = "full"
    ADVANCE = "advance"


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
        nullable=False,
    )


# ── Models ────────────────────────────────────────────────────

class User(TimestampMixin, Base):
    """Platform account. Customers book, staff fulfil, admins manage."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        _enum(UserRole, "user_role"), nullable=False, default=UserRole.CUSTOMER
    )
    status: Mapped[UserStatus] = mapped_column(
        _enum(UserStatus, "user_status"), nullable=False, default=UserStatus.ACTIVE
    )

    addresses: Mapped[List["UserAddress"]] = relationship(back_populates="user")
    vehicles: Mapped[List["Vehicle"]] = relationship(back_populates="user")

    __table_args__ = (Index("ix_users_role", "role"),)

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class UserAddress(TimestampMixin, Base):
    """User's saved addresses. Bookings copy a snapshot at creation time."""
    __tablename__ = "user_addresses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    label: Mapped[str] = mapped_column(String(50), nullable=False)  # "Home", "Office"
    line1: Mapped[str] = mapped_column(String(255), nullable=False)
    line2: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[str] = mapped_column(String(100), nullable=False)
    pincode: Mapped[str] = mapped_column(String(10), nullable=False)
    landmark: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    user: Mapped["User"] = relationship(back_populates="addresses")

    def snapshot(self) -> dict:
        return {
            "label": self.label,
            "line1": self.line1,
            "line2": self.line2,
            "city": self.city,
            "state": self.state,
            "pincode": self.pincode,
            "landmark": self.landmark,
            "phone": self.phone,
        }


class Vehicle(TimestampMixin, Base):
    """Customer vehicle. category/body_type drive service pricing."""
    __tablename__ = "vehicles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    category: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)   # "car", "bike"
    body_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)  # "sedan", "suv"
    brand: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    model: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    registration_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    user: Mapped["User"] = relationship(back_populates="vehicles")

    __table_args__ = (Index("ix_vehicles_user_id", "user_id"),)


class Service(TimestampMixin, Base):
    """Catalog entry for a bookable vehicle-care service."""
    __tablename__ = "services"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # e.g. [{"vehicle_type": "sedan", "price": 500}, {"vehicle_type": "bike", "price": 200}]
    pricing: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(default=True)


class Slot(TimestampMixin, Base):
    """
    One bookable hour on one calendar day. Source of truth for availability.
    A booked slot always carries the id of the booking holding it.
    """
    __tablename__ = "slots"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    date: Mapped[str] = mapped_column(String(10), nullable=False)  # "2025-11-10"
    time: Mapped[str] = mapped_column(String(5), nullable=False)   # "09:00"
    status: Mapped[SlotStatus] = mapped_column(
        _enum(SlotStatus, "slot_status"), nullable=False, default=SlotStatus.UNAVAILABLE
    )
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    __table_args__ = (
        UniqueConstraint("date", "time", name="uq_slot_date_time"),
        Index("ix_slots_booking_id", "booking_id"),
        Index("ix_slots_date_status", "date", "status"),
    )

    @property
    def booked(self) -> bool:
        return self.status == SlotStatus.BOOKED or self.booking_id is not None


class Booking(TimestampMixin, Base):
    """
    A customer's paid reservation of a service at one slot.
    Created only after payment verification.
    Status transitions: pending → confirmed → completed,
    with cancelled / couldnt_reach reachable from pending or confirmed.
    """
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    service_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("services.id"), nullable=False)
    service_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    vehicle_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("vehicles.id"), nullable=False)
    slot_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("slots.id"), nullable=False)
    staff_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )

    # Schedule + where the job happens (snapshot, never re-read from the address book)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    address: Mapped[dict] = mapped_column(JSONType, nullable=False)
    coordinates: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    add_ons: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    coupon_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Status
    status: Mapped[BookingStatus] = mapped_column(
        _enum(BookingStatus, "booking_status"), nullable=False, default=BookingStatus.PENDING
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus, "payment_status"), nullable=False, default=PaymentStatus.PENDING
    )
    payment_type: Mapped[PaymentType] = mapped_column(
        _enum(PaymentType, "payment_type"), nullable=False, default=PaymentType.FULL
    )

    # Pricing (fixed at creation)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    advance_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    # Gateway references
    razorpay_order_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    razorpay_payment_id: Mapped[Optional[str]] = mapped_column(
        String(100), unique=True, nullable=True
    )

    # [{"note": ..., "added_by": "staff", "added_at": ...}]
    notes: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    # {"rating": 1-5, "comment": ..., "created_at": ...}
    feedback: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    slot: Mapped["Slot"] = relationship(foreign_keys=[slot_id])
    audit_logs: Mapped[List["BookingAuditLog"]] = relationship(back_populates="booking")

    __table_args__ = (
        Index("ix_bookings_user_status", "user_id", "status"),
        Index("ix_bookings_staff_id", "staff_id"),
        Index("ix_bookings_scheduled_status", "scheduled_at", "status"),
    )


class BookingAuditLog(Base):
    """Immutable log of all booking status transitions."""
    __tablename__ = "booking_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id"), nullable=False
    )
    from_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    changed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    booking: Mapped["Booking"] = relationship(back_populates="audit_logs")

    __table_args__ = (Index("ix_booking_audit_booking_id", "booking_id"),)
