"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool

from shared.models.models import BookingStatus, PaymentStatus, PaymentType, SlotStatus


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class PaginatedResponse(BaseSchema):
    items: List[Any]
    total: int
    page: int
    page_size: int
    pages: int


# ── Slots ─────────────────────────────────────────────────────

class SlotResponse(BaseSchema):
    id: uuid.UUID
    date: str
    time: str
    status: SlotStatus
    booking_id: Optional[uuid.UUID]
    booked: bool


class AvailableSlotResponse(BaseSchema):
    id: uuid.UUID
    date: str
    start_time: str
    end_time: str


class AvailableDaysResponse(BaseSchema):
    service_id: Optional[uuid.UUID] = None
    days: List[str]


class SlotDeclareRequest(BaseSchema):
    date: str = Field(..., description="YYYY-MM-DD")
    start_time: str = Field(..., description="HH:MM (24h)")
    end_time: str = Field(..., description="HH:MM (24h)")


class SlotStatusUpdate(BaseSchema):
    status: str


class SlotBulkStatusUpdate(BaseSchema):
    date: str = Field(..., description="YYYY-MM-DD")
    status: str


# ── Pricing ───────────────────────────────────────────────────

class PricingPreviewRequest(BaseSchema):
    service_id: uuid.UUID
    vehicle_id: Optional[uuid.UUID] = None
    payment_type: PaymentType = PaymentType.FULL
    add_ons: List[str] = Field(default_factory=list)
    coupon_code: Optional[str] = None


class CouponApplied(BaseSchema):
    code: str
    discount: Decimal


class PriceQuote(BaseSchema):
    service_name: Optional[str] = None
    service_price: Decimal
    add_ons_total: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    total_amount: Decimal
    advance_amount: Optional[Decimal] = None
    payment_type: PaymentType = PaymentType.FULL
    coupon_applied: Optional[CouponApplied] = None

    @property
    def payable_amount(self) -> Decimal:
        if self.payment_type == PaymentType.ADVANCE and self.advance_amount is not None:
            return self.advance_amount
        return self.total_amount


# ── Booking ───────────────────────────────────────────────────

class BookingAddressSchema(BaseSchema):
    label: Optional[str] = None
    line1: str
    line2: Optional[str] = None
    city: str
    state: str
    pincode: str
    landmark: Optional[str] = None
    phone: Optional[str] = None


class CoordinatesSchema(BaseSchema):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class BookingIntent(BaseSchema):
    """Everything needed to materialize a booking once payment succeeds."""
    service_id: uuid.UUID
    vehicle_id: uuid.UUID
    scheduled_at: datetime
    address_id: Optional[uuid.UUID] = None
    address: Optional[BookingAddressSchema] = None
    add_ons: List[str] = Field(default_factory=list)
    coordinates: Optional[CoordinatesSchema] = None
    coupon_code: Optional[str] = None


class BookingNote(BaseSchema):
    note: str
    added_by: str
    added_at: datetime


class BookingFeedback(BaseSchema):
    rating: int
    comment: Optional[str] = None
    created_at: datetime


class BookingResponse(BaseSchema):
    id: uuid.UUID
    booking_number: str
    user_id: uuid.UUID
    service_id: uuid.UUID
    service_name: Optional[str]
    vehicle_id: uuid.UUID
    slot_id: uuid.UUID
    staff_id: Optional[uuid.UUID]
    scheduled_at: datetime
    address: Dict[str, Any]
    coordinates: Optional[Dict[str, Any]]
    add_ons: List[str]
    payment_type: PaymentType
    status: BookingStatus
    payment_status: PaymentStatus
    amount: Decimal
    total_amount: Decimal
    advance_amount: Optional[Decimal]
    notes: List[BookingNote] = Field(default_factory=list)
    feedback: Optional[BookingFeedback] = None
    created_at: datetime
    # Joined for display; the slot ledger stays authoritative
    slot_date: Optional[str] = None
    slot_time: Optional[str] = None
    vehicle_category: Optional[str] = None
    vehicle_body_type: Optional[str] = None


class BookingCancelRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=500)


class FeedbackRequest(BaseSchema):
    rating: int
    comment: Optional[str] = Field(None, max_length=1000)


class AssignStaffRequest(BaseSchema):
    staff_id: uuid.UUID


class BookingStatusUpdate(BaseSchema):
    status: str
    note: Optional[str] = Field(None, max_length=500)


class JobCompleteRequest(BaseSchema):
    payment_received: StrictBool
    notes: Optional[str] = Field(None, max_length=500)


class JobCouldntReachRequest(BaseSchema):
    notes: Optional[str] = Field(None, max_length=500)


# ── Checkout ──────────────────────────────────────────────────

class CheckoutSessionRequest(BaseSchema):
    booking_data: Dict[str, Any]
    payment_type: PaymentType = PaymentType.FULL
    amount: Decimal = Field(..., gt=0)


class CheckoutSessionResponse(BaseSchema):
    session_id: str
    order_id: str
    amount: Decimal
    currency: str
    expires_at: datetime
    key_id: str


class PaymentVerifyRequest(BaseSchema):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class PaymentVerifyResponse(BaseSchema):
    success: bool
    booking_id: str
    message: str
    payment_id: Optional[str] = None
    order_id: Optional[str] = None


class PaymentFailureRequest(BaseSchema):
    session_id: str
    error_code: Optional[str] = None
    error_message: Optional[str] = None


# ── Generic ───────────────────────────────────────────────────

class ErrorResponse(BaseSchema):
    """Body of every non-2xx response rendered by the app error handlers."""
    detail: str
    code: str
    request_id: Optional[str] = None

