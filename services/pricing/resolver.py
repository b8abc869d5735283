"""
services/pricing/resolver.py
Computes what a customer owes for a service + vehicle + payment type.
Read-only: safe to call at preview, checkout and verification time.
"""

import uuid
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from shared.models.models import PaymentType, Service, Vehicle
from shared.schemas.schemas import CouponApplied, PriceQuote
from shared.utils.errors import InvalidInputError, NotFoundError

_CENTS = Decimal("0.01")


def _norm(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def _to_price(value) -> Optional[Decimal]:
    try:
        return Decimal(str(value)).quantize(_CENTS)
    except (InvalidOperation, TypeError, ValueError):
        return None


def select_price(
    pricing: List[dict],
    category: Optional[str] = None,
    body_type: Optional[str] = None,
) -> Optional[Decimal]:
    """
    Pick a price from [{"vehicle_type": ..., "price": ...}] for a vehicle.

    Precedence:
      1. exact (case-insensitive) match on body type
      2. exact match on category
      3. substring match either way between body type/category and vehicle_type
      4. first listed price
    """
    entries = [e for e in (pricing or []) if isinstance(e, dict)]
    if not entries:
        return None

    body = _norm(body_type)
    cat = _norm(category)

    for key in (body, cat):
        if not key:
            continue
        for entry in entries:
            if _norm(entry.get("vehicle_type")) == key:
                return _to_price(entry.get("price"))

    for entry in entries:
        listed = _norm(entry.get("vehicle_type"))
        if not listed:
            continue
        for key in (body, cat):
            if key and (key in listed or listed in key):
                return _to_price(entry.get("price"))

    return _to_price(entries[0].get("price"))


def advance_for(total: Decimal) -> Decimal:
    """Advance share of total, rounded half-up to a whole currency unit."""
    share = total * Decimal(settings.ADVANCE_PAYMENT_PERCENT) / Decimal(100)
    return share.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


class PricingResolver:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def quote(
        self,
        service_id: uuid.UUID,
        vehicle_id: Optional[uuid.UUID] = None,
        payment_type: PaymentType = PaymentType.FULL,
        add_ons: Optional[List[str]] = None,
        coupon_code: Optional[str] = None,
    ) -> PriceQuote:
        result = await self.db.execute(select(Service).where(Service.id == service_id))
        service = result.scalar_one_or_none()
        if not service or not service.is_active:
            raise NotFoundError("Service not found")

        category = body_type = None
        if vehicle_id:
            result = await self.db.execute(select(Vehicle).where(Vehicle.id == vehicle_id))
            vehicle = result.scalar_one_or_none()
            if vehicle:
                category, body_type = vehicle.category, vehicle.body_type

        service_price = select_price(service.pricing, category, body_type)
        if service_price is None or service_price <= 0:
            raise InvalidInputError(
                "Service price is not configured for this vehicle. Please contact support."
            )

        # Add-ons and coupons are not priced yet
        add_ons_total = Decimal("0")
        discount = Decimal("0")
        tax_amount = Decimal("0")
        total_amount = (service_price + add_ons_total - discount + tax_amount).quantize(_CENTS)

        payment_type = PaymentType(payment_type)
        return PriceQuote(
            service_name=service.name,
            service_price=service_price,
            add_ons_total=add_ons_total,
            discount=discount,
            tax_amount=tax_amount,
            total_amount=total_amount,
            advance_amount=advance_for(total_amount) if payment_type == PaymentType.ADVANCE else None,
            payment_type=payment_type,
            coupon_applied=CouponApplied(code=coupon_code, discount=discount) if coupon_code else None,
        )
