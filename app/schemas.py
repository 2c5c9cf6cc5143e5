from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models import BookingStatus, PaymentMethod, PaymentStatus, ServiceStatus

PHONE_PATTERN = r"^[6-9]\d{9}$"
PINCODE_PATTERN = r"^\d{6}$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class LineItemCreate(BaseModel):
    service_id: UUID
    # Checked by the pricing step so it reports invalid_booking_request
    quantity: int = 1


class CustomerInfo(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: str = Field(pattern=PHONE_PATTERN)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=254)


class Address(BaseModel):
    street: str = Field(min_length=1, max_length=255)
    city: str = Field(min_length=1, max_length=100)
    state: str = "India"
    pincode: str = Field(pattern=PINCODE_PATTERN)
    landmark: str | None = None


class PaymentCreate(BaseModel):
    method: PaymentMethod


class BookingCreate(BaseModel):
    # Emptiness is an InvalidBookingRequest, checked by the pricing step
    items: list[LineItemCreate]
    scheduled_date: date
    scheduled_time: str = Field(min_length=1, max_length=32)
    customer_info: CustomerInfo
    address: Address
    payment: PaymentCreate
    promo_code: str | None = Field(default=None, max_length=32)
    notes: str | None = Field(default=None, max_length=1000)


class BookingStatusUpdate(BaseModel):
    # Plain str: unknown targets are reported as invalid_transition_target
    status: str
    reason: str | None = Field(default=None, max_length=500)


class ServiceStatusUpdate(BaseModel):
    service_status: str
    notes: str | None = Field(default=None, max_length=500)


class RatingCreate(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: str | None = Field(default=None, max_length=500)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class LineItemResponse(BaseModel):
    service_id: UUID
    provider_id: UUID | None
    quantity: int
    unit_price: Decimal

    model_config = ConfigDict(from_attributes=True)


class PricingResponse(BaseModel):
    subtotal: Decimal
    service_charges: Decimal
    discount: Decimal
    total: Decimal


class PromoApplied(BaseModel):
    code: str
    discount_amount: Decimal


class PaymentResponse(BaseModel):
    method: PaymentMethod
    status: PaymentStatus
    transaction_id: str | None = None
    paid_at: datetime | None = None


class ServiceStatusEntryResponse(BaseModel):
    status: ServiceStatus
    actor_id: UUID
    notes: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RatingResponse(BaseModel):
    value: int
    comment: str | None
    rated_at: datetime | None


class BookingResponse(BaseModel):
    id: UUID
    booking_id: str
    customer_id: UUID
    provider_id: UUID | None
    items: list[LineItemResponse]
    scheduled_date: date
    scheduled_time: str
    customer_info: CustomerInfo
    address: Address
    pricing: PricingResponse
    promo_applied: PromoApplied | None = None
    payment: PaymentResponse
    status: BookingStatus
    service_status: ServiceStatus
    service_status_history: list[ServiceStatusEntryResponse] = []
    rating: RatingResponse | None = None
    customer_notes: str | None = None
    provider_notes: str | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    created_at: datetime
    updated_at: datetime


class LedgerSnapshot(BaseModel):
    """Derived provider stats; equal inputs always give an equal snapshot."""

    provider_id: UUID
    completed_service_count: int = 0
    lifetime_earnings: Decimal = Decimal("0")
    last_service_date: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class BookingFilters(BaseModel):
    """Bind to a FastAPI route via Depends(BookingFilters)."""

    status: BookingStatus | None = None

    # Pagination
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)
