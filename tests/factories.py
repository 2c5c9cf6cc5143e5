"""
All test-data builders in one place.
Import from here in every test file — never define dummy data inline.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from app.deps import CurrentUser
from app.pricing import PricedItem, PromoCatalog
from app.schemas import BookingCreate, BookingResponse
from app.scopes import BookingScope

# ---------------------------------------------------------------------------
# Stable IDs — use these when a specific, repeatable UUID is needed.
# Call uuid4() inline when you need a fresh one per test.
# ---------------------------------------------------------------------------

CUSTOMER_ID: UUID = uuid4()
PROVIDER_ID: UUID = uuid4()
SECOND_PROVIDER_ID: UUID = uuid4()
ADMIN_ID: UUID = uuid4()
OTHER_USER_ID: UUID = uuid4()

BOOKING_ID: UUID = uuid4()
BOOKING_CODE = "HE" + "A" * 32
SERVICE_ID: UUID = uuid4()
SECOND_SERVICE_ID: UUID = uuid4()

NOW = datetime(2026, 6, 1, 10, 0, 0, tzinfo=UTC)
SCHEDULED = date(2026, 6, 5)

DEFAULT_PROMOS = {"FIRST10": "0.10", "SAVE50": "50", "WELCOME": "0.15"}


# ---------------------------------------------------------------------------
# User factories
# ---------------------------------------------------------------------------


def make_customer(
    user_id: UUID = CUSTOMER_ID,
    scopes: list[str] | None = None,
) -> CurrentUser:
    """Customer with read/write/cancel booking scopes."""
    if scopes is None:
        scopes = [BookingScope.READ, BookingScope.WRITE, BookingScope.CANCEL]
    return CurrentUser(id=user_id, username=f"customer_{user_id}", scopes=scopes)


def make_provider(
    user_id: UUID = PROVIDER_ID,
    scopes: list[str] | None = None,
) -> CurrentUser:
    """Provider with the manage booking scope."""
    if scopes is None:
        scopes = [BookingScope.MANAGE]
    return CurrentUser(id=user_id, username=f"provider_{user_id}", scopes=scopes)


def make_admin() -> CurrentUser:
    """Admin with all admin:bookings:* scopes."""
    return CurrentUser(
        id=ADMIN_ID,
        username="admin",
        scopes=[
            BookingScope.READ,
            BookingScope.ADMIN,
            BookingScope.ADMIN_READ,
            BookingScope.ADMIN_WRITE,
        ],
    )


def promo_catalog(**overrides) -> PromoCatalog:
    return PromoCatalog.from_mapping({**DEFAULT_PROMOS, **overrides})


# ---------------------------------------------------------------------------
# Domain builders
# ---------------------------------------------------------------------------


def priced_item(
    unit_price: str | int = "150",
    quantity: int = 1,
    provider_id: UUID | None = PROVIDER_ID,
    service_id: UUID | None = None,
) -> PricedItem:
    return PricedItem(
        service_id=service_id or uuid4(),
        provider_id=provider_id,
        quantity=quantity,
        unit_price=Decimal(str(unit_price)),
    )


def two_line_items() -> list[PricedItem]:
    """150 x 1 + 50 x 2 = 250."""
    return [
        priced_item("150", 1, service_id=SERVICE_ID),
        priced_item("50", 2, service_id=SECOND_SERVICE_ID),
    ]


# ---------------------------------------------------------------------------
# Response dict factories  (mirror what the CRUD layer returns)
# ---------------------------------------------------------------------------


def line_item_dict(**overrides) -> dict:
    base = dict(
        service_id=str(SERVICE_ID),
        provider_id=str(PROVIDER_ID),
        quantity=1,
        unit_price="150.00",
    )
    return {**base, **overrides}


def booking_response(**overrides) -> dict:
    base = dict(
        id=str(BOOKING_ID),
        booking_id=BOOKING_CODE,
        customer_id=str(CUSTOMER_ID),
        provider_id=str(PROVIDER_ID),
        items=[line_item_dict()],
        scheduled_date=SCHEDULED.isoformat(),
        scheduled_time="10:00",
        customer_info=customer_info_dict(),
        address=address_dict(),
        pricing=dict(subtotal="150", service_charges="99", discount="0", total="249"),
        promo_applied=None,
        payment=dict(method="cash", status="pending"),
        status="pending",
        service_status="not-started",
        service_status_history=[],
        rating=None,
        created_at=NOW.isoformat(),
        updated_at=NOW.isoformat(),
    )
    return {**base, **overrides}


def booking_model(**overrides) -> BookingResponse:
    """BookingResponse Pydantic object — needed when router accesses .status etc."""
    return BookingResponse(**booking_response(**overrides))


def service_dict(
    service_id: UUID = SERVICE_ID,
    provider_id: UUID | None = PROVIDER_ID,
    **overrides,
) -> dict:
    """Minimal catalog-ms service representation used by CatalogClient mocks."""
    base = dict(
        id=str(service_id),
        name="Tap repair",
        is_active=True,
        price=150,
        provider_id=str(provider_id) if provider_id else None,
    )
    return {**base, **overrides}


# ---------------------------------------------------------------------------
# Request payload factories
# ---------------------------------------------------------------------------


def customer_info_dict(**overrides) -> dict:
    base = dict(
        first_name="Asha",
        last_name="Rao",
        phone="9876543210",
        email="asha@example.com",
    )
    return {**base, **overrides}


def address_dict(**overrides) -> dict:
    base = dict(
        street="12 MG Road",
        city="Bengaluru",
        state="Karnataka",
        pincode="560001",
        landmark=None,
    )
    return {**base, **overrides}


def booking_create_payload(**overrides) -> dict:
    base = dict(
        items=[
            dict(service_id=str(SERVICE_ID), quantity=1),
            dict(service_id=str(SECOND_SERVICE_ID), quantity=2),
        ],
        scheduled_date=SCHEDULED.isoformat(),
        scheduled_time="10:00",
        customer_info=customer_info_dict(),
        address=address_dict(),
        payment=dict(method="cash"),
        promo_code=None,
        notes=None,
    )
    return {**base, **overrides}


def booking_create(**overrides) -> BookingCreate:
    return BookingCreate(**booking_create_payload(**overrides))
