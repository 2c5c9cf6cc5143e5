import asyncio
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger

from app import settings
from app.cache import invalidate_ledger_cache
from app.crud import booking_crud
from app.deps import (
    CatalogClient,
    CurrentUser,
    can_read_or_manage_booking,
    can_write_booking,
    get_catalog_client,
    get_current_user,
    get_promo_catalog,
)
from app.exceptions import NotFound, ServiceUnavailable
from app.lifecycle import (
    authorize_booking_transition,
    authorize_rating,
    authorize_service_update,
    owns_any_item,
    parse_booking_status,
    parse_service_status,
    plan_booking_transition,
    plan_service_transition,
)
from app.models import BookingStatus
from app.pricing import PricedItem, PromoCatalog, compute_pricing
from app.schemas import (
    BookingCreate,
    BookingFilters,
    BookingResponse,
    BookingStatusUpdate,
    RatingCreate,
    ServiceStatusUpdate,
)
from app.scopes import BookingScope

router = APIRouter(prefix="/bookings", tags=["bookings"])

_CENT = Decimal("0.01")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _visibility(current_user: CurrentUser) -> dict[str, UUID]:
    """
    CRUD filter kwargs for what the caller may see:
      admin (read)              → everything
      provider without READ     → bookings assigned to them or with their services
      everyone else             → their own bookings as customer
    """
    if current_user.can_read_any:
        return {}
    if current_user.is_provider and BookingScope.READ not in current_user.scopes:
        return {"provider_id": current_user.id}
    return {"customer_id": current_user.id}


def _can_see(booking: BookingResponse, current_user: CurrentUser) -> bool:
    scope = _visibility(current_user)
    if "customer_id" in scope:
        return booking.customer_id == current_user.id
    if "provider_id" in scope:
        return booking.provider_id == current_user.id or owns_any_item(
            booking, current_user.id
        )
    return True


async def _price_items(
    payload: BookingCreate,
    current_user: CurrentUser,
    catalog_client: CatalogClient,
) -> list[PricedItem]:
    """
    Copy the current catalog price and owner onto every requested line item.
    Prices are rounded to cents here so the stored snapshot matches the
    computed one.
    """
    # Let every lookup finish before failing, then report the first error
    results = await asyncio.gather(
        *(catalog_client.get_service(i.service_id, current_user) for i in payload.items),
        return_exceptions=True,
    )
    for result in results:
        if isinstance(result, BaseException):
            raise result

    priced = []
    for item, service in zip(payload.items, results):
        if service is None or not service.get("is_active", False):
            raise ServiceUnavailable(
                f"Service {item.service_id} not found or inactive",
                service_id=item.service_id,
            )
        owner = service.get("provider_id")
        try:
            unit_price = Decimal(str(service["price"])).quantize(
                _CENT, rounding=ROUND_HALF_UP
            )
            provider_id = UUID(str(owner)) if owner else None
        except (KeyError, ValueError, ArithmeticError) as exc:
            logger.warning("Malformed catalog entry for service {}", item.service_id)
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"catalog-ms returned a malformed service {item.service_id}",
            ) from exc
        priced.append(
            PricedItem(
                service_id=item.service_id,
                provider_id=provider_id,
                quantity=item.quantity,
                unit_price=unit_price,
            )
        )
    return priced


async def _get_or_404(booking_id: UUID) -> BookingResponse:
    # Fetched without ownership filter — permissions are checked per operation
    booking = await booking_crud.get_booking(booking_id)
    if not booking:
        raise NotFound("Booking not found", booking_id=booking_id)
    return booking


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/", response_model=list[BookingResponse])
async def list_bookings(
    filters: BookingFilters = Depends(),
    current_user: CurrentUser = Depends(can_read_or_manage_booking),
) -> list[BookingResponse]:
    return await booking_crud.list_bookings(
        filters=filters, **_visibility(current_user)
    )


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    current_user: CurrentUser = Depends(can_write_booking),
    catalog_client: CatalogClient = Depends(get_catalog_client),
    promos: PromoCatalog = Depends(get_promo_catalog),
) -> BookingResponse:
    # 1. Snapshot catalog prices; any missing or inactive service fails the request
    items = await _price_items(payload, current_user, catalog_client)

    # 2. Freeze pricing; never recomputed after this point
    pricing = compute_pricing(
        items,
        payload.promo_code,
        promos=promos,
        service_charge=settings.SERVICE_CHARGE,
    )

    return await booking_crud.create_booking(
        customer_id=current_user.id,
        items=items,
        pricing=pricing,
        payload=payload,
    )


@router.get("/code/{code}", response_model=BookingResponse)
async def get_booking_by_code(
    code: str,
    current_user: CurrentUser = Depends(can_read_or_manage_booking),
) -> BookingResponse:
    booking = await booking_crud.get_booking_by_code(code)
    if not booking or not _can_see(booking, current_user):
        raise NotFound("Booking not found", booking_id=code)
    return booking


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: CurrentUser = Depends(can_read_or_manage_booking),
) -> BookingResponse:
    booking = await booking_crud.get_booking(booking_id, **_visibility(current_user))
    if not booking:
        raise NotFound("Booking not found", booking_id=booking_id)
    return booking


@router.patch("/{booking_id}/status", response_model=BookingResponse)
async def update_booking_status(
    booking_id: UUID,
    payload: BookingStatusUpdate,
    current_user: CurrentUser = Depends(get_current_user),
) -> BookingResponse:
    target = parse_booking_status(payload.status)
    booking = await _get_or_404(booking_id)

    authorize_booking_transition(booking, target, current_user, payload.reason)
    # Early rejection; CRUD re-plans against the locked row
    plan_booking_transition(booking.status, booking.service_status, target)

    updated = await booking_crud.set_booking_status(
        booking_id, target, actor_id=current_user.id, reason=payload.reason
    )
    if updated.status == BookingStatus.COMPLETED:
        await invalidate_ledger_cache(updated.provider_id)
    return updated


@router.patch("/{booking_id}/service-status", response_model=BookingResponse)
async def update_service_status(
    booking_id: UUID,
    payload: ServiceStatusUpdate,
    current_user: CurrentUser = Depends(get_current_user),
) -> BookingResponse:
    target = parse_service_status(payload.service_status)
    booking = await _get_or_404(booking_id)

    authorize_service_update(booking, current_user)
    plan_service_transition(booking.status, booking.service_status, target)

    updated = await booking_crud.set_service_status(
        booking_id, target, actor_id=current_user.id, notes=payload.notes
    )
    if updated.status == BookingStatus.COMPLETED:
        logger.debug("Service completion closed booking {}", booking_id)
        await invalidate_ledger_cache(updated.provider_id)
    return updated


@router.post("/{booking_id}/rating", response_model=BookingResponse)
async def rate_booking(
    booking_id: UUID,
    payload: RatingCreate,
    current_user: CurrentUser = Depends(get_current_user),
) -> BookingResponse:
    booking = await _get_or_404(booking_id)
    authorize_rating(booking, current_user)
    return await booking_crud.rate_booking(
        booking_id, rating=payload.rating, comment=payload.comment
    )
