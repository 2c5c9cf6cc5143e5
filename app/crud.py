from __future__ import annotations

from collections.abc import Callable, Sequence
from uuid import UUID

from loguru import logger
from tortoise import timezone
from tortoise.expressions import Q
from tortoise.transactions import in_transaction

from app.exceptions import (
    STORAGE_ERRORS,
    AlreadyRated,
    NotCompleted,
    NotFound,
    StorageFault,
)
from app.ledger import recompute_ledger
from app.lifecycle import (
    Effect,
    Transition,
    plan_booking_transition,
    plan_service_transition,
)
from app.models import (
    Booking,
    BookingItem,
    BookingStatus,
    ServiceStatus,
    ServiceStatusEntry,
)
from app.pricing import PricedItem, PricingSnapshot
from app.schemas import (
    BookingCreate,
    BookingFilters,
    BookingResponse,
    LineItemResponse,
    PaymentResponse,
    PricingResponse,
    PromoApplied,
    RatingResponse,
    ServiceStatusEntryResponse,
)


def _to_response(inst: Booking) -> BookingResponse:
    """Build the API view; ``items`` and ``history`` must already be fetched."""
    promo = None
    if inst.promo_code:
        promo = PromoApplied(
            code=inst.promo_code, discount_amount=inst.promo_discount or 0
        )
    rating = None
    if inst.rating is not None:
        rating = RatingResponse(
            value=inst.rating, comment=inst.rating_comment, rated_at=inst.rated_at
        )

    return BookingResponse(
        id=inst.id,
        booking_id=inst.booking_id,
        customer_id=inst.customer_id,
        provider_id=inst.provider_id,
        items=[LineItemResponse.model_validate(i) for i in inst.items],
        scheduled_date=inst.scheduled_date,
        scheduled_time=inst.scheduled_time,
        customer_info=inst.customer_info,
        address=inst.address,
        pricing=PricingResponse(
            subtotal=inst.subtotal,
            service_charges=inst.service_charges,
            discount=inst.discount,
            total=inst.total,
        ),
        promo_applied=promo,
        payment=PaymentResponse(
            method=inst.payment_method,
            status=inst.payment_status,
            transaction_id=inst.transaction_id,
            paid_at=inst.paid_at,
        ),
        status=inst.status,
        service_status=inst.service_status,
        service_status_history=[
            ServiceStatusEntryResponse.model_validate(h) for h in inst.history
        ],
        rating=rating,
        customer_notes=inst.customer_notes,
        provider_notes=inst.provider_notes,
        completed_at=inst.completed_at,
        cancelled_at=inst.cancelled_at,
        cancellation_reason=inst.cancellation_reason,
        created_at=inst.created_at,
        updated_at=inst.updated_at,
    )


def _provider_scope(provider_id: UUID) -> Q:
    """Bookings assigned to the provider, or containing one of their services."""
    return Q(provider_id=provider_id) | Q(items__provider_id=provider_id)


class BookingCRUD:
    async def create_booking(
        self,
        customer_id: UUID,
        items: Sequence[PricedItem],
        pricing: PricingSnapshot,
        payload: BookingCreate,
    ) -> BookingResponse:
        """
        Persist a booking with its frozen pricing and line-item price snapshots.
        The primary provider is the owner of the first service that has one.
        """
        provider_id = next(
            (i.provider_id for i in items if i.provider_id is not None), None
        )
        try:
            async with in_transaction():
                inst = await Booking.create(
                    customer_id=customer_id,
                    provider_id=provider_id,
                    scheduled_date=payload.scheduled_date,
                    scheduled_time=payload.scheduled_time,
                    customer_info=payload.customer_info.model_dump(),
                    address=payload.address.model_dump(),
                    subtotal=pricing.subtotal,
                    service_charges=pricing.service_charges,
                    discount=pricing.discount,
                    total=pricing.total,
                    promo_code=pricing.promo_code,
                    promo_discount=pricing.discount if pricing.promo_code else None,
                    payment_method=payload.payment.method,
                    customer_notes=payload.notes,
                )
                await BookingItem.bulk_create(
                    [
                        BookingItem(
                            booking=inst,
                            position=position,
                            service_id=item.service_id,
                            provider_id=item.provider_id,
                            quantity=item.quantity,
                            unit_price=item.unit_price,
                        )
                        for position, item in enumerate(items)
                    ]
                )
                # History opens with the initial delivery state
                await ServiceStatusEntry.create(
                    booking=inst,
                    status=ServiceStatus.NOT_STARTED,
                    actor_id=customer_id,
                    notes="Booking created",
                )
        except STORAGE_ERRORS as exc:
            logger.exception("Booking insert failed for customer_id={}", customer_id)
            raise StorageFault(
                "Could not store booking", step="create", committed=False
            ) from exc

        logger.info(
            "Booking created: booking_id={} customer_id={} provider_id={} total={}",
            inst.booking_id,
            customer_id,
            provider_id,
            pricing.total,
        )
        return await self._reload(inst.id)

    async def get_booking(
        self,
        booking_id: UUID,
        customer_id: UUID | None = None,
        provider_id: UUID | None = None,
    ) -> BookingResponse | None:
        qs = Booking.filter(id=booking_id)
        if customer_id is not None:
            qs = qs.filter(customer_id=customer_id)
        elif provider_id is not None:
            qs = qs.filter(_provider_scope(provider_id)).distinct()

        inst = await qs.prefetch_related("items", "history").first()
        if not inst:
            return None
        return _to_response(inst)

    async def get_booking_by_code(self, code: str) -> BookingResponse | None:
        inst = await Booking.filter(booking_id=code.upper()).prefetch_related(
            "items", "history"
        ).first()
        if not inst:
            return None
        return _to_response(inst)

    async def list_bookings(
        self,
        filters: BookingFilters,
        customer_id: UUID | None = None,
        provider_id: UUID | None = None,
    ) -> list[BookingResponse]:
        qs = Booking.all()

        if customer_id is not None:
            qs = qs.filter(customer_id=customer_id)
        if provider_id is not None:
            qs = qs.filter(_provider_scope(provider_id)).distinct()
        if filters.status is not None:
            qs = qs.filter(status=filters.status)

        offset = (filters.page - 1) * filters.page_size
        qs = qs.offset(offset).limit(filters.page_size)

        bookings = await qs.prefetch_related("items", "history")
        return [_to_response(b) for b in bookings]

    # -----------------------------------------------------------------------
    # State transitions
    # -----------------------------------------------------------------------

    async def set_booking_status(
        self,
        booking_id: UUID,
        target: BookingStatus,
        actor_id: UUID,
        reason: str | None = None,
    ) -> BookingResponse:
        return await self._transition(
            booking_id,
            actor_id,
            plan=lambda b: plan_booking_transition(b.status, b.service_status, target),
            reason=reason,
        )

    async def set_service_status(
        self,
        booking_id: UUID,
        target: ServiceStatus,
        actor_id: UUID,
        notes: str | None = None,
    ) -> BookingResponse:
        return await self._transition(
            booking_id,
            actor_id,
            plan=lambda b: plan_service_transition(b.status, b.service_status, target),
            notes=notes,
        )

    async def _transition(
        self,
        booking_id: UUID,
        actor_id: UUID,
        plan: Callable[[Booking], Transition],
        reason: str | None = None,
        notes: str | None = None,
    ) -> BookingResponse:
        """
        Lock the booking, re-plan against the locked state and apply the status
        fields, history row and ledger recompute in one transaction. Nothing is
        committed unless every step succeeds.
        """
        step = "booking"
        try:
            async with in_transaction():
                inst = await Booking.filter(id=booking_id).select_for_update().first()
                if inst is None:
                    raise NotFound("Booking not found", booking_id=booking_id)

                transition: Transition = plan(inst)
                await self._apply(inst, transition, actor_id, reason, notes)

                if Effect.RECOMPUTE_LEDGER in transition.effects:
                    step = "ledger"
                    await recompute_ledger(inst.provider_id)
        except STORAGE_ERRORS as exc:
            logger.exception(
                "Transition failed at step={} for booking_id={}", step, booking_id
            )
            raise StorageFault(
                f"Could not store {step} update; booking left unchanged",
                booking_id=booking_id,
                step=step,
                committed=False,
            ) from exc

        logger.info(
            "Booking {} moved to status={} service_status={} by {}",
            booking_id,
            transition.status,
            transition.service_status,
            actor_id,
        )
        return await self._reload(booking_id)

    async def _apply(
        self,
        inst: Booking,
        transition: Transition,
        actor_id: UUID,
        reason: str | None,
        notes: str | None,
    ) -> None:
        now = timezone.now()
        update_fields = ["status", "service_status", "updated_at"]

        if transition.status == BookingStatus.REJECTED and reason:
            inst.provider_notes = reason
            update_fields.append("provider_notes")
        if Effect.STAMP_COMPLETED in transition.effects:
            inst.completed_at = now
            update_fields.append("completed_at")
        if Effect.STAMP_CANCELLED in transition.effects:
            inst.cancelled_at = now
            inst.cancellation_reason = reason
            update_fields += ["cancelled_at", "cancellation_reason"]

        inst.status = transition.status  # type: ignore
        inst.service_status = transition.service_status  # type: ignore
        await inst.save(update_fields=update_fields)

        if Effect.RECORD_HISTORY in transition.effects:
            await ServiceStatusEntry.create(
                booking=inst,
                status=transition.service_status,
                actor_id=actor_id,
                notes=notes or "",
            )

    # -----------------------------------------------------------------------
    # Rating
    # -----------------------------------------------------------------------

    async def rate_booking(
        self,
        booking_id: UUID,
        rating: int,
        comment: str | None = None,
    ) -> BookingResponse:
        """Single conditional UPDATE, so concurrent attempts cannot both win."""
        updated = await Booking.filter(
            id=booking_id, status=BookingStatus.COMPLETED, rating__isnull=True
        ).update(rating=rating, rating_comment=comment or "", rated_at=timezone.now())

        if not updated:
            inst = await Booking.get_or_none(id=booking_id)
            if inst is None:
                raise NotFound("Booking not found", booking_id=booking_id)
            if inst.status != BookingStatus.COMPLETED:
                raise NotCompleted(
                    "Can only rate completed bookings", booking_id=booking_id
                )
            raise AlreadyRated("Booking already rated", booking_id=booking_id)

        logger.info("Booking {} rated {}", booking_id, rating)
        return await self._reload(booking_id)

    async def _reload(self, booking_id: UUID) -> BookingResponse:
        booking = await self.get_booking(booking_id)
        if booking is None:
            raise NotFound("Booking not found", booking_id=booking_id)
        return booking


booking_crud = BookingCRUD()
