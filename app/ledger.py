"""
Provider ledger read model.

The ledger is never incremented: every recompute rebuilds it from the
provider's completed bookings, so it cannot drift from them.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from loguru import logger
from tortoise import timezone

from app.models import Booking, BookingStatus, ProviderLedger
from app.schemas import LedgerSnapshot

_LEDGER_FIELDS = [
    "completed_service_count",
    "lifetime_earnings",
    "last_service_date",
    "updated_at",
]


def summarize(provider_id: UUID, bookings: Iterable[Booking]) -> LedgerSnapshot:
    """
    Fold completed bookings (with items fetched) into a snapshot.

    Earnings use the unit-price snapshots on the line items; service charges
    go to the platform and are not counted.

    last_service_date is the latest completed_at, not the time of the
    recompute, so folding the same bookings twice gives the same snapshot.
    """
    count = 0
    earnings = Decimal("0")
    last: datetime | None = None
    for booking in bookings:
        for item in booking.items:
            count += item.quantity
            earnings += item.unit_price * item.quantity
        if booking.completed_at and (last is None or booking.completed_at > last):
            last = booking.completed_at
    return LedgerSnapshot(
        provider_id=provider_id,
        completed_service_count=count,
        lifetime_earnings=earnings,
        last_service_date=last,
    )


async def recompute_ledger(provider_id: UUID | None) -> LedgerSnapshot | None:
    """
    Rebuild and store the ledger for ``provider_id``.

    Runs on whatever connection is current, so calling it inside
    ``in_transaction()`` sees that transaction's uncommitted completion.
    A booking without an assigned provider has nothing to reconcile.
    """
    if provider_id is None:
        return None

    completed = await Booking.filter(
        provider_id=provider_id, status=BookingStatus.COMPLETED
    ).prefetch_related("items")
    snapshot = summarize(provider_id, completed)

    # Single upsert: a rival first insert for the same provider becomes an update
    await ProviderLedger.bulk_create(
        [ProviderLedger(**snapshot.model_dump(), updated_at=timezone.now())],
        on_conflict=["provider_id"],
        update_fields=_LEDGER_FIELDS,
    )

    logger.info(
        "Ledger recomputed: provider_id={} services={} earnings={}",
        provider_id,
        snapshot.completed_service_count,
        snapshot.lifetime_earnings,
    )
    return snapshot


async def get_provider_ledger(provider_id: UUID) -> LedgerSnapshot:
    """Stored snapshot, or an empty one for a provider with no completions yet."""
    inst = await ProviderLedger.get_or_none(provider_id=provider_id)
    if inst is None:
        return LedgerSnapshot(provider_id=provider_id)
    return LedgerSnapshot.model_validate(inst, from_attributes=True)
