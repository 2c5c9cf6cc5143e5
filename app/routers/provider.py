from uuid import UUID

from fastapi import APIRouter, Depends
from loguru import logger

from app.cache import get_ledger_cache, invalidate_ledger_cache, set_ledger_cache
from app.deps import CurrentUser, get_current_user, require_booking_admin
from app.exceptions import STORAGE_ERRORS, NotFound, StorageFault, Unauthorized
from app.ledger import get_provider_ledger, recompute_ledger
from app.schemas import LedgerSnapshot

router = APIRouter(prefix="/providers", tags=["providers"])


@router.get("/{provider_id}/ledger", response_model=LedgerSnapshot)
async def read_provider_ledger(
    provider_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
) -> LedgerSnapshot:
    """The provider's own ledger, or any ledger for admin readers."""
    if not (current_user.can_read_any or current_user.id == provider_id):
        raise Unauthorized("Ledger is visible to its provider and admins only")

    cached = await get_ledger_cache(provider_id)
    if cached is not None:
        logger.debug("Cache hit for ledger: provider_id={}", provider_id)
        return LedgerSnapshot(**cached)

    logger.debug("Cache miss for ledger: provider_id={}", provider_id)
    ledger = await get_provider_ledger(provider_id)
    await set_ledger_cache(provider_id, ledger.model_dump(mode="json"))
    return ledger


@router.post(
    "/{provider_id}/ledger/recompute",
    response_model=LedgerSnapshot,
    dependencies=[Depends(require_booking_admin)],
)
async def recompute_provider_ledger(provider_id: UUID) -> LedgerSnapshot:
    """Operator re-trigger, e.g. after a completion that raced another one."""
    try:
        snapshot = await recompute_ledger(provider_id)
    except STORAGE_ERRORS as exc:
        logger.exception("Ledger recompute failed for provider_id={}", provider_id)
        raise StorageFault(
            "Could not recompute ledger", step="ledger", committed=False
        ) from exc

    await invalidate_ledger_cache(provider_id)
    if snapshot is None:
        raise NotFound("No ledger for provider", provider_id=provider_id)
    return snapshot
