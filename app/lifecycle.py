"""
Booking / service-delivery state machine.

Two coupled state variables live on a booking: the coarse ``status`` and the
fine-grained ``service_status``. Rather than mutating them independently,
each request is planned as one ``Transition`` carrying the complete next
state and the side effects the writer must apply with it. Planning and
authorization never touch storage, so a rejected request leaves the booking
untouched.

    status:          pending ──> confirmed ──> in-progress ──> completed
                        │            │              │
                        └> rejected  └> cancelled <─┘

    service_status:  not-started ──> on-the-way ──> in-progress ──> completed
                                                          └──────> cancelled

Reaching service ``completed`` forces booking ``completed`` in the same
transition.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol
from uuid import UUID

from app.deps import CurrentUser
from app.exceptions import InvalidTransitionTarget, Unauthorized, ValidationFailed
from app.models import BookingStatus, ServiceStatus
from app.scopes import BookingScope

BOOKING_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset(
        {BookingStatus.CONFIRMED, BookingStatus.REJECTED}
    ),
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED}
    ),
    BookingStatus.IN_PROGRESS: frozenset(
        {BookingStatus.COMPLETED, BookingStatus.CANCELLED}
    ),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.REJECTED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

SERVICE_TRANSITIONS: dict[ServiceStatus, frozenset[ServiceStatus]] = {
    ServiceStatus.NOT_STARTED: frozenset({ServiceStatus.ON_THE_WAY}),
    ServiceStatus.ON_THE_WAY: frozenset({ServiceStatus.IN_PROGRESS}),
    ServiceStatus.IN_PROGRESS: frozenset(
        {ServiceStatus.COMPLETED, ServiceStatus.CANCELLED}
    ),
    ServiceStatus.COMPLETED: frozenset(),
    ServiceStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    {BookingStatus.COMPLETED, BookingStatus.REJECTED, BookingStatus.CANCELLED}
)

# Targets only the assigned provider (or an admin) may set
_PROVIDER_STATUSES = frozenset(
    {
        BookingStatus.CONFIRMED,
        BookingStatus.REJECTED,
        BookingStatus.IN_PROGRESS,
        BookingStatus.COMPLETED,
    }
)


class Effect(StrEnum):
    RECORD_HISTORY = "record_history"
    STAMP_COMPLETED = "stamp_completed"
    STAMP_CANCELLED = "stamp_cancelled"
    RECOMPUTE_LEDGER = "recompute_ledger"


@dataclass(frozen=True)
class Transition:
    status: BookingStatus
    service_status: ServiceStatus
    effects: frozenset[Effect] = frozenset()

    @property
    def completes(self) -> bool:
        return Effect.STAMP_COMPLETED in self.effects


class _LineItem(Protocol):
    provider_id: UUID | None


class BookingState(Protocol):
    """What the planner needs; satisfied by the ORM model and BookingResponse."""

    status: BookingStatus
    service_status: ServiceStatus
    customer_id: UUID
    provider_id: UUID | None

    @property
    def items(self) -> Iterable[_LineItem]: ...


# ---------------------------------------------------------------------------
# Target parsing
# ---------------------------------------------------------------------------


def parse_booking_status(value: str) -> BookingStatus:
    try:
        return BookingStatus(value)
    except ValueError:
        raise InvalidTransitionTarget(
            f"'{value}' is not a booking status. "
            f"Known: {[s.value for s in BookingStatus]}",
            target=value,
        ) from None


def parse_service_status(value: str) -> ServiceStatus:
    try:
        return ServiceStatus(value)
    except ValueError:
        raise InvalidTransitionTarget(
            f"'{value}' is not a service status. "
            f"Known: {[s.value for s in ServiceStatus]}",
            target=value,
        ) from None


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


def plan_booking_transition(
    status: BookingStatus,
    service_status: ServiceStatus,
    target: BookingStatus,
) -> Transition:
    allowed = BOOKING_TRANSITIONS.get(status, frozenset())
    if target not in allowed:
        raise InvalidTransitionTarget(
            f"Cannot transition from '{status}' to '{target}'. "
            f"Allowed: {sorted(s.value for s in allowed)}",
            current=status,
            target=target,
        )

    effects: set[Effect] = set()
    if target == BookingStatus.COMPLETED:
        effects |= {Effect.STAMP_COMPLETED, Effect.RECOMPUTE_LEDGER}
    elif target == BookingStatus.CANCELLED:
        effects.add(Effect.STAMP_CANCELLED)

    return Transition(
        status=target, service_status=service_status, effects=frozenset(effects)
    )


def plan_service_transition(
    status: BookingStatus,
    service_status: ServiceStatus,
    target: ServiceStatus,
) -> Transition:
    if status in TERMINAL_STATUSES:
        raise InvalidTransitionTarget(
            f"Service status cannot change on a '{status}' booking",
            current=service_status,
            target=target,
        )

    allowed = SERVICE_TRANSITIONS.get(service_status, frozenset())
    if target not in allowed:
        raise InvalidTransitionTarget(
            f"Cannot transition service from '{service_status}' to '{target}'. "
            f"Allowed: {sorted(s.value for s in allowed)}",
            current=service_status,
            target=target,
        )

    if target == ServiceStatus.COMPLETED:
        return Transition(
            status=BookingStatus.COMPLETED,
            service_status=target,
            effects=frozenset(
                {
                    Effect.RECORD_HISTORY,
                    Effect.STAMP_COMPLETED,
                    Effect.RECOMPUTE_LEDGER,
                }
            ),
        )
    return Transition(
        status=status,
        service_status=target,
        effects=frozenset({Effect.RECORD_HISTORY}),
    )


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


def owns_any_item(booking: BookingState, user_id: UUID) -> bool:
    return any(item.provider_id == user_id for item in booking.items)


def authorize_booking_transition(
    booking: BookingState,
    target: BookingStatus,
    user: CurrentUser,
    reason: str | None = None,
) -> None:
    """
    Rules:
      confirmed / rejected / in-progress / completed : MANAGE + assigned provider, OR admin
      cancelled : CANCEL + customer, OR MANAGE + assigned provider, OR admin;
                  a reason is always required
    """
    if target == BookingStatus.CANCELLED and not (reason and reason.strip()):
        raise ValidationFailed("A cancellation reason is required", field="reason")

    if user.is_admin:
        return

    is_assigned_provider = (
        user.is_provider
        and booking.provider_id is not None
        and booking.provider_id == user.id
    )

    if target in _PROVIDER_STATUSES:
        if not is_assigned_provider:
            raise Unauthorized(
                f"Transitioning to '{target}' requires "
                f"'{BookingScope.MANAGE}' scope and being the assigned provider."
            )

    elif target == BookingStatus.CANCELLED:
        is_customer = (
            BookingScope.CANCEL in user.scopes and booking.customer_id == user.id
        )
        if not (is_customer or is_assigned_provider):
            raise Unauthorized(
                f"Cancelling requires '{BookingScope.CANCEL}' scope as the customer, "
                f"or '{BookingScope.MANAGE}' scope as the assigned provider."
            )


def authorize_service_update(booking: BookingState, user: CurrentUser) -> None:
    """Admins, or providers owning at least one line item (not just the primary one)."""
    if user.is_admin:
        return
    if user.is_provider and owns_any_item(booking, user.id):
        return
    raise Unauthorized("Not authorized to update service status for this booking")


def authorize_rating(booking: BookingState, user: CurrentUser) -> None:
    if user.is_admin or booking.customer_id == user.id:
        return
    raise Unauthorized("Only the customer who booked can rate this booking")
