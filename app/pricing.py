"""
Booking price calculation.

Everything here is pure: the catalog prices and the promo catalog are passed
in by the caller, so the same inputs always produce the same snapshot.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import StrEnum
from uuid import UUID

from app.exceptions import InvalidBookingRequest

_WHOLE_UNIT = Decimal("1")


class PromoKind(StrEnum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


@dataclass(frozen=True)
class PromoRule:
    kind: PromoKind
    value: Decimal

    @classmethod
    def from_value(cls, value: Decimal | str | int | float) -> PromoRule:
        """Values below 1 are fractions of the subtotal, anything else a flat amount."""
        amount = Decimal(str(value))
        if amount < 0:
            raise ValueError(f"Promo value must not be negative: {amount}")
        kind = PromoKind.PERCENTAGE if amount < 1 else PromoKind.FIXED
        return cls(kind=kind, value=amount)

    def discount_for(self, subtotal: Decimal) -> Decimal:
        if self.kind is PromoKind.PERCENTAGE:
            return (subtotal * self.value).quantize(_WHOLE_UNIT, rounding=ROUND_HALF_UP)
        return self.value


class PromoCatalog:
    """Case-insensitive promo code lookup."""

    def __init__(self, rules: Mapping[str, PromoRule] | None = None) -> None:
        self._rules = {code.upper(): rule for code, rule in (rules or {}).items()}

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Decimal | str | int | float]) -> PromoCatalog:
        return cls({code: PromoRule.from_value(value) for code, value in raw.items()})

    def lookup(self, code: str | None) -> PromoRule | None:
        if not code:
            return None
        return self._rules.get(code.strip().upper())

    def __contains__(self, code: object) -> bool:
        return isinstance(code, str) and self.lookup(code) is not None


@dataclass(frozen=True)
class PricedItem:
    """A requested line item with the catalog data copied at booking time."""

    service_id: UUID
    provider_id: UUID | None
    quantity: int
    unit_price: Decimal

    @property
    def amount(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class PricingSnapshot:
    subtotal: Decimal
    service_charges: Decimal
    discount: Decimal
    total: Decimal
    promo_code: str | None = None  # normalized code, only when it matched


def compute_pricing(
    items: Sequence[PricedItem],
    promo_code: str | None = None,
    *,
    promos: PromoCatalog,
    service_charge: Decimal,
) -> PricingSnapshot:
    """
    subtotal = sum(unit_price * quantity)
    total    = subtotal + service_charge - discount

    Unknown promo codes give a zero discount. The discount never exceeds
    subtotal + service_charge, so total is never negative.
    """
    if not items:
        raise InvalidBookingRequest("At least one service must be selected")
    for item in items:
        if item.quantity < 1:
            raise InvalidBookingRequest(
                f"Quantity for service {item.service_id} must be at least 1",
                service_id=item.service_id,
            )

    subtotal = sum((item.amount for item in items), Decimal("0"))

    rule = promos.lookup(promo_code)
    discount = Decimal("0")
    applied_code = None
    if rule is not None:
        discount = min(rule.discount_for(subtotal), subtotal + service_charge)
        applied_code = promo_code.strip().upper()  # type: ignore[union-attr]

    return PricingSnapshot(
        subtotal=subtotal,
        service_charges=service_charge,
        discount=discount,
        total=subtotal + service_charge - discount,
        promo_code=applied_code,
    )
