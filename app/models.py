from enum import StrEnum
from uuid import uuid4

from tortoise import fields
from tortoise.models import Model


class BookingStatus(StrEnum):
    PENDING = "pending"  # just created, awaiting provider decision
    CONFIRMED = "confirmed"  # provider accepted
    REJECTED = "rejected"  # provider declined
    IN_PROGRESS = "in-progress"  # work has started
    COMPLETED = "completed"  # job done, counted in the provider ledger
    CANCELLED = "cancelled"  # cancelled by customer, provider or admin


class ServiceStatus(StrEnum):
    NOT_STARTED = "not-started"
    ON_THE_WAY = "on-the-way"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentMethod(StrEnum):
    CASH = "cash"
    CARD = "card"
    WALLET = "wallet"


class PaymentStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


def generate_booking_code() -> str:
    """Public booking code: 'HE' + 128-bit random hex, independent of the clock."""
    return "HE" + uuid4().hex.upper()


class Booking(Model):
    id = fields.UUIDField(primary_key=True)
    booking_id = fields.CharField(
        max_length=40, unique=True, default=generate_booking_code
    )

    customer_id = fields.UUIDField(db_index=True)
    # owner of the first line item's service, not chosen by the customer
    provider_id = fields.UUIDField(null=True, db_index=True)

    scheduled_date = fields.DateField()
    scheduled_time = fields.CharField(max_length=32)

    customer_info = fields.JSONField()  # snapshot at booking time
    address = fields.JSONField()  # snapshot at booking time

    # Frozen pricing, written once by create_booking
    subtotal = fields.DecimalField(max_digits=12, decimal_places=2)
    service_charges = fields.DecimalField(max_digits=12, decimal_places=2)
    discount = fields.DecimalField(max_digits=12, decimal_places=2, default=0)
    total = fields.DecimalField(max_digits=12, decimal_places=2)
    promo_code = fields.CharField(max_length=32, null=True)
    promo_discount = fields.DecimalField(max_digits=12, decimal_places=2, null=True)

    payment_method = fields.CharEnumField(PaymentMethod, max_length=16)
    payment_status = fields.CharEnumField(
        PaymentStatus, max_length=16, default=PaymentStatus.PENDING
    )
    transaction_id = fields.CharField(max_length=128, null=True)
    paid_at = fields.DatetimeField(null=True)

    status = fields.CharEnumField(
        BookingStatus, max_length=16, default=BookingStatus.PENDING, db_index=True
    )
    service_status = fields.CharEnumField(
        ServiceStatus, max_length=16, default=ServiceStatus.NOT_STARTED
    )

    customer_notes = fields.TextField(null=True)
    provider_notes = fields.TextField(null=True)

    rating = fields.SmallIntField(null=True)
    rating_comment = fields.TextField(null=True)
    rated_at = fields.DatetimeField(null=True)

    completed_at = fields.DatetimeField(null=True)
    cancelled_at = fields.DatetimeField(null=True)
    cancellation_reason = fields.TextField(null=True)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    items: fields.ReverseRelation["BookingItem"]
    history: fields.ReverseRelation["ServiceStatusEntry"]

    class Meta:  # type: ignore
        table = "bookings"
        ordering = ["-created_at"]


class BookingItem(Model):
    id = fields.IntField(primary_key=True)
    booking: fields.ForeignKeyRelation[Booking] = fields.ForeignKeyField(
        "models.Booking", related_name="items", on_delete=fields.CASCADE
    )
    position = fields.SmallIntField()

    service_id = fields.UUIDField()
    provider_id = fields.UUIDField(null=True)  # service owner at booking time
    quantity = fields.IntField()
    unit_price = fields.DecimalField(
        max_digits=10, decimal_places=2
    )  # catalog price snapshot

    class Meta:  # type: ignore
        table = "booking_items"
        ordering = ["position"]


class ServiceStatusEntry(Model):
    """Audit row; only ever inserted."""

    id = fields.IntField(primary_key=True)
    booking: fields.ForeignKeyRelation[Booking] = fields.ForeignKeyField(
        "models.Booking", related_name="history", on_delete=fields.CASCADE
    )
    status = fields.CharEnumField(ServiceStatus, max_length=16)
    actor_id = fields.UUIDField()
    notes = fields.TextField(default="")
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:  # type: ignore
        table = "service_status_history"
        ordering = ["id"]


class ProviderLedger(Model):
    provider_id = fields.UUIDField(primary_key=True)
    completed_service_count = fields.IntField(default=0)
    lifetime_earnings = fields.DecimalField(max_digits=14, decimal_places=2, default=0)
    last_service_date = fields.DatetimeField(null=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        table = "provider_ledgers"
