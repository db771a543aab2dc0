"""Order aggregate and its lifecycle records.

- ``Order`` carries an optimistic ``version`` that increases by exactly one
  on every successful mutation; writes are conditional on the version the
  caller checked.
- ``OrderStatusHistory`` / ``OrderEvent`` / ``AppointmentChange`` /
  ``SplitOrder`` are append-only.
- ``CancellationRecord`` exists exactly while an order is cancelled and
  revertible; reverting deletes it.
- Orders are soft-deleted only (``deleted_at`` from SoftDeleteModel).
"""

from __future__ import annotations

import secrets
from typing import Any

from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from modules.core.models import BaseModel, SoftDeleteModel
from modules.orders.constants import (
    MAX_ABSENCE_RETRIES,
    TERMINAL_STATES,
    CancellationReason,
    OrderEventType,
    OrderStatus,
)
from shared.domain.events import DomainEventMixin

ORDER_NUMBER_MAX_RETRIES = 5


class Order(DomainEventMixin, SoftDeleteModel):
    """Order aggregate root.

    ``order_no`` is the human-readable identifier (``ORD-YYYYMMDD-XXXXXX``
    unless supplied, e.g. ``<parent>-SPLIT-XXXXXX`` for split children).
    ``promised_date`` is the date originally promised to the customer and
    bounds how far a revert may reschedule the appointment.
    """

    order_no: models.CharField = models.CharField(max_length=40, unique=True)
    customer_name: models.CharField = models.CharField(max_length=100)
    customer_phone: models.CharField = models.CharField(
        max_length=20, blank=True, default=""
    )
    address: models.JSONField = models.JSONField(default=dict, blank=True)
    vendor: models.CharField = models.CharField(max_length=50, blank=True, default="")
    branch: models.ForeignKey = models.ForeignKey(
        "organization.Branch",
        on_delete=models.PROTECT,
        related_name="orders",
    )
    partner: models.ForeignKey = models.ForeignKey(
        "organization.Partner",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="orders",
    )
    installer: models.ForeignKey = models.ForeignKey(
        "organization.Installer",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="orders",
    )
    status: models.CharField = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
        default=OrderStatus.UNASSIGNED,
    )
    version: models.PositiveIntegerField = models.PositiveIntegerField(default=1)
    appointment_date: models.DateField = models.DateField()
    appointment_time_window: models.CharField = models.CharField(
        max_length=20, blank=True, default=""
    )
    promised_date: models.DateField = models.DateField()
    remarks: models.TextField = models.TextField(blank=True, default="")
    absence_retry_count: models.PositiveIntegerField = models.PositiveIntegerField(
        default=0
    )
    max_absence_retries: models.PositiveIntegerField = models.PositiveIntegerField(
        default=MAX_ABSENCE_RETRIES
    )
    completed_at: models.DateTimeField = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status"], name="orders_status_idx"),
            models.Index(
                fields=["branch", "appointment_date"],
                name="orders_branch_appt_idx",
            ),
        ]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    # ------------------------------------------------------------------
    # Order number generation
    # ------------------------------------------------------------------

    @staticmethod
    def generate_order_no() -> str:
        now = timezone.now()
        suffix = secrets.token_hex(3).upper()
        return f"ORD-{now:%Y%m%d}-{suffix}"

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self.order_no:
            for _ in range(ORDER_NUMBER_MAX_RETRIES):
                candidate = self.generate_order_no()
                if not Order.objects.filter(order_no=candidate).exists():
                    self.order_no = candidate
                    break
            else:
                raise RuntimeError(
                    f"Failed to generate unique order_no after "
                    f"{ORDER_NUMBER_MAX_RETRIES} attempts"
                )
        if self.promised_date is None:
            self.promised_date = self.appointment_date
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.order_no} ({self.status} v{self.version})"


class OrderLine(BaseModel):
    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="lines",
    )
    item_code: models.CharField = models.CharField(max_length=50)
    item_name: models.CharField = models.CharField(max_length=200)
    quantity: models.PositiveIntegerField = models.PositiveIntegerField(
        default=1,
        validators=[MinValueValidator(1)],
    )
    weight: models.DecimalField = models.DecimalField(
        max_digits=8, decimal_places=2, null=True, blank=True
    )

    class Meta:
        db_table = "order_lines"
        ordering = ["created_at"]

    def __str__(self) -> str:
        return f"{self.item_code} x{self.quantity}"


class OrderStatusHistory(BaseModel):
    """Append-only trail of status changes.

    ``reason_code`` marks rows written by operations rather than plain
    transitions (``CANCEL``, ``REVERT``, ``SPLIT``, ``REASSIGN``) or carries
    the reason supplied with a guarded transition.
    """

    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="status_history",
    )
    previous_status: models.CharField = models.CharField(  # noqa: DJ01
        max_length=20,
        choices=OrderStatus.choices,
        null=True,
        blank=True,
    )
    new_status: models.CharField = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
    )
    changed_by: models.CharField = models.CharField(max_length=64, blank=True, default="")
    reason_code: models.CharField = models.CharField(
        max_length=50, blank=True, default=""
    )
    notes: models.TextField = models.TextField(blank=True, default="")
    changed_at: models.DateTimeField = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "order_status_history"
        ordering = ["changed_at", "created_at"]
        indexes = [
            models.Index(
                fields=["order", "changed_at"],
                name="osh_order_changed_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.order_id} : {self.previous_status} -> {self.new_status}"


class CancellationRecord(BaseModel):
    order: models.OneToOneField = models.OneToOneField(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="cancellation",
    )
    reason: models.CharField = models.CharField(
        max_length=30, choices=CancellationReason.choices
    )
    note: models.TextField = models.TextField(blank=True, default="")
    cancelled_by: models.CharField = models.CharField(max_length=64)
    cancelled_at: models.DateTimeField = models.DateTimeField(default=timezone.now)
    previous_status: models.CharField = models.CharField(
        max_length=20, choices=OrderStatus.choices
    )
    is_returned: models.BooleanField = models.BooleanField(default=False)
    returned_at: models.DateTimeField = models.DateTimeField(null=True, blank=True)
    returned_by: models.CharField = models.CharField(
        max_length=64, blank=True, default=""
    )

    class Meta:
        db_table = "cancellation_records"


class SplitOrder(BaseModel):
    """Link from a split parent to one child order (immutable)."""

    parent_order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="split_children",
    )
    child_order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="split_parents",
    )
    line: models.ForeignKey = models.ForeignKey(
        "orders.OrderLine",
        on_delete=models.CASCADE,
        related_name="splits",
    )
    quantity: models.PositiveIntegerField = models.PositiveIntegerField()
    created_by: models.CharField = models.CharField(max_length=64)

    class Meta:
        db_table = "split_orders"
        ordering = ["created_at"]


class OrderEvent(BaseModel):
    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="events",
    )
    event_type: models.CharField = models.CharField(
        max_length=20, choices=OrderEventType.choices
    )
    note: models.TextField = models.TextField()
    created_by: models.CharField = models.CharField(max_length=64)

    class Meta:
        db_table = "order_events"
        ordering = ["created_at"]


class AppointmentChange(BaseModel):
    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="appointment_changes",
    )
    old_date: models.DateField = models.DateField(null=True, blank=True)
    new_date: models.DateField = models.DateField()
    changed_by: models.CharField = models.CharField(max_length=64, blank=True, default="")
    reason: models.CharField = models.CharField(max_length=200, blank=True, default="")

    class Meta:
        db_table = "appointment_changes"
        ordering = ["created_at"]


class SerialNumber(BaseModel):
    line: models.ForeignKey = models.ForeignKey(
        "orders.OrderLine",
        on_delete=models.CASCADE,
        related_name="serial_numbers",
    )
    serial: models.CharField = models.CharField(max_length=100)
    recorded_by: models.CharField = models.CharField(max_length=64)

    class Meta:
        db_table = "serial_numbers"
        ordering = ["created_at"]


class WastePickup(BaseModel):
    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="waste_pickups",
    )
    code: models.CharField = models.CharField(max_length=3)
    quantity: models.PositiveIntegerField = models.PositiveIntegerField(
        validators=[MinValueValidator(1)]
    )
    collected_at: models.DateTimeField = models.DateTimeField(default=timezone.now)
    collected_by: models.CharField = models.CharField(max_length=64)

    class Meta:
        db_table = "waste_pickups"
        ordering = ["code"]
        constraints = [
            models.UniqueConstraint(
                fields=["order", "code"], name="waste_pickup_order_code_uniq"
            ),
        ]
