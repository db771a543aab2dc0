"""Django ORM implementation of the Order repository.

Concurrency control:
- ``get_for_update`` takes a row lock (``select_for_update``) so that the
  settlement, version and guard checks all see the row the write replaces.
- ``save_versioned`` issues ``UPDATE ... WHERE id = %s AND version = %s``
  and bumps ``version`` in the same statement.  Zero affected rows means a
  concurrent writer won; the caller gets ``VersionConflict`` with the
  fresh server state.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from django.core.exceptions import ValidationError
from django.db.models import F
from django.utils import timezone

from modules.orders.exceptions import VersionConflict
from modules.orders.models import (
    AppointmentChange,
    CancellationRecord,
    Order,
    OrderEvent,
    OrderLine,
    OrderStatusHistory,
    SerialNumber,
    SplitOrder,
    WastePickup,
)
from modules.orders.repositories.interfaces import IOrderRepository

logger = structlog.get_logger(__name__)


class OrderDjangoRepository(IOrderRepository):
    """Concrete Order repository backed by Django ORM."""

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_by_id(self, id: Any) -> Optional[Order]:
        """Live order with lines prefetched; ``None`` for missing or malformed IDs."""
        try:
            return (
                Order.objects.alive()
                .prefetch_related("lines")
                .filter(id=id)
                .first()
            )
        except (ValueError, ValidationError):
            return None

    def list(self, filters: Optional[Dict[str, Any]] = None) -> List[Order]:
        queryset = Order.objects.alive().prefetch_related("lines")
        if filters:
            queryset = queryset.filter(**filters)
        return list(queryset)

    def get_for_update(self, id: Any) -> Optional[Order]:
        try:
            return (
                Order.objects.select_for_update()
                .alive()
                .prefetch_related("lines")
                .filter(id=id)
                .first()
            )
        except (ValueError, ValidationError):
            return None

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def create(self, data: Dict[str, Any], lines: Sequence[Dict[str, Any]]) -> Order:
        order = Order(**data)
        order.version = 1
        order.save()
        OrderLine.objects.bulk_create(
            [OrderLine(order=order, **line_data) for line_data in lines]
        )
        logger.info("order.persisted", order_id=str(order.id), line_count=len(lines))
        return self.get_by_id(order.id) or order

    def save_versioned(self, order: Order, fields: Sequence[str]) -> Order:
        now = timezone.now()
        changes = {field: getattr(order, field) for field in fields}
        updated = Order.objects.filter(id=order.id, version=order.version).update(
            **changes, version=F("version") + 1, updated_at=now
        )
        if updated == 0:
            self._raise_stale(order)

        order.version += 1
        order.updated_at = now
        return order

    def soft_delete(self, order: Order) -> Order:
        order.deleted_at = timezone.now()
        self.save_versioned(order, ["deleted_at"])
        logger.info("order.soft_deleted", order_id=str(order.id))
        return order

    @staticmethod
    def _raise_stale(order: Order) -> None:
        from modules.orders.dtos import OrderSnapshotDTO

        current = Order.objects.prefetch_related("lines").get(id=order.id)
        raise VersionConflict(
            expected_version=order.version,
            current_version=current.version,
            server_state=OrderSnapshotDTO.from_entity(current).model_dump(
                mode="json", by_alias=True
            ),
        )

    # ------------------------------------------------------------------
    # Lines
    # ------------------------------------------------------------------

    def get_lines(self, order_id: Any) -> List[OrderLine]:
        return list(OrderLine.objects.filter(order_id=order_id))

    def get_line(self, order_id: Any, line_id: Any) -> Optional[OrderLine]:
        try:
            return OrderLine.objects.filter(order_id=order_id, id=line_id).first()
        except (ValueError, ValidationError):
            return None

    # ------------------------------------------------------------------
    # Append-only satellites
    # ------------------------------------------------------------------

    def add_history(
        self,
        order_id: Any,
        previous_status: Optional[str],
        new_status: str,
        changed_by: str = "",
        reason_code: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> OrderStatusHistory:
        history = OrderStatusHistory.objects.create(
            order_id=order_id,
            previous_status=previous_status,
            new_status=new_status,
            changed_by=changed_by or "",
            reason_code=reason_code or "",
            notes=notes or "",
        )
        logger.debug(
            "order.history_added",
            order_id=str(order_id),
            previous_status=previous_status,
            new_status=new_status,
        )
        return history

    def get_history(self, order_id: Any) -> List[OrderStatusHistory]:
        return list(OrderStatusHistory.objects.filter(order_id=order_id))

    def add_event(
        self, order_id: Any, event_type: str, note: str, created_by: str
    ) -> OrderEvent:
        return OrderEvent.objects.create(
            order_id=order_id,
            event_type=event_type,
            note=note,
            created_by=created_by,
        )

    def count_events(self, order_id: Any) -> int:
        return OrderEvent.objects.filter(order_id=order_id).count()

    def add_split_link(
        self,
        parent_id: Any,
        child_id: Any,
        line_id: Any,
        quantity: int,
        created_by: str,
    ) -> SplitOrder:
        return SplitOrder.objects.create(
            parent_order_id=parent_id,
            child_order_id=child_id,
            line_id=line_id,
            quantity=quantity,
            created_by=created_by,
        )

    def add_appointment_change(
        self,
        order_id: Any,
        old_date: Optional[date],
        new_date: date,
        changed_by: str,
        reason: str = "",
    ) -> AppointmentChange:
        return AppointmentChange.objects.create(
            order_id=order_id,
            old_date=old_date,
            new_date=new_date,
            changed_by=changed_by,
            reason=reason or "",
        )

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def get_cancellation(self, order_id: Any) -> Optional[CancellationRecord]:
        return CancellationRecord.objects.filter(order_id=order_id).first()

    def create_cancellation(
        self,
        order_id: Any,
        reason: str,
        note: str,
        cancelled_by: str,
        previous_status: str,
    ) -> CancellationRecord:
        return CancellationRecord.objects.create(
            order_id=order_id,
            reason=reason,
            note=note or "",
            cancelled_by=cancelled_by,
            previous_status=previous_status,
        )

    def delete_cancellation(self, order_id: Any) -> bool:
        deleted, _ = CancellationRecord.objects.filter(order_id=order_id).delete()
        return deleted > 0

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def add_serials(
        self, line: OrderLine, serials: Sequence[str], recorded_by: str
    ) -> List[SerialNumber]:
        return SerialNumber.objects.bulk_create(
            [
                SerialNumber(line=line, serial=serial, recorded_by=recorded_by)
                for serial in serials
            ]
        )

    def upsert_waste(
        self, order_id: Any, code: str, quantity: int, collected_by: str
    ) -> WastePickup:
        pickup, _ = WastePickup.objects.update_or_create(
            order_id=order_id,
            code=code,
            defaults={
                "quantity": quantity,
                "collected_by": collected_by,
                "collected_at": timezone.now(),
            },
        )
        return pickup

    def replace_serials(
        self, line: OrderLine, serials: Sequence[str], recorded_by: str
    ) -> List[SerialNumber]:
        SerialNumber.objects.filter(line=line).delete()
        return self.add_serials(line, serials, recorded_by)

    def replace_waste(
        self, order_id: Any, entries: Sequence[Tuple[str, int]], collected_by: str
    ) -> List[WastePickup]:
        WastePickup.objects.filter(order_id=order_id).delete()
        now = timezone.now()
        return WastePickup.objects.bulk_create(
            [
                WastePickup(
                    order_id=order_id,
                    code=code,
                    quantity=quantity,
                    collected_by=collected_by,
                    collected_at=now,
                )
                for code, quantity in entries
            ]
        )

    def get_waste(self, order_id: Any) -> List[WastePickup]:
        return list(WastePickup.objects.filter(order_id=order_id))

    def get_serials(self, order_id: Any) -> List[SerialNumber]:
        return list(SerialNumber.objects.filter(line__order_id=order_id))
