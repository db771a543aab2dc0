"""Integration tests for attaching events (remarks, issues, requests, notes)."""

from __future__ import annotations

import pytest

from modules.core.models import AuditLog
from modules.orders.constants import OrderStatus
from modules.orders.dtos import AddOrderEventDTO
from modules.orders.exceptions import InvalidOrderStatus, OrderNotFound, VersionConflict
from modules.orders.models import Order, OrderEvent
from modules.settlement.exceptions import SettlementLocked

pytestmark = pytest.mark.integration


def test_add_event_counts_events(lifecycle_service, make_order):
    order = make_order()

    first = lifecycle_service.add_event(
        order.id, AddOrderEventDTO(event_type="ISSUE", note="Wall is concrete"), actor="tech"
    )
    second = lifecycle_service.add_event(
        order.id, AddOrderEventDTO(event_type="NOTE", note="Bring a drill")
    )

    assert first.total_events == 1
    assert second.total_events == 2
    assert second.event_type == "NOTE"
    stored = OrderEvent.objects.get(pk=first.event_id)
    assert stored.note == "Wall is concrete"
    assert stored.created_by == "tech"


def test_add_event_leaves_order_untouched(lifecycle_service, make_order):
    order = make_order()

    lifecycle_service.add_event(
        order.id, AddOrderEventDTO(event_type="REMARK", note="Call ahead", expected_version=1)
    )

    assert Order.objects.get(pk=order.pk).version == 1


def test_add_event_is_audited(lifecycle_service, make_order):
    order = make_order()

    result = lifecycle_service.add_event(
        order.id, AddOrderEventDTO(event_type="REQUEST", note="Morning slot")
    )

    audit = AuditLog.objects.get(table_name="order_events", record_id=str(result.event_id))
    assert audit.diff == {
        "orderId": str(order.id),
        "eventType": "REQUEST",
        "note": "Morning slot",
    }


@pytest.mark.parametrize(
    "status", [OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.COLLECTED]
)
def test_rejected_outside_active_statuses(lifecycle_service, make_order, move_to, status):
    order = move_to(make_order(), status)

    with pytest.raises(InvalidOrderStatus):
        lifecycle_service.add_event(order.id, AddOrderEventDTO(event_type="NOTE", note="late"))
    assert not OrderEvent.objects.filter(order=order).exists()


def test_stale_version(lifecycle_service, make_order):
    order = make_order()

    with pytest.raises(VersionConflict):
        lifecycle_service.add_event(
            order.id, AddOrderEventDTO(event_type="NOTE", note="x", expected_version=2)
        )


def test_settlement_lock(lifecycle_service, make_order, lock_settlement_week, today):
    order = make_order()
    lock_settlement_week(today)

    with pytest.raises(SettlementLocked):
        lifecycle_service.add_event(order.id, AddOrderEventDTO(event_type="NOTE", note="x"))


def test_missing_order(lifecycle_service):
    with pytest.raises(OrderNotFound):
        lifecycle_service.add_event(
            "not-a-uuid", AddOrderEventDTO(event_type="NOTE", note="x")
        )
