"""Integration tests for offline batch sync.

Covers:
- Items run in order; one failure does not stop the rest.
- Counters and per-item results line up with the request.
- Error mapping: E2006 (with serverState), E2030, E2000, domain codes, E5000.
- CREATE returns the new order id; DELETE soft-deletes.
"""

from __future__ import annotations

from uuid import uuid4

import pytest

from modules.orders.dtos import BatchSyncRequestDTO
from modules.orders.models import Order

pytestmark = pytest.mark.integration


def _item(type_, entity_id, payload=None, expected_version=None):
    item = {
        "type": type_,
        "entityId": str(entity_id),
        "payload": payload or {},
        "clientTimestamp": 1_792_000_000_000,
    }
    if expected_version is not None:
        item["expectedVersion"] = expected_version
    return item


def _sync(lifecycle_service, *items):
    request = BatchSyncRequestDTO.model_validate({"items": list(items)})
    return lifecycle_service.process_batch_sync(request, actor="tablet-7")


# ===========================================================================
# Isolation
# ===========================================================================


def test_failed_item_does_not_block_the_rest(lifecycle_service, make_order, installer):
    first = make_order()
    third = make_order()

    response = _sync(
        lifecycle_service,
        _item("UPDATE", first.id, {"remarks": "gate code 1234"}),
        _item("UPDATE", uuid4(), {"remarks": "ghost"}),
        _item("UPDATE", third.id, {"status": "ASSIGNED", "installerId": str(installer.id)}),
    )

    assert response.total_processed == 3
    assert response.success_count == 2
    assert response.failure_count == 1
    assert [result.success for result in response.results] == [True, False, True]
    assert response.results[1].error == "E2001"
    assert Order.objects.get(pk=first.pk).remarks == "gate code 1234"
    assert Order.objects.get(pk=third.pk).status == "ASSIGNED"


def test_results_keep_request_order(lifecycle_service, make_order):
    orders = [make_order() for _ in range(3)]

    response = _sync(
        lifecycle_service,
        *[_item("UPDATE", order.id, {"remarks": f"#{i}"}) for i, order in enumerate(orders)],
    )

    assert [result.entity_id for result in response.results] == [
        str(order.id) for order in orders
    ]


# ===========================================================================
# Error mapping
# ===========================================================================


def test_version_conflict_returns_server_state(lifecycle_service, make_order):
    order = make_order()

    response = _sync(
        lifecycle_service,
        _item("UPDATE", order.id, {"remarks": "offline edit"}, expected_version=4),
    )

    result = response.results[0]
    assert result.success is False
    assert result.error == "E2006"
    assert result.server_state["id"] == str(order.id)
    assert result.server_state["version"] == 1
    assert Order.objects.get(pk=order.pk).remarks == ""


def test_payload_version_is_overridden_by_item_version(lifecycle_service, make_order):
    order = make_order()

    response = _sync(
        lifecycle_service,
        _item(
            "UPDATE",
            order.id,
            {"remarks": "edit", "expectedVersion": 9},
            expected_version=1,
        ),
    )

    assert response.results[0].success is True


def test_unknown_operation(lifecycle_service, make_order):
    response = _sync(lifecycle_service, _item("MERGE", make_order().id))

    assert response.results[0].error == "E2030"


def test_invalid_payload(lifecycle_service, branch):
    response = _sync(
        lifecycle_service,
        _item("CREATE", "local-1", {"customerName": "Han Sora", "branchId": str(branch.id)}),
    )

    assert response.results[0].error == "E2000"
    assert response.results[0].message == "error.invalid_payload"


def test_domain_error_keeps_its_code(lifecycle_service, make_order):
    response = _sync(
        lifecycle_service,
        _item("UPDATE", make_order().id, {"status": "COMPLETED"}),
    )

    assert response.results[0].error == "E2001"
    assert response.results[0].message == "error.invalid_status_transition"


def test_unexpected_error_is_reported_as_internal(
    lifecycle_service, order_service, make_order, monkeypatch
):
    order = make_order()

    def explode(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(order_service, "remove_order", explode)

    response = _sync(lifecycle_service, _item("DELETE", order.id))

    assert response.results[0].error == "E5000"
    assert response.results[0].message == "error.internal"


# ===========================================================================
# Operations
# ===========================================================================


def test_create_returns_new_order_id(lifecycle_service, branch, today):
    payload = {
        "customerName": "Han Sora",
        "branchId": str(branch.id),
        "appointmentDate": today.isoformat(),
        "lines": [{"itemCode": "TV-55", "itemName": "Television", "quantity": 1}],
    }

    response = _sync(lifecycle_service, _item("CREATE", "local-1", payload))

    result = response.results[0]
    assert result.success is True
    created = Order.objects.get(pk=result.entity_id)
    assert created.customer_name == "Han Sora"


def test_delete_soft_deletes(lifecycle_service, make_order):
    order = make_order()

    response = _sync(lifecycle_service, _item("DELETE", order.id, expected_version=1))

    assert response.results[0].success is True
    assert not Order.objects.alive().filter(pk=order.pk).exists()
    assert Order.objects.dead().filter(pk=order.pk).exists()
