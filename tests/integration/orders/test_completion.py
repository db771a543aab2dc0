"""Integration tests for completion capture.

Covers:
- Completing a dispatched order records serials, waste and completed_at.
- Partial completion.
- E3001 unknown order, E3002 bad waste code, E3003 unknown line.
- Waste logging upserts by code and leaves the version alone.
- Amending a completed order replaces serials and waste with a reason.
- Completion details reflect what was captured.
"""

from __future__ import annotations

from uuid import uuid4

import pytest
from pydantic import ValidationError

from modules.core.models import AuditLog
from modules.orders.completion import is_valid_waste_code
from modules.orders.constants import OrderStatus
from modules.orders.dtos import (
    AmendCompletionDTO,
    CompleteOrderDTO,
    UpdateOrderDTO,
    WastePickupDTO,
)
from modules.orders.exceptions import (
    CompletionOrderNotFound,
    InvalidOrderStatus,
    InvalidTransition,
    InvalidWasteCode,
    OrderLineNotFound,
)
from modules.orders.models import Order, OrderStatusHistory, SerialNumber, WastePickup
from modules.settlement.exceptions import SettlementLocked

pytestmark = pytest.mark.integration


@pytest.fixture()
def dispatched(make_order, move_to, installer):
    return move_to(make_order(), OrderStatus.DISPATCHED, installer=installer)


def _complete(order, status="COMPLETED", waste=None, serials=("SN-1", "SN-2"), line_id=None):
    line_id = line_id or order.lines.all()[0].id
    return CompleteOrderDTO(
        status=status,
        lines=[{"line_id": line_id, "serials": list(serials)}],
        waste=waste or [],
    )


@pytest.mark.parametrize(
    ("code", "valid"),
    [("P01", True), ("P09", True), ("P10", True), ("P21", True),
     ("P00", False), ("P22", False), ("P1", False), ("X01", False), ("p01", False)],
)
def test_waste_code_format(code, valid):
    assert is_valid_waste_code(code) is valid


# ===========================================================================
# Complete
# ===========================================================================


class TestCompleteOrder:
    def test_records_serials_and_waste(
        self, completion_service, dispatched, clock, event_recorder
    ):
        event_recorder.events.clear()

        order = completion_service.complete_order(
            dispatched.id,
            _complete(dispatched, waste=[{"code": "P03", "quantity": 1}]),
            actor="tech-1",
        )

        assert order.status == OrderStatus.COMPLETED
        assert order.version == 2
        history = list(OrderStatusHistory.objects.filter(order=order))
        assert len(history) == 2
        assert (history[-1].previous_status, history[-1].new_status) == (
            "DISPATCHED",
            "COMPLETED",
        )
        stored = Order.objects.get(pk=order.pk)
        assert stored.completed_at == clock.now()
        assert sorted(SerialNumber.objects.values_list("serial", flat=True)) == [
            "SN-1",
            "SN-2",
        ]
        assert WastePickup.objects.get(order=order).code == "P03"
        audit = AuditLog.objects.get(record_id=str(order.id), action="COMPLETE")
        assert audit.diff["serialCount"] == 2
        assert event_recorder.names() == ["OrderStatusChanged", "OrderCompleted"]

    def test_partial_completion(self, completion_service, dispatched):
        order = completion_service.complete_order(
            dispatched.id, _complete(dispatched, status="PARTIAL", serials=["SN-1"])
        )

        assert order.status == OrderStatus.PARTIAL
        assert order.completed_at is not None

    def test_unknown_order(self, completion_service):
        with pytest.raises(CompletionOrderNotFound) as exc_info:
            completion_service.complete_order(
                uuid4(),
                CompleteOrderDTO(lines=[{"line_id": uuid4(), "serials": ["SN-1"]}]),
            )
        assert exc_info.value.code.value == "E3001"

    def test_invalid_waste_code(self, completion_service, dispatched):
        with pytest.raises(InvalidWasteCode) as exc_info:
            completion_service.complete_order(
                dispatched.id,
                _complete(
                    dispatched,
                    waste=[{"code": "P05", "quantity": 1}, {"code": "P99", "quantity": 1}],
                ),
            )

        assert exc_info.value.code.value == "E3002"
        assert exc_info.value.details == {"codes": ["P99"]}
        assert not WastePickup.objects.exists()

    def test_unknown_line(self, completion_service, dispatched):
        with pytest.raises(OrderLineNotFound) as exc_info:
            completion_service.complete_order(
                dispatched.id, _complete(dispatched, line_id=uuid4())
            )

        assert exc_info.value.code.value == "E3003"
        assert not SerialNumber.objects.exists()
        assert Order.objects.get(pk=dispatched.pk).status == OrderStatus.DISPATCHED

    def test_requires_dispatched_order(self, completion_service, make_order):
        order = make_order()

        with pytest.raises(InvalidTransition):
            completion_service.complete_order(order.id, _complete(order))

    def test_settlement_lock(
        self, completion_service, dispatched, lock_settlement_week, today
    ):
        lock_settlement_week(today)

        with pytest.raises(SettlementLocked):
            completion_service.complete_order(dispatched.id, _complete(dispatched))


# ===========================================================================
# Waste pickup
# ===========================================================================


class TestWastePickup:
    @pytest.fixture()
    def completed(self, completion_service, dispatched):
        return completion_service.complete_order(dispatched.id, _complete(dispatched))

    def test_upserts_by_code(self, completion_service, completed):
        completion_service.log_waste_pickup(
            completed.id, WastePickupDTO(entries=[{"code": "P01", "quantity": 1}])
        )
        completion_service.log_waste_pickup(
            completed.id,
            WastePickupDTO(
                entries=[{"code": "P01", "quantity": 3}, {"code": "P07", "quantity": 1}]
            ),
            actor="tech-2",
        )

        pickups = {p.code: p for p in WastePickup.objects.filter(order=completed)}
        assert set(pickups) == {"P01", "P07"}
        assert pickups["P01"].quantity == 3
        assert pickups["P01"].collected_by == "tech-2"

    def test_does_not_bump_version(self, completion_service, completed):
        completion_service.log_waste_pickup(
            completed.id, WastePickupDTO(entries=[{"code": "P02", "quantity": 2}])
        )

        assert Order.objects.get(pk=completed.pk).version == completed.version

    def test_rejects_bad_code(self, completion_service, completed):
        with pytest.raises(InvalidWasteCode):
            completion_service.log_waste_pickup(
                completed.id, WastePickupDTO(entries=[{"code": "P30", "quantity": 1}])
            )

    def test_unlocks_collection(self, completion_service, order_service, completed):
        completion_service.log_waste_pickup(
            completed.id, WastePickupDTO(entries=[{"code": "P11", "quantity": 1}])
        )

        collected = order_service.update_order(
            completed.id, UpdateOrderDTO(status="COLLECTED", waste_pickup_logged=True)
        )

        assert collected.status == OrderStatus.COLLECTED


# ===========================================================================
# Amendments
# ===========================================================================


class TestAmendCompletion:
    @pytest.fixture()
    def completed(self, completion_service, dispatched):
        return completion_service.complete_order(
            dispatched.id,
            _complete(
                dispatched,
                waste=[{"code": "P01", "quantity": 1}, {"code": "P02", "quantity": 2}],
            ),
            actor="tech-1",
        )

    def test_replaces_serials_and_waste(self, completion_service, completed):
        line_id = completed.lines.all()[0].id

        details = completion_service.amend_completion(
            completed.id,
            AmendCompletionDTO(
                lines=[{"line_id": line_id, "serials": ["SN-9"]}],
                waste=[{"code": "P05", "quantity": 4}],
                reason="Serial typo on site",
            ),
            actor="office-1",
        )

        assert [serial.serial for serial in details.serials] == ["SN-9"]
        assert [(w.code, w.quantity, w.collected_by) for w in details.waste] == [
            ("P05", 4, "office-1")
        ]
        stored = Order.objects.get(pk=completed.pk)
        assert stored.status == OrderStatus.COMPLETED
        assert stored.version == completed.version
        last = OrderStatusHistory.objects.filter(order=completed).last()
        assert (last.previous_status, last.new_status, last.reason_code) == (
            "COMPLETED",
            "COMPLETED",
            "AMEND",
        )
        assert last.notes == "Completion amended: Serial typo on site"
        audit = AuditLog.objects.get(record_id=str(completed.id), action="UPDATE")
        assert audit.actor == "office-1"
        assert audit.diff["reason"] == "Serial typo on site"
        assert audit.diff["amendments"] == {
            "serials": {"lines": 1, "count": 1},
            "waste": {"count": 1},
        }

    def test_waste_only_keeps_serials(self, completion_service, completed):
        details = completion_service.amend_completion(
            completed.id,
            AmendCompletionDTO(
                waste=[{"code": "P07", "quantity": 1}], reason="Wrong waste code"
            ),
        )

        assert sorted(serial.serial for serial in details.serials) == ["SN-1", "SN-2"]
        assert [w.code for w in details.waste] == ["P07"]

    def test_partial_order_can_be_amended(
        self, completion_service, dispatched
    ):
        partial = completion_service.complete_order(
            dispatched.id, _complete(dispatched, status="PARTIAL", serials=["SN-1"])
        )

        details = completion_service.amend_completion(
            partial.id,
            AmendCompletionDTO(
                lines=[{"line_id": partial.lines.all()[0].id, "serials": ["SN-1", "SN-3"]}],
                reason="Second unit installed",
            ),
        )

        assert details.status == "PARTIAL"
        assert sorted(serial.serial for serial in details.serials) == ["SN-1", "SN-3"]

    def test_requires_completed_order(self, completion_service, dispatched):
        with pytest.raises(InvalidOrderStatus) as exc_info:
            completion_service.amend_completion(
                dispatched.id,
                AmendCompletionDTO(
                    waste=[{"code": "P01", "quantity": 1}], reason="Too early here"
                ),
            )

        assert exc_info.value.code.value == "E2018"
        assert not WastePickup.objects.exists()

    def test_settlement_lock(
        self, completion_service, completed, lock_settlement_week, today
    ):
        lock_settlement_week(today)

        with pytest.raises(SettlementLocked) as exc_info:
            completion_service.amend_completion(
                completed.id,
                AmendCompletionDTO(
                    waste=[{"code": "P03", "quantity": 1}], reason="After settlement"
                ),
            )

        assert exc_info.value.code.value == "E2002"
        assert set(
            WastePickup.objects.filter(order=completed).values_list("code", flat=True)
        ) == {"P01", "P02"}

    def test_invalid_waste_code(self, completion_service, completed):
        with pytest.raises(InvalidWasteCode):
            completion_service.amend_completion(
                completed.id,
                AmendCompletionDTO(
                    waste=[{"code": "P40", "quantity": 1}], reason="Bad code here"
                ),
            )

        assert WastePickup.objects.filter(order=completed).count() == 2

    def test_unknown_line(self, completion_service, completed):
        with pytest.raises(OrderLineNotFound):
            completion_service.amend_completion(
                completed.id,
                AmendCompletionDTO(
                    lines=[{"line_id": uuid4(), "serials": ["SN-5"]}],
                    reason="Wrong line id",
                ),
            )

        assert SerialNumber.objects.count() == 2

    def test_unknown_order(self, completion_service):
        with pytest.raises(CompletionOrderNotFound):
            completion_service.amend_completion(
                uuid4(),
                AmendCompletionDTO(
                    waste=[{"code": "P01", "quantity": 1}], reason="No such order"
                ),
            )

    @pytest.mark.parametrize(
        "payload",
        [
            {"reason": "Nothing to change"},
            {"waste": [{"code": "P01", "quantity": 1}], "reason": "shrt"},
        ],
    )
    def test_rejects_empty_or_unexplained_amendment(self, payload):
        with pytest.raises(ValidationError):
            AmendCompletionDTO(**payload)


def test_completion_details(completion_service, dispatched):
    completion_service.complete_order(
        dispatched.id,
        _complete(dispatched, waste=[{"code": "P04", "quantity": 2}]),
        actor="tech-1",
    )

    details = completion_service.get_completion_details(dispatched.id)

    assert details.status == "COMPLETED"
    assert details.completed_at is not None
    assert sorted(serial.serial for serial in details.serials) == ["SN-1", "SN-2"]
    assert [(w.code, w.quantity, w.collected_by) for w in details.waste] == [
        ("P04", 2, "tech-1")
    ]


def test_completion_details_unknown_order(completion_service):
    with pytest.raises(CompletionOrderNotFound):
        completion_service.get_completion_details(uuid4())
