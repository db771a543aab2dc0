"""Unit tests for order DTO validation and wire naming."""

from __future__ import annotations

from datetime import date
from uuid import uuid4

import pytest
from pydantic import ValidationError

from modules.orders.dtos import (
    AddOrderEventDTO,
    BatchSyncItemDTO,
    BatchSyncRequestDTO,
    BatchSyncResponseDTO,
    BatchSyncResultDTO,
    CancelOrderDTO,
    CompleteOrderDTO,
    CreateOrderDTO,
    OrderSnapshotDTO,
    RevertOrderDTO,
    SplitOrderDTO,
    UpdateOrderDTO,
)

pytestmark = pytest.mark.unit


# ===========================================================================
# Input
# ===========================================================================


class TestCreateOrderDTO:
    def test_accepts_camel_case_payload(self):
        branch_id = uuid4()
        dto = CreateOrderDTO.model_validate(
            {
                "customerName": "Choi Yuna",
                "branchId": str(branch_id),
                "appointmentDate": "2026-10-22",
                "lines": [{"itemCode": "WM-9", "itemName": "Washer", "quantity": 1}],
            }
        )

        assert dto.branch_id == branch_id
        assert dto.appointment_date == date(2026, 10, 22)
        assert dto.lines[0].item_code == "WM-9"

    def test_requires_lines(self):
        with pytest.raises(ValidationError):
            CreateOrderDTO(
                customer_name="Choi Yuna",
                branch_id=uuid4(),
                appointment_date=date(2026, 10, 22),
                lines=[],
            )

    def test_line_quantity_must_be_positive(self):
        with pytest.raises(ValidationError, match="Quantity must be at least 1"):
            CreateOrderDTO(
                customer_name="Choi Yuna",
                branch_id=uuid4(),
                appointment_date=date(2026, 10, 22),
                lines=[{"item_code": "X", "item_name": "X", "quantity": 0}],
            )

    def test_is_frozen(self):
        dto = CreateOrderDTO(
            customer_name="Choi Yuna",
            branch_id=uuid4(),
            appointment_date=date(2026, 10, 22),
            lines=[{"item_code": "X", "item_name": "X", "quantity": 1}],
        )
        with pytest.raises(ValidationError):
            dto.customer_name = "Other"


class TestStatusFields:
    def test_update_rejects_unknown_status(self):
        with pytest.raises(ValidationError, match="Unknown order status"):
            UpdateOrderDTO(status="SHIPPED")

    def test_revert_rejects_unknown_target(self):
        with pytest.raises(ValidationError):
            RevertOrderDTO(target_status="LOST", reason="customer called back")

    def test_complete_only_accepts_completion_statuses(self):
        with pytest.raises(ValidationError, match="COMPLETED or PARTIAL"):
            CompleteOrderDTO(status="COLLECTED", lines=[{"lineId": uuid4(), "serials": ["S1"]}])


class TestReasonsAndNotes:
    def test_cancel_reason_must_be_known(self):
        with pytest.raises(ValidationError):
            CancelOrderDTO(reason="BORED")

    def test_cancel_note_limit(self):
        with pytest.raises(ValidationError):
            CancelOrderDTO(reason="OTHER", note="x" * 1001)

    def test_revert_reason_minimum_length(self):
        with pytest.raises(ValidationError):
            RevertOrderDTO(reason="oops")

    def test_event_note_required(self):
        with pytest.raises(ValidationError):
            AddOrderEventDTO(event_type="NOTE", note="")


class TestSplitOrderDTO:
    def test_version_is_required(self):
        with pytest.raises(ValidationError):
            SplitOrderDTO(
                splits=[{"lineId": uuid4(), "assignments": [{"quantity": 1}]}]
            )

    def test_rejects_duplicate_lines(self):
        line_id = uuid4()
        with pytest.raises(ValidationError, match="only once"):
            SplitOrderDTO(
                version=1,
                splits=[
                    {"lineId": line_id, "assignments": [{"quantity": 1}]},
                    {"lineId": line_id, "assignments": [{"quantity": 1}]},
                ],
            )

    def test_assignment_quantity_positive(self):
        with pytest.raises(ValidationError):
            SplitOrderDTO(
                version=1,
                splits=[{"lineId": uuid4(), "assignments": [{"quantity": 0}]}],
            )


class TestBatchSyncRequest:
    def _item(self, **overrides):
        item = {
            "type": "UPDATE",
            "entityId": str(uuid4()),
            "payload": {},
            "clientTimestamp": 1_760_000_000_000,
        }
        item.update(overrides)
        return item

    def test_unknown_type_is_accepted_at_request_level(self):
        request = BatchSyncRequestDTO.model_validate({"items": [self._item(type="MERGE")]})
        assert request.items[0].type == "MERGE"

    def test_limits_items_to_one_hundred(self):
        BatchSyncRequestDTO.model_validate({"items": [self._item() for _ in range(100)]})
        with pytest.raises(ValidationError):
            BatchSyncRequestDTO.model_validate(
                {"items": [self._item() for _ in range(101)]}
            )

    def test_requires_at_least_one_item(self):
        with pytest.raises(ValidationError):
            BatchSyncRequestDTO(items=[])

    def test_rejects_negative_client_timestamp(self):
        with pytest.raises(ValidationError):
            BatchSyncItemDTO.model_validate(self._item(clientTimestamp=-1))


# ===========================================================================
# Output
# ===========================================================================


def test_batch_response_serializes_camel_case():
    response = BatchSyncResponseDTO(
        total_processed=1,
        success_count=0,
        failure_count=1,
        results=[
            BatchSyncResultDTO(
                entity_id="e-1",
                success=False,
                error="E2006",
                message="error.version_mismatch",
                server_state={"version": 3},
            )
        ],
    )

    payload = response.model_dump(by_alias=True)

    assert payload["totalProcessed"] == 1
    assert payload["failureCount"] == 1
    assert payload["results"][0]["entityId"] == "e-1"
    assert payload["results"][0]["serverState"] == {"version": 3}


def test_snapshot_from_entity(make_order):
    order = make_order()

    snapshot = OrderSnapshotDTO.from_entity(order).model_dump(mode="json", by_alias=True)

    assert snapshot["id"] == str(order.id)
    assert snapshot["orderNo"] == order.order_no
    assert snapshot["status"] == "UNASSIGNED"
    assert snapshot["version"] == 1
    assert snapshot["lines"][0]["itemCode"] == "AC-100"
