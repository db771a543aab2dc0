"""Order DTOs for the Service Layer.

Framework-agnostic data transfer objects using Pydantic v2.  DTOs are
immutable (``frozen=True``).  Field names are snake_case in Python and
camelCase on the wire (``alias_generator=to_camel``); both spellings are
accepted on input so offline clients can send their payloads verbatim.

Input:
- ``CreateOrderDTO`` / ``OrderLineInputDTO``: order intake.
- ``UpdateOrderDTO``: field updates, status changes and assignment.
- ``CancelOrderDTO`` / ``RevertOrderDTO`` / ``ReassignOrderDTO``.
- ``AddOrderEventDTO``: remarks, issues, requests and notes.
- ``SplitOrderDTO``: per-line installer assignments.
- ``BulkStatusDTO``: one status applied to many orders.
- ``BatchSyncRequestDTO``: offline operations to reconcile.
- ``CompleteOrderDTO`` / ``WastePickupDTO``: completion capture.
- ``AmendCompletionDTO``: corrections to a completed order.

Output:
- ``OrderSnapshotDTO``: full server state of one order.
- ``BatchSyncResponseDTO`` / ``BulkStatusResponseDTO``: per-item outcomes.
- ``SplitResultDTO`` / ``CompletionDetailsDTO``.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from modules.orders.constants import (
    BATCH_SYNC_MAX_ITEMS,
    COMPLETION_STATUSES,
    CancellationReason,
    OrderEventType,
    OrderStatus,
)

if TYPE_CHECKING:
    from modules.orders.models import Order


class ContractDTO(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


def _validate_status(value: Optional[str]) -> Optional[str]:
    if value is not None and value not in OrderStatus.values:
        raise ValueError(f"Unknown order status: {value}.")
    return value


# ---------------------------------------------------------------------------
# Input DTOs
# ---------------------------------------------------------------------------


class OrderLineInputDTO(ContractDTO):
    item_code: str = Field(min_length=1)
    item_name: str = Field(min_length=1)
    quantity: int
    weight: Optional[Decimal] = None

    @field_validator("quantity")
    @classmethod
    def quantity_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Quantity must be at least 1.")
        return v


class CreateOrderDTO(ContractDTO):
    """Immutable DTO for order intake.

    ``order_no`` is optional; the model generates one when omitted.
    ``promised_date`` defaults to ``appointment_date``.
    """

    order_no: Optional[str] = None
    customer_name: str = Field(min_length=1)
    customer_phone: str = ""
    address: Dict[str, Any] = Field(default_factory=dict)
    vendor: str = ""
    branch_id: UUID
    partner_id: Optional[UUID] = None
    appointment_date: date
    appointment_time_window: str = ""
    promised_date: Optional[date] = None
    remarks: str = ""
    lines: List[OrderLineInputDTO]

    @field_validator("lines")
    @classmethod
    def lines_must_not_be_empty(
        cls, v: List[OrderLineInputDTO]
    ) -> List[OrderLineInputDTO]:
        if not v:
            raise ValueError("Order must have at least one line.")
        return v


class UpdateOrderDTO(ContractDTO):
    """Partial update.  Only fields that are set are applied.

    ``serials_captured`` / ``waste_pickup_logged`` / ``reason_code`` feed
    the transition guards when ``status`` changes.
    """

    status: Optional[str] = None
    installer_id: Optional[UUID] = None
    partner_id: Optional[UUID] = None
    appointment_date: Optional[date] = None
    appointment_time_window: Optional[str] = None
    appointment_change_reason: Optional[str] = None
    remarks: Optional[str] = None
    reason_code: Optional[str] = None
    notes: Optional[str] = None
    expected_version: Optional[int] = None
    serials_captured: bool = False
    waste_pickup_logged: bool = False

    @field_validator("status")
    @classmethod
    def status_must_exist(cls, v: Optional[str]) -> Optional[str]:
        return _validate_status(v)


class CancelOrderDTO(ContractDTO):
    reason: CancellationReason
    note: str = Field(default="", max_length=1000)
    expected_version: Optional[int] = None


class RevertOrderDTO(ContractDTO):
    """Undo a cancellation.

    ``target_status`` defaults to the status recorded at cancellation.
    ``new_appointment_date`` reschedules the order at the same time.
    """

    target_status: Optional[str] = None
    reason: str = Field(min_length=5, max_length=1000)
    new_appointment_date: Optional[date] = None
    expected_version: Optional[int] = None

    @field_validator("target_status")
    @classmethod
    def target_status_must_exist(cls, v: Optional[str]) -> Optional[str]:
        return _validate_status(v)


class ReassignOrderDTO(ContractDTO):
    new_installer_id: UUID
    new_branch_id: Optional[UUID] = None
    new_partner_id: Optional[UUID] = None
    reason: str = Field(min_length=5, max_length=500)
    expected_version: Optional[int] = None


class AddOrderEventDTO(ContractDTO):
    event_type: OrderEventType
    note: str = Field(min_length=1, max_length=1000)
    expected_version: Optional[int] = None


class SplitAssignmentDTO(ContractDTO):
    installer_id: Optional[UUID] = None
    installer_name: str = ""
    quantity: int

    @field_validator("quantity")
    @classmethod
    def quantity_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Quantity must be at least 1.")
        return v


class SplitLineDTO(ContractDTO):
    line_id: UUID
    assignments: List[SplitAssignmentDTO] = Field(min_length=1)


class SplitOrderDTO(ContractDTO):
    """Split request.  ``version`` is mandatory: splitting is never blind."""

    splits: List[SplitLineDTO] = Field(min_length=1)
    version: int

    @model_validator(mode="after")
    def no_duplicate_lines(self):
        line_ids = [split.line_id for split in self.splits]
        if len(line_ids) != len(set(line_ids)):
            raise ValueError("Each line may appear only once in a split.")
        return self


class BulkStatusDTO(ContractDTO):
    order_ids: List[UUID] = Field(min_length=1)
    status: str
    installer_id: Optional[UUID] = None
    reason_code: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("status")
    @classmethod
    def status_must_exist(cls, v: Optional[str]) -> Optional[str]:
        return _validate_status(v)


class BatchSyncItemDTO(ContractDTO):
    """One offline operation.

    ``type`` is kept as a plain string: an unknown operation fails its own
    item, not the whole batch.
    """

    type: str
    entity_id: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    client_timestamp: float = Field(ge=0)
    expected_version: Optional[int] = None


class BatchSyncRequestDTO(ContractDTO):
    items: List[BatchSyncItemDTO] = Field(min_length=1, max_length=BATCH_SYNC_MAX_ITEMS)


class SerialCaptureDTO(ContractDTO):
    line_id: UUID
    serials: List[str] = Field(min_length=1)


class WasteEntryDTO(ContractDTO):
    code: str
    quantity: int = Field(ge=1)


class CompleteOrderDTO(ContractDTO):
    status: str = OrderStatus.COMPLETED.value
    lines: List[SerialCaptureDTO] = Field(min_length=1)
    waste: List[WasteEntryDTO] = Field(default_factory=list)
    notes: str = ""
    expected_version: Optional[int] = None

    @field_validator("status")
    @classmethod
    def status_must_be_completion(cls, v: str) -> str:
        if v not in COMPLETION_STATUSES:
            raise ValueError("Completion status must be COMPLETED or PARTIAL.")
        return v


class WastePickupDTO(ContractDTO):
    entries: List[WasteEntryDTO] = Field(min_length=1)


class AmendCompletionDTO(ContractDTO):
    """Replacement serials (per line) and/or waste entries for a completed order."""

    lines: List[SerialCaptureDTO] = Field(default_factory=list)
    waste: List[WasteEntryDTO] = Field(default_factory=list)
    reason: str = Field(min_length=5, max_length=500)
    notes: str = Field(default="", max_length=1000)

    @model_validator(mode="after")
    def something_to_amend(self):
        if not self.lines and not self.waste:
            raise ValueError("Provide serials or waste entries to amend.")
        return self


# ---------------------------------------------------------------------------
# Output DTOs
# ---------------------------------------------------------------------------


class OrderLineSnapshotDTO(ContractDTO):
    id: UUID
    item_code: str
    item_name: str
    quantity: int


class OrderSnapshotDTO(ContractDTO):
    """Full server-side state of an order, handed back on conflicts."""

    id: UUID
    order_no: str
    status: str
    version: int
    customer_name: str
    branch_id: UUID
    partner_id: Optional[UUID]
    installer_id: Optional[UUID]
    appointment_date: date
    appointment_time_window: str
    promised_date: date
    remarks: str
    absence_retry_count: int
    completed_at: Optional[datetime]
    deleted_at: Optional[datetime]
    updated_at: datetime
    lines: List[OrderLineSnapshotDTO]

    @classmethod
    def from_entity(cls, order: Order) -> OrderSnapshotDTO:
        lines = [
            OrderLineSnapshotDTO(
                id=line.id,
                item_code=line.item_code,
                item_name=line.item_name,
                quantity=line.quantity,
            )
            for line in order.lines.all()
        ]
        return cls(
            id=order.id,
            order_no=order.order_no,
            status=order.status,
            version=order.version,
            customer_name=order.customer_name,
            branch_id=order.branch_id,
            partner_id=order.partner_id,
            installer_id=order.installer_id,
            appointment_date=order.appointment_date,
            appointment_time_window=order.appointment_time_window,
            promised_date=order.promised_date,
            remarks=order.remarks,
            absence_retry_count=order.absence_retry_count,
            completed_at=order.completed_at,
            deleted_at=order.deleted_at,
            updated_at=order.updated_at,
            lines=lines,
        )


class AddOrderEventResultDTO(ContractDTO):
    event_id: UUID
    event_type: str
    total_events: int


class SplitResultDTO(ContractDTO):
    parent: OrderSnapshotDTO
    children: List[OrderSnapshotDTO]


class ItemResultDTO(ContractDTO):
    success: bool
    error: Optional[str] = None
    message: Optional[str] = None


class BatchSyncResultDTO(ItemResultDTO):
    entity_id: str
    server_state: Optional[Dict[str, Any]] = None


class BatchSyncResponseDTO(ContractDTO):
    total_processed: int
    success_count: int
    failure_count: int
    results: List[BatchSyncResultDTO]


class BulkStatusResultDTO(ItemResultDTO):
    order_id: UUID
    version: Optional[int] = None


class BulkStatusResponseDTO(ContractDTO):
    total_processed: int
    success_count: int
    failure_count: int
    results: List[BulkStatusResultDTO]


class SerialSnapshotDTO(ContractDTO):
    line_id: UUID
    serial: str


class WastePickupSnapshotDTO(ContractDTO):
    code: str
    quantity: int
    collected_at: datetime
    collected_by: str


class CompletionDetailsDTO(ContractDTO):
    order_id: UUID
    status: str
    completed_at: Optional[datetime]
    serials: List[SerialSnapshotDTO]
    waste: List[WastePickupSnapshotDTO]
