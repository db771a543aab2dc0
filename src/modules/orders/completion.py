"""Completion capture: serial numbers, waste pickups and the final status.

Field installers close a DISPATCHED order as COMPLETED or PARTIAL by
reporting the serial numbers they installed and the waste they took
away.  Waste can also be logged on its own afterwards, which is what
unlocks the COMPLETED -> COLLECTED transition.

A completed or partial order can later be amended: its serials (per
line) and/or its waste entries are replaced wholesale, with a reason kept
in the history and audit trail.

Waste codes run from ``P01`` to ``P21``.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, List, Sequence, Tuple

import structlog

from modules.core.models import AuditAction
from modules.orders.constants import (
    COMPLETION_STATUSES,
    REASON_AMEND,
    WASTE_CODE_PATTERN,
)
from modules.orders.dtos import (
    CompletionDetailsDTO,
    SerialSnapshotDTO,
    WastePickupSnapshotDTO,
)
from modules.orders.events import OrderCompleted, OrderStatusChanged
from modules.orders.exceptions import (
    CompletionOrderNotFound,
    InvalidOrderStatus,
    InvalidWasteCode,
    OrderLineNotFound,
)
from modules.orders.services import ORDERS_TABLE, BaseOrderService
from modules.orders.state_machine import TransitionContext

if TYPE_CHECKING:
    from modules.orders.dtos import (
        AmendCompletionDTO,
        CompleteOrderDTO,
        SerialCaptureDTO,
        WasteEntryDTO,
        WastePickupDTO,
    )
    from modules.orders.models import Order, OrderLine, WastePickup

logger = structlog.get_logger(__name__)

WASTE_PICKUPS_TABLE = "waste_pickups"
_WASTE_CODE_RE = re.compile(WASTE_CODE_PATTERN)


def is_valid_waste_code(code: str) -> bool:
    return bool(_WASTE_CODE_RE.match(code))


class CompletionService(BaseOrderService):
    def _load_order(self, order_id: Any) -> Order:
        order = self._order_repo.get_for_update(order_id)
        if order is None:
            raise CompletionOrderNotFound(details={"orderId": str(order_id)})
        return order

    @staticmethod
    def _validate_waste(entries: Sequence[WasteEntryDTO]) -> None:
        invalid = [entry.code for entry in entries if not is_valid_waste_code(entry.code)]
        if invalid:
            raise InvalidWasteCode(details={"codes": invalid})

    def _resolve_lines(
        self, order: Order, captures: Sequence[SerialCaptureDTO]
    ) -> List[Tuple[OrderLine, List[str]]]:
        resolved = []
        for capture in captures:
            line = self._order_repo.get_line(order.id, capture.line_id)
            if line is None:
                raise OrderLineNotFound(details={"lineId": str(capture.line_id)})
            resolved.append((line, capture.serials))
        return resolved

    def complete_order(
        self, order_id: Any, dto: CompleteOrderDTO, actor: str = ""
    ) -> Order:
        """Record serials and waste, then move the order to COMPLETED/PARTIAL.

        Raises:
            CompletionOrderNotFound (E3001), SettlementLocked, VersionConflict,
            InvalidWasteCode (E3002), InvalidTransition (E2001),
            OrderLineNotFound (E3003).
        """
        with self._tx.atomic():
            order = self._load_order(order_id)
            self._ensure_writable(order, dto.expected_version)
            self._validate_waste(dto.waste)
            self._validate_transition(
                order,
                dto.status,
                TransitionContext(
                    installer_id=order.installer_id,
                    appointment_date=order.appointment_date,
                    serials_captured=bool(dto.lines),
                    waste_pickup_logged=bool(dto.waste),
                    retry_count=order.absence_retry_count,
                ),
            )

            captures = self._resolve_lines(order, dto.lines)

            serial_count = 0
            for line, serials in captures:
                serial_count += len(self._order_repo.add_serials(line, serials, actor))
            for entry in dto.waste:
                self._order_repo.upsert_waste(order.id, entry.code, entry.quantity, actor)

            previous_status = order.status
            order.status = dto.status
            order.completed_at = self._clock.now()
            self._order_repo.save_versioned(order, ["status", "completed_at"])
            self._order_repo.add_history(
                order_id=order.id,
                previous_status=previous_status,
                new_status=order.status,
                changed_by=actor,
                notes=dto.notes,
            )
            self._audit_repo.record(
                ORDERS_TABLE,
                order.id,
                AuditAction.COMPLETE,
                diff={
                    "previousStatus": previous_status,
                    "status": order.status,
                    "serialCount": serial_count,
                    "waste": [entry.model_dump() for entry in dto.waste],
                },
                actor=actor,
            )
            order.add_domain_event(
                OrderStatusChanged(
                    aggregate_id=order.id,
                    previous_status=previous_status,
                    new_status=order.status,
                    version=order.version,
                )
            )
            order.add_domain_event(
                OrderCompleted(aggregate_id=order.id, status=order.status)
            )
            self._publish_on_commit(order)

        logger.info(
            "order.completed",
            order_id=str(order.id),
            status=order.status,
            serial_count=serial_count,
            version=order.version,
        )
        return order

    def log_waste_pickup(
        self, order_id: Any, dto: WastePickupDTO, actor: str = ""
    ) -> List[WastePickup]:
        """Upsert waste entries.  Does not change status or version."""
        with self._tx.atomic():
            order = self._load_order(order_id)
            self._settlement_gate.ensure_unlocked(order)
            self._validate_waste(dto.entries)

            pickups = [
                self._order_repo.upsert_waste(order.id, entry.code, entry.quantity, actor)
                for entry in dto.entries
            ]
            self._audit_repo.record(
                WASTE_PICKUPS_TABLE,
                order.id,
                AuditAction.CREATE,
                diff={"entries": [entry.model_dump() for entry in dto.entries]},
                actor=actor,
            )

        logger.info("order.waste_logged", order_id=str(order.id), entries=len(pickups))
        return pickups

    def get_completion_details(self, order_id: Any) -> CompletionDetailsDTO:
        order = self._order_repo.get_by_id(order_id)
        if order is None:
            raise CompletionOrderNotFound(details={"orderId": str(order_id)})

        return CompletionDetailsDTO(
            order_id=order.id,
            status=order.status,
            completed_at=order.completed_at,
            serials=[
                SerialSnapshotDTO(line_id=serial.line_id, serial=serial.serial)
                for serial in self._order_repo.get_serials(order.id)
            ],
            waste=[
                WastePickupSnapshotDTO(
                    code=pickup.code,
                    quantity=pickup.quantity,
                    collected_at=pickup.collected_at,
                    collected_by=pickup.collected_by,
                )
                for pickup in self._order_repo.get_waste(order.id)
            ],
        )

    def amend_completion(
        self, order_id: Any, dto: AmendCompletionDTO, actor: str = ""
    ) -> CompletionDetailsDTO:
        """Replace the serials of the given lines and/or all waste entries.

        Status and version stay as they are; a history row (reason code
        ``AMEND``) and an ``UPDATE`` audit entry record the correction.

        Raises:
            CompletionOrderNotFound (E3001), SettlementLocked (E2002),
            InvalidOrderStatus (E2018), InvalidWasteCode (E3002),
            OrderLineNotFound (E3003).
        """
        with self._tx.atomic():
            order = self._load_order(order_id)
            self._settlement_gate.ensure_unlocked(order)
            if order.status not in COMPLETION_STATUSES:
                raise InvalidOrderStatus(
                    details={"orderId": str(order.id), "status": order.status}
                )
            self._validate_waste(dto.waste)
            captures = self._resolve_lines(order, dto.lines)

            amendments = {}
            if captures:
                serial_count = 0
                for line, serials in captures:
                    serial_count += len(
                        self._order_repo.replace_serials(line, serials, actor)
                    )
                amendments["serials"] = {"lines": len(captures), "count": serial_count}
            if dto.waste:
                pickups = self._order_repo.replace_waste(
                    order.id,
                    [(entry.code, entry.quantity) for entry in dto.waste],
                    actor,
                )
                amendments["waste"] = {"count": len(pickups)}

            self._order_repo.add_history(
                order_id=order.id,
                previous_status=order.status,
                new_status=order.status,
                changed_by=actor,
                reason_code=REASON_AMEND,
                notes=f"Completion amended: {dto.reason}",
            )
            self._audit_repo.record(
                ORDERS_TABLE,
                order.id,
                AuditAction.UPDATE,
                diff={
                    "reason": dto.reason,
                    "notes": dto.notes,
                    "amendments": amendments,
                },
                actor=actor,
            )

        logger.info(
            "order.completion_amended",
            order_id=str(order.id),
            amended=sorted(amendments),
        )
        return self.get_completion_details(order.id)
