"""Order split use case.

One order becomes several child orders, one per (line, installer)
assignment.  The whole request is validated before anything is written:
every parent line must be fully distributed, no more and no less.  The
parent is then cancelled with reason ``SPLIT``.
"""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Any, Dict, List

import structlog

from modules.core.models import AuditAction
from modules.orders.constants import (
    REASON_SPLIT,
    SPLIT_SUFFIX_LENGTH,
    SPLITTABLE_STATUSES,
    OrderStatus,
)
from modules.orders.dtos import OrderSnapshotDTO, SplitResultDTO
from modules.orders.events import OrderSplit
from modules.orders.exceptions import (
    InstallerNotFound,
    InvalidOrderStatus,
    SplitQuantityMismatch,
)
from modules.orders.services import ORDERS_TABLE, BaseOrderService

if TYPE_CHECKING:
    from modules.core.clock import IClock
    from modules.core.repositories.interfaces import IAuditLogRepository
    from modules.core.transactions import ITransactionManager
    from modules.orders.dtos import SplitAssignmentDTO, SplitOrderDTO
    from modules.orders.models import Order, OrderLine
    from modules.orders.repositories.interfaces import IOrderRepository
    from modules.orders.state_machine import OrderStateMachine
    from modules.organization.repositories.interfaces import IInstallerRepository
    from modules.settlement.gate import SettlementLockGate
    from shared.domain.bus import IEventBus

logger = structlog.get_logger(__name__)


def split_order_no(parent_order_no: str) -> str:
    return f"{parent_order_no}-SPLIT-{secrets.token_hex(SPLIT_SUFFIX_LENGTH // 2).upper()}"


class OrderSplitService(BaseOrderService):
    def __init__(
        self,
        order_repository: IOrderRepository,
        installer_repository: IInstallerRepository,
        audit_repository: IAuditLogRepository,
        settlement_gate: SettlementLockGate,
        state_machine: OrderStateMachine,
        transactions: ITransactionManager,
        event_bus: IEventBus,
        clock: IClock,
    ) -> None:
        super().__init__(
            order_repository,
            audit_repository,
            settlement_gate,
            state_machine,
            transactions,
            event_bus,
            clock,
        )
        self._installer_repo = installer_repository

    def split_order(
        self, order_id: Any, dto: SplitOrderDTO, actor: str = ""
    ) -> SplitResultDTO:
        """Split ``order_id`` according to ``dto.splits``.

        Raises:
            OrderNotFound, SettlementLocked, VersionConflict (``dto.version``
            is always checked), InvalidOrderStatus (E2018),
            SplitQuantityMismatch (E2020), InstallerNotFound (E2025).
        """
        with self._tx.atomic():
            parent = self._load_for_update(order_id)
            self._ensure_writable(parent, dto.version)
            if parent.status not in SPLITTABLE_STATUSES:
                raise InvalidOrderStatus(
                    details={"status": parent.status, "operation": "split"}
                )

            lines = {str(line.id): line for line in self._order_repo.get_lines(parent.id)}
            self._validate_quantities(dto, lines)
            self._validate_installers(dto)

            children: List[Order] = []
            mapping: List[Dict[str, Any]] = []
            for split in dto.splits:
                line = lines[str(split.line_id)]
                for assignment in split.assignments:
                    child = self._create_child(parent, line, assignment, actor)
                    children.append(child)
                    mapping.append(
                        {
                            "childId": str(child.id),
                            "childOrderNo": child.order_no,
                            "lineId": str(line.id),
                            "itemCode": line.item_code,
                            "quantity": assignment.quantity,
                            "installerId": (
                                str(assignment.installer_id)
                                if assignment.installer_id
                                else None
                            ),
                            "installerName": assignment.installer_name,
                        }
                    )

            previous_status = parent.status
            parent.status = OrderStatus.CANCELLED
            self._order_repo.save_versioned(parent, ["status"])
            self._order_repo.add_history(
                order_id=parent.id,
                previous_status=previous_status,
                new_status=OrderStatus.CANCELLED,
                changed_by=actor,
                reason_code=REASON_SPLIT,
                notes=f"Split into {len(children)} orders",
            )
            self._audit_repo.record(
                ORDERS_TABLE,
                parent.id,
                AuditAction.SPLIT,
                diff={"previousStatus": previous_status, "children": mapping},
                actor=actor,
            )
            parent.add_domain_event(
                OrderSplit(aggregate_id=parent.id, child_count=len(children))
            )
            self._publish_on_commit(parent)

        logger.info(
            "order.split",
            order_id=str(parent.id),
            child_count=len(children),
            version=parent.version,
        )
        return SplitResultDTO(
            parent=OrderSnapshotDTO.from_entity(parent),
            children=[OrderSnapshotDTO.from_entity(child) for child in children],
        )

    @staticmethod
    def _validate_quantities(dto: SplitOrderDTO, lines: Dict[str, OrderLine]) -> None:
        requested = {str(split.line_id): split for split in dto.splits}

        unknown = sorted(set(requested) - set(lines))
        if unknown:
            raise SplitQuantityMismatch(details={"unknownLineIds": unknown})

        for line_id, line in lines.items():
            split = requested.get(line_id)
            assigned = (
                sum(assignment.quantity for assignment in split.assignments)
                if split
                else 0
            )
            if assigned != line.quantity:
                raise SplitQuantityMismatch(
                    details={
                        "lineId": line_id,
                        "expected": line.quantity,
                        "actual": assigned,
                    }
                )

    def _validate_installers(self, dto: SplitOrderDTO) -> None:
        for split in dto.splits:
            for assignment in split.assignments:
                installer_id = assignment.installer_id
                if installer_id and self._installer_repo.get_active(installer_id) is None:
                    raise InstallerNotFound(details={"installerId": str(installer_id)})

    def _create_child(
        self,
        parent: Order,
        line: OrderLine,
        assignment: SplitAssignmentDTO,
        actor: str,
    ) -> Order:
        status = (
            OrderStatus.ASSIGNED if assignment.installer_id else OrderStatus.UNASSIGNED
        )
        child = self._order_repo.create(
            {
                "order_no": split_order_no(parent.order_no),
                "customer_name": parent.customer_name,
                "customer_phone": parent.customer_phone,
                "address": parent.address,
                "vendor": parent.vendor,
                "branch_id": parent.branch_id,
                "partner_id": parent.partner_id,
                "installer_id": assignment.installer_id,
                "status": status,
                "appointment_date": parent.appointment_date,
                "appointment_time_window": parent.appointment_time_window,
                "promised_date": parent.promised_date,
                "remarks": parent.remarks,
            },
            [
                {
                    "item_code": line.item_code,
                    "item_name": line.item_name,
                    "quantity": assignment.quantity,
                    "weight": line.weight,
                }
            ],
        )
        self._order_repo.add_split_link(
            parent.id, child.id, line.id, assignment.quantity, actor
        )
        if status == OrderStatus.ASSIGNED:
            self._order_repo.add_history(
                order_id=child.id,
                previous_status=OrderStatus.UNASSIGNED,
                new_status=OrderStatus.ASSIGNED,
                changed_by=actor,
                reason_code=REASON_SPLIT,
                notes=f"Split from {parent.order_no}",
            )
        return child
