"""Cancellation, revert, order events and offline batch sync.

Cancel and revert are symmetrical: cancelling records the status the
order left in a ``CancellationRecord``; reverting restores it (or an
explicit target) and removes the record.  Batch sync replays operations
queued by offline clients, one transaction per item.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, List

import structlog
from pydantic import ValidationError

from modules.core.exceptions import DomainError, ErrorCode
from modules.core.models import AuditAction
from modules.orders.concurrency import ensure_version
from modules.orders.constants import (
    CANCELLABLE_STATUSES,
    EVENT_ALLOWED_STATUSES,
    FORBIDDEN_REVERT_TARGETS,
    REASON_CANCEL,
    REASON_REVERT,
    OrderStatus,
    SyncOperationType,
)
from modules.orders.dtos import (
    AddOrderEventResultDTO,
    BatchSyncResponseDTO,
    BatchSyncResultDTO,
    CreateOrderDTO,
    UpdateOrderDTO,
)
from modules.orders.events import OrderCancelled, OrderReverted
from modules.orders.exceptions import (
    AlreadyCancelled,
    InvalidOrderStatus,
    InvalidRevertTarget,
    NoCancellationRecord,
    RevertWindowExceeded,
    UnknownSyncOperation,
    VersionConflict,
)
from modules.orders.services import ORDERS_TABLE, BaseOrderService, audit_state

if TYPE_CHECKING:
    from modules.core.clock import IClock
    from modules.core.repositories.interfaces import IAuditLogRepository
    from modules.core.transactions import ITransactionManager
    from modules.orders.dtos import (
        AddOrderEventDTO,
        BatchSyncItemDTO,
        BatchSyncRequestDTO,
        CancelOrderDTO,
        RevertOrderDTO,
    )
    from modules.orders.models import Order
    from modules.orders.repositories.interfaces import IOrderRepository
    from modules.orders.services import OrderService
    from modules.orders.state_machine import OrderStateMachine
    from modules.settlement.gate import SettlementLockGate
    from shared.domain.bus import IEventBus

logger = structlog.get_logger(__name__)

ORDER_EVENTS_TABLE = "order_events"


class OrderLifecycleService(BaseOrderService):
    def __init__(
        self,
        order_repository: IOrderRepository,
        audit_repository: IAuditLogRepository,
        settlement_gate: SettlementLockGate,
        state_machine: OrderStateMachine,
        transactions: ITransactionManager,
        event_bus: IEventBus,
        clock: IClock,
        order_service: OrderService,
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
        self._order_service = order_service

    # ------------------------------------------------------------------
    # Cancel / revert
    # ------------------------------------------------------------------

    def cancel_order(self, order_id: Any, dto: CancelOrderDTO, actor: str = "") -> Order:
        """Cancel an order and remember the status it left.

        Raises:
            OrderNotFound, SettlementLocked, AlreadyCancelled (E2019),
            VersionConflict, InvalidOrderStatus (E2018).
        """
        with self._tx.atomic():
            order = self._load_for_update(order_id)
            log = logger.bind(order_id=str(order.id), current_status=order.status)

            self._settlement_gate.ensure_unlocked(order)
            if self._order_repo.get_cancellation(order.id) is not None:
                log.warning("order.already_cancelled")
                raise AlreadyCancelled(details={"orderId": str(order.id)})
            ensure_version(order, dto.expected_version)
            if order.status not in CANCELLABLE_STATUSES:
                log.warning("order.cancel_not_allowed")
                raise InvalidOrderStatus(
                    details={"status": order.status, "operation": "cancel"}
                )

            previous_status = order.status
            order.status = OrderStatus.CANCELLED
            self._order_repo.save_versioned(order, ["status"])
            self._order_repo.create_cancellation(
                order.id,
                reason=dto.reason,
                note=dto.note,
                cancelled_by=actor,
                previous_status=previous_status,
            )
            self._order_repo.add_history(
                order_id=order.id,
                previous_status=previous_status,
                new_status=OrderStatus.CANCELLED,
                changed_by=actor,
                reason_code=REASON_CANCEL,
                notes=dto.note,
            )
            self._audit_repo.record(
                ORDERS_TABLE,
                order.id,
                AuditAction.CANCEL,
                diff={
                    "previousStatus": previous_status,
                    "reason": dto.reason,
                    "note": dto.note,
                    "version": order.version,
                },
                actor=actor,
            )
            order.add_domain_event(
                OrderCancelled(
                    aggregate_id=order.id,
                    previous_status=previous_status,
                    reason=dto.reason,
                )
            )
            self._publish_on_commit(order)

        log.info("order.cancelled", version=order.version)
        return order

    def revert_order(self, order_id: Any, dto: RevertOrderDTO, actor: str = "") -> Order:
        """Undo a cancellation.

        The order returns to ``dto.target_status`` or, by default, the
        status recorded at cancellation.  Orders that had been completed
        may only be reverted inside the revert window.

        Raises:
            OrderNotFound, SettlementLocked, VersionConflict,
            InvalidOrderStatus (E2018), NoCancellationRecord (E2022),
            InvalidRevertTarget (E2023), RevertWindowExceeded (E2003).
        """
        with self._tx.atomic():
            order = self._load_for_update(order_id)
            self._ensure_writable(order, dto.expected_version)

            if order.status != OrderStatus.CANCELLED:
                raise InvalidOrderStatus(
                    details={"status": order.status, "operation": "revert"}
                )
            record = self._order_repo.get_cancellation(order.id)
            if record is None:
                raise NoCancellationRecord(details={"orderId": str(order.id)})

            target = dto.target_status or record.previous_status
            if target in FORBIDDEN_REVERT_TARGETS:
                raise InvalidRevertTarget(details={"targetStatus": target})

            if order.completed_at is not None:
                result = self._state_machine.can_revert(
                    order.completed_at,
                    order.promised_date,
                    dto.new_appointment_date,
                )
                if not result.valid:
                    raise RevertWindowExceeded(
                        message=result.error, details=result.details
                    )

            fields = ["status"]
            if (
                dto.new_appointment_date
                and dto.new_appointment_date != order.appointment_date
            ):
                self._order_repo.add_appointment_change(
                    order.id,
                    old_date=order.appointment_date,
                    new_date=dto.new_appointment_date,
                    changed_by=actor,
                    reason=dto.reason,
                )
                order.appointment_date = dto.new_appointment_date
                fields.append("appointment_date")

            order.status = target
            self._order_repo.save_versioned(order, fields)
            self._order_repo.delete_cancellation(order.id)
            self._order_repo.add_history(
                order_id=order.id,
                previous_status=OrderStatus.CANCELLED,
                new_status=target,
                changed_by=actor,
                reason_code=REASON_REVERT,
                notes=dto.reason,
            )
            self._audit_repo.record(
                ORDERS_TABLE,
                order.id,
                AuditAction.REVERT,
                diff={
                    "restoredStatus": target,
                    "reason": dto.reason,
                    "current": audit_state(order),
                },
                actor=actor,
            )
            order.add_domain_event(
                OrderReverted(aggregate_id=order.id, restored_status=target)
            )
            self._publish_on_commit(order)

        logger.info(
            "order.reverted",
            order_id=str(order.id),
            restored_status=target,
            version=order.version,
        )
        return order

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def add_event(
        self, order_id: Any, dto: AddOrderEventDTO, actor: str = ""
    ) -> AddOrderEventResultDTO:
        """Attach a remark/issue/request/note.  The order row is not written."""
        with self._tx.atomic():
            order = self._load_for_update(order_id)
            self._ensure_writable(order, dto.expected_version)
            if order.status not in EVENT_ALLOWED_STATUSES:
                raise InvalidOrderStatus(
                    details={"status": order.status, "operation": "add_event"}
                )

            event = self._order_repo.add_event(
                order.id, event_type=dto.event_type, note=dto.note, created_by=actor
            )
            total = self._order_repo.count_events(order.id)
            self._audit_repo.record(
                ORDER_EVENTS_TABLE,
                event.id,
                AuditAction.CREATE,
                diff={
                    "orderId": str(order.id),
                    "eventType": dto.event_type,
                    "note": dto.note,
                },
                actor=actor,
            )

        logger.info(
            "order.event_added",
            order_id=str(order.id),
            event_type=dto.event_type,
            total_events=total,
        )
        return AddOrderEventResultDTO(
            event_id=event.id, event_type=dto.event_type, total_events=total
        )

    # ------------------------------------------------------------------
    # Offline batch sync
    # ------------------------------------------------------------------

    def process_batch_sync(
        self, request: BatchSyncRequestDTO, actor: str = ""
    ) -> BatchSyncResponseDTO:
        """Replay offline operations in order, isolating failures per item.

        Every item runs in its own transaction, so a failed item leaves no
        trace and never blocks the items after it.
        """
        results: List[BatchSyncResultDTO] = []
        for item in request.items:
            results.append(self._sync_item(item, actor))

        success_count = sum(1 for result in results if result.success)
        logger.info(
            "order.batch_sync_processed",
            total=len(results),
            succeeded=success_count,
            failed=len(results) - success_count,
        )
        return BatchSyncResponseDTO(
            total_processed=len(results),
            success_count=success_count,
            failure_count=len(results) - success_count,
            results=results,
        )

    def _sync_item(self, item: BatchSyncItemDTO, actor: str) -> BatchSyncResultDTO:
        log = logger.bind(entity_id=item.entity_id, operation=item.type)
        try:
            entity_id = self._apply_sync_operation(item, actor)
        except VersionConflict as exc:
            log.info("order.batch_sync_conflict", current=exc.current_version)
            return BatchSyncResultDTO(
                entity_id=item.entity_id,
                success=False,
                error=ErrorCode.SYNC_VERSION_CONFLICT.value,
                message=exc.message,
                server_state=exc.server_state,
            )
        except DomainError as exc:
            log.info("order.batch_sync_rejected", error=exc.code.value)
            return BatchSyncResultDTO(
                entity_id=item.entity_id,
                success=False,
                error=exc.code.value,
                message=exc.message,
            )
        except ValidationError as exc:
            log.info("order.batch_sync_invalid_payload", errors=exc.error_count())
            return BatchSyncResultDTO(
                entity_id=item.entity_id,
                success=False,
                error=ErrorCode.INVALID_SYNC_PAYLOAD.value,
                message="error.invalid_payload",
            )
        except Exception:
            log.exception("order.batch_sync_item_failed")
            return BatchSyncResultDTO(
                entity_id=item.entity_id,
                success=False,
                error=ErrorCode.INTERNAL_ERROR.value,
                message="error.internal",
            )
        return BatchSyncResultDTO(entity_id=entity_id, success=True)

    def _apply_sync_operation(self, item: BatchSyncItemDTO, actor: str) -> str:
        """Run one operation; returns the id the client should track."""
        if item.type == SyncOperationType.CREATE:
            order = self._order_service.create_order(
                CreateOrderDTO.model_validate(item.payload), actor
            )
            return str(order.id)

        if item.type == SyncOperationType.UPDATE:
            dto = UpdateOrderDTO.model_validate(item.payload)
            if item.expected_version is not None:
                dto = dto.model_copy(update={"expected_version": item.expected_version})
            self._order_service.update_order(item.entity_id, dto, actor)
            return item.entity_id

        if item.type == SyncOperationType.DELETE:
            self._order_service.remove_order(
                item.entity_id, expected_version=item.expected_version, actor=actor
            )
            return item.entity_id

        raise UnknownSyncOperation(details={"type": item.type})
