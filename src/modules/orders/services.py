"""Order service layer (Use Cases).

Orchestrates order intake, field/status updates, assignment, reassignment,
removal and bulk status changes.  The service defines the unit-of-work
boundary; every write goes through the same pipeline:

1. (assignment only) take the ``order:assign:<id>`` distributed lock.
2. Open a transaction and load the order row for update.
3. Settlement gate: a LOCKED week rejects the write (E2002).
4. Version check against ``expected_version`` (E2017).
5. Operation checks and state machine validation (E2001 / E2018 / ...).
6. Conditional write with ``version + 1``, history row, audit row.
7. Domain events are published after commit.

``BaseOrderService`` holds the steps shared with the lifecycle, split and
completion services.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional

import structlog

from modules.core.clock import IClock
from modules.core.exceptions import DomainError, ErrorCode
from modules.core.locks import DEFAULT_TTL_MS, LockRetryOptions
from modules.core.models import AuditAction
from modules.orders.concurrency import ensure_version
from modules.orders.constants import (
    ASSIGN_LOCK_PREFIX,
    COMPLETION_STATUSES,
    REASON_REASSIGN,
    REASSIGNABLE_STATUSES,
    OrderStatus,
)
from modules.orders.dtos import (
    BulkStatusResponseDTO,
    BulkStatusResultDTO,
    UpdateOrderDTO,
)
from modules.orders.events import (
    OrderAssigned,
    OrderCompleted,
    OrderCreated,
    OrderStatusChanged,
)
from modules.orders.exceptions import (
    AssignmentInProgress,
    BranchNotFound,
    InstallerNotFound,
    InvalidOrderStatus,
    InvalidTransition,
    OrderNotFound,
    PartnerNotFound,
)
from modules.orders.state_machine import TransitionContext

if TYPE_CHECKING:
    from modules.core.locks import DistributedLock
    from modules.core.repositories.interfaces import IAuditLogRepository
    from modules.core.transactions import ITransactionManager
    from modules.orders.dtos import BulkStatusDTO, CreateOrderDTO, ReassignOrderDTO
    from modules.orders.models import Order
    from modules.orders.repositories.interfaces import IOrderRepository
    from modules.orders.state_machine import OrderStateMachine
    from modules.organization.repositories.interfaces import (
        IBranchRepository,
        IInstallerRepository,
        IPartnerRepository,
    )
    from modules.settlement.gate import SettlementLockGate
    from shared.domain.bus import IEventBus

logger = structlog.get_logger(__name__)

ORDERS_TABLE = "orders"


def audit_state(order: Order) -> Dict[str, Any]:
    """Fields captured in audit diffs."""
    return {
        "status": order.status,
        "version": order.version,
        "installerId": str(order.installer_id) if order.installer_id else None,
        "partnerId": str(order.partner_id) if order.partner_id else None,
        "branchId": str(order.branch_id),
        "appointmentDate": order.appointment_date,
        "appointmentTimeWindow": order.appointment_time_window,
        "remarks": order.remarks,
        "absenceRetryCount": order.absence_retry_count,
    }


class BaseOrderService:
    """Shared plumbing for services that mutate orders."""

    def __init__(
        self,
        order_repository: IOrderRepository,
        audit_repository: IAuditLogRepository,
        settlement_gate: SettlementLockGate,
        state_machine: OrderStateMachine,
        transactions: ITransactionManager,
        event_bus: IEventBus,
        clock: IClock,
    ) -> None:
        self._order_repo = order_repository
        self._audit_repo = audit_repository
        self._settlement_gate = settlement_gate
        self._state_machine = state_machine
        self._tx = transactions
        self._event_bus = event_bus
        self._clock = clock

    def _load_for_update(self, order_id: Any) -> Order:
        order = self._order_repo.get_for_update(order_id)
        if order is None:
            raise OrderNotFound(details={"orderId": str(order_id)})
        return order

    def _ensure_writable(self, order: Order, expected_version: Optional[int]) -> None:
        """Settlement gate first, then the version check."""
        self._settlement_gate.ensure_unlocked(order)
        ensure_version(order, expected_version)

    def _validate_transition(
        self, order: Order, new_status: str, context: TransitionContext
    ) -> None:
        result = self._state_machine.validate_transition(
            order.status, new_status, context
        )
        if not result.valid:
            logger.warning(
                "order.invalid_transition",
                order_id=str(order.id),
                current_status=order.status,
                new_status=new_status,
                error=result.error,
            )
            raise InvalidTransition(message=result.error, details=result.details)

    def _publish_on_commit(self, order: Order) -> None:
        events = order.domain_events
        order.clear_domain_events()
        if not events:
            return

        def _publish() -> None:
            for event in events:
                self._event_bus.publish(event)

        self._tx.on_commit(_publish)


class OrderService(BaseOrderService):
    """Application service for Order use-cases.

    Receives repositories, the lock and infrastructure seams via
    constructor injection (DIP).
    """

    def __init__(
        self,
        order_repository: IOrderRepository,
        branch_repository: IBranchRepository,
        partner_repository: IPartnerRepository,
        installer_repository: IInstallerRepository,
        audit_repository: IAuditLogRepository,
        settlement_gate: SettlementLockGate,
        state_machine: OrderStateMachine,
        lock: DistributedLock,
        transactions: ITransactionManager,
        event_bus: IEventBus,
        clock: IClock,
        assign_lock_ttl_ms: int = DEFAULT_TTL_MS,
        lock_retry: Optional[LockRetryOptions] = None,
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
        self._branch_repo = branch_repository
        self._partner_repo = partner_repository
        self._installer_repo = installer_repository
        self._lock = lock
        self._assign_lock_ttl_ms = assign_lock_ttl_ms
        self._lock_retry = lock_retry or LockRetryOptions()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_order(self, dto: CreateOrderDTO, actor: str = "") -> Order:
        """Persist a new UNASSIGNED order with its lines.

        Raises:
            BranchNotFound: the branch does not exist.
            PartnerNotFound: a partner was given but does not exist.
        """
        log = logger.bind(branch_id=str(dto.branch_id), actor=actor)
        log.info("order.creation_started")

        if not self._branch_repo.exists(dto.branch_id):
            raise BranchNotFound(details={"branchId": str(dto.branch_id)})
        if dto.partner_id and not self._partner_repo.exists(dto.partner_id):
            raise PartnerNotFound(details={"partnerId": str(dto.partner_id)})

        data: Dict[str, Any] = {
            "customer_name": dto.customer_name,
            "customer_phone": dto.customer_phone,
            "address": dto.address,
            "vendor": dto.vendor,
            "branch_id": dto.branch_id,
            "partner_id": dto.partner_id,
            "appointment_date": dto.appointment_date,
            "appointment_time_window": dto.appointment_time_window,
            "promised_date": dto.promised_date or dto.appointment_date,
            "remarks": dto.remarks,
        }
        if dto.order_no:
            data["order_no"] = dto.order_no
        lines = [line.model_dump() for line in dto.lines]

        with self._tx.atomic():
            order = self._order_repo.create(data, lines)
            self._order_repo.add_history(
                order_id=order.id,
                previous_status=None,
                new_status=order.status,
                changed_by=actor,
                notes="Order created",
            )
            self._audit_repo.record(
                ORDERS_TABLE,
                order.id,
                AuditAction.CREATE,
                diff={"current": audit_state(order), "lineCount": len(lines)},
                actor=actor,
            )
            order.add_domain_event(OrderCreated(aggregate_id=order.id))
            self._publish_on_commit(order)

        log.info("order.created", order_id=str(order.id), order_no=order.order_no)
        return order

    def update_order(self, order_id: Any, dto: UpdateOrderDTO, actor: str = "") -> Order:
        """Apply a partial update, optionally changing status.

        Moving an order to ASSIGNED runs under the per-order assignment
        lock; a second assigner that cannot get the lock within the retry
        budget gets ``AssignmentInProgress`` before any read happens.

        Raises:
            AssignmentInProgress: the assignment lock is held elsewhere.
            OrderNotFound: order does not exist or was removed.
            SettlementLocked: the appointment week is settled.
            VersionConflict: ``expected_version`` is stale.
            InstallerNotFound / PartnerNotFound: bad references.
            InvalidTransition: the status change is not allowed.
        """
        if dto.status == OrderStatus.ASSIGNED:
            with self._lock.locked(
                f"{ASSIGN_LOCK_PREFIX}{order_id}",
                self._assign_lock_ttl_ms,
                retry=self._lock_retry,
                error=AssignmentInProgress,
            ):
                return self._apply_update(order_id, dto, actor)
        return self._apply_update(order_id, dto, actor)

    def _apply_update(self, order_id: Any, dto: UpdateOrderDTO, actor: str) -> Order:
        with self._tx.atomic():
            order = self._load_for_update(order_id)
            self._ensure_writable(order, dto.expected_version)

            if dto.installer_id and self._installer_repo.get_active(dto.installer_id) is None:
                raise InstallerNotFound(details={"installerId": str(dto.installer_id)})
            if dto.partner_id and not self._partner_repo.exists(dto.partner_id):
                raise PartnerNotFound(details={"partnerId": str(dto.partner_id)})

            log = logger.bind(order_id=str(order.id), actor=actor)
            previous = audit_state(order)
            previous_status = order.status
            fields: List[str] = []

            status_changed = dto.status is not None and dto.status != order.status
            if status_changed:
                context = TransitionContext(
                    installer_id=dto.installer_id or order.installer_id,
                    appointment_date=order.appointment_date,
                    serials_captured=dto.serials_captured,
                    reason_code=dto.reason_code,
                    waste_pickup_logged=dto.waste_pickup_logged,
                    retry_count=order.absence_retry_count,
                )
                self._validate_transition(order, dto.status, context)
                order.status = dto.status
                fields.append("status")

                if dto.status == OrderStatus.ABSENT:
                    order.absence_retry_count += 1
                    fields.append("absence_retry_count")
                    if order.absence_retry_count >= order.max_absence_retries:
                        log.warning(
                            "order.absence_retries_exhausted",
                            retry_count=order.absence_retry_count,
                            max_retries=order.max_absence_retries,
                        )
                if dto.status in COMPLETION_STATUSES:
                    order.completed_at = self._clock.now()
                    fields.append("completed_at")

            if dto.installer_id and dto.installer_id != order.installer_id:
                order.installer_id = dto.installer_id
                fields.append("installer_id")
            if dto.partner_id and dto.partner_id != order.partner_id:
                order.partner_id = dto.partner_id
                fields.append("partner_id")
            if dto.appointment_date and dto.appointment_date != order.appointment_date:
                self._order_repo.add_appointment_change(
                    order.id,
                    old_date=order.appointment_date,
                    new_date=dto.appointment_date,
                    changed_by=actor,
                    reason=dto.appointment_change_reason or "",
                )
                order.appointment_date = dto.appointment_date
                fields.append("appointment_date")
            if dto.appointment_time_window is not None:
                order.appointment_time_window = dto.appointment_time_window
                fields.append("appointment_time_window")
            if dto.remarks is not None:
                order.remarks = dto.remarks
                fields.append("remarks")

            self._order_repo.save_versioned(order, fields)

            if status_changed:
                self._order_repo.add_history(
                    order_id=order.id,
                    previous_status=previous_status,
                    new_status=order.status,
                    changed_by=actor,
                    reason_code=dto.reason_code,
                    notes=dto.notes,
                )
                order.add_domain_event(
                    OrderStatusChanged(
                        aggregate_id=order.id,
                        previous_status=previous_status,
                        new_status=order.status,
                        version=order.version,
                    )
                )
                if order.status == OrderStatus.ASSIGNED:
                    order.add_domain_event(
                        OrderAssigned(
                            aggregate_id=order.id,
                            installer_id=str(order.installer_id),
                            version=order.version,
                        )
                    )
                if order.status in COMPLETION_STATUSES:
                    order.add_domain_event(
                        OrderCompleted(aggregate_id=order.id, status=order.status)
                    )

            self._audit_repo.record(
                ORDERS_TABLE,
                order.id,
                AuditAction.UPDATE,
                diff={
                    "previous": previous,
                    "current": audit_state(order),
                    "changes": fields,
                },
                actor=actor,
            )
            self._publish_on_commit(order)

        log.info(
            "order.updated",
            previous_status=previous_status,
            new_status=order.status,
            version=order.version,
        )
        return order

    def remove_order(
        self, order_id: Any, expected_version: Optional[int] = None, actor: str = ""
    ) -> Order:
        """Soft delete.  The row stays for history and audit."""
        with self._tx.atomic():
            order = self._load_for_update(order_id)
            self._ensure_writable(order, expected_version)
            previous = audit_state(order)
            self._order_repo.soft_delete(order)
            self._audit_repo.record(
                ORDERS_TABLE,
                order.id,
                AuditAction.DELETE,
                diff={"previous": previous, "deletedAt": order.deleted_at},
                actor=actor,
            )

        logger.info("order.removed", order_id=str(order.id), actor=actor)
        return order

    def reassign_order(
        self, order_id: Any, dto: ReassignOrderDTO, actor: str = ""
    ) -> Order:
        """Move an in-flight order to another installer (and branch/partner).

        Status is unchanged; a history row with reason ``REASSIGN`` records
        the hand-over.  Shares the assignment lock with ``update_order``.
        """
        with self._lock.locked(
            f"{ASSIGN_LOCK_PREFIX}{order_id}",
            self._assign_lock_ttl_ms,
            retry=self._lock_retry,
            error=AssignmentInProgress,
        ):
            with self._tx.atomic():
                order = self._load_for_update(order_id)
                self._ensure_writable(order, dto.expected_version)

                if order.status not in REASSIGNABLE_STATUSES:
                    raise InvalidOrderStatus(
                        details={"status": order.status, "operation": "reassign"}
                    )
                if self._installer_repo.get_active(dto.new_installer_id) is None:
                    raise InstallerNotFound(
                        details={"installerId": str(dto.new_installer_id)}
                    )
                if dto.new_branch_id and not self._branch_repo.exists(dto.new_branch_id):
                    raise BranchNotFound(details={"branchId": str(dto.new_branch_id)})
                if dto.new_partner_id and not self._partner_repo.exists(
                    dto.new_partner_id
                ):
                    raise PartnerNotFound(
                        details={"partnerId": str(dto.new_partner_id)}
                    )

                previous = audit_state(order)
                fields = ["installer_id"]
                order.installer_id = dto.new_installer_id
                if dto.new_branch_id:
                    order.branch_id = dto.new_branch_id
                    fields.append("branch_id")
                if dto.new_partner_id:
                    order.partner_id = dto.new_partner_id
                    fields.append("partner_id")

                self._order_repo.save_versioned(order, fields)
                self._order_repo.add_history(
                    order_id=order.id,
                    previous_status=order.status,
                    new_status=order.status,
                    changed_by=actor,
                    reason_code=REASON_REASSIGN,
                    notes=dto.reason,
                )
                self._audit_repo.record(
                    ORDERS_TABLE,
                    order.id,
                    AuditAction.REASSIGN,
                    diff={
                        "previous": previous,
                        "current": audit_state(order),
                        "reason": dto.reason,
                    },
                    actor=actor,
                )
                order.add_domain_event(
                    OrderAssigned(
                        aggregate_id=order.id,
                        installer_id=str(order.installer_id),
                        version=order.version,
                    )
                )
                self._publish_on_commit(order)

        logger.info(
            "order.reassigned",
            order_id=str(order.id),
            installer_id=str(order.installer_id),
            version=order.version,
        )
        return order

    def bulk_status_update(
        self, dto: BulkStatusDTO, actor: str = ""
    ) -> BulkStatusResponseDTO:
        """Apply one status to many orders, one at a time.

        Each order runs through ``update_order`` in its own transaction; a
        failure is reported for that order and the rest carry on.
        """
        results: List[BulkStatusResultDTO] = []
        update = UpdateOrderDTO(
            status=dto.status,
            installer_id=dto.installer_id,
            reason_code=dto.reason_code,
            notes=dto.notes,
        )

        for order_id in dto.order_ids:
            try:
                order = self.update_order(order_id, update, actor)
            except DomainError as exc:
                results.append(
                    BulkStatusResultDTO(
                        order_id=order_id,
                        success=False,
                        error=exc.code.value,
                        message=exc.message,
                    )
                )
            except Exception:
                logger.exception("order.bulk_status_item_failed", order_id=str(order_id))
                results.append(
                    BulkStatusResultDTO(
                        order_id=order_id,
                        success=False,
                        error=ErrorCode.INTERNAL_ERROR.value,
                        message="error.internal",
                    )
                )
            else:
                results.append(
                    BulkStatusResultDTO(
                        order_id=order_id, success=True, version=order.version
                    )
                )

        success_count = sum(1 for result in results if result.success)
        logger.info(
            "order.bulk_status_processed",
            status=dto.status,
            total=len(results),
            succeeded=success_count,
        )
        return BulkStatusResponseDTO(
            total_processed=len(results),
            success_count=success_count,
            failure_count=len(results) - success_count,
            results=results,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_order(self, order_id: Any) -> Order:
        """Retrieve a single live order by ID.

        Raises:
            OrderNotFound: if the order does not exist.
        """
        order = self._order_repo.get_by_id(order_id)
        if order is None:
            raise OrderNotFound(details={"orderId": str(order_id)})
        return order

    def list_orders(self, filters: Optional[Dict[str, Any]] = None) -> List[Order]:
        return self._order_repo.list(filters)

    def get_available_transitions(self, order_id: Any) -> List[str]:
        return self._state_machine.get_available_transitions(
            self.get_order(order_id).status
        )
