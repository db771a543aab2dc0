"""Event handlers for Orders domain events.

Downstream delivery (push notifications, dashboards) is outside this
service; handlers record the hand-off in the structured log.
"""

from __future__ import annotations

import structlog

from modules.orders.events import (
    OrderAssigned,
    OrderCancelled,
    OrderCompleted,
    OrderCreated,
    OrderReverted,
    OrderSplit,
    OrderStatusChanged,
)
from shared.domain.bus import IEventHandler

logger = structlog.get_logger(__name__)


class OrderCreatedHandler(IEventHandler[OrderCreated]):
    def handle(self, event: OrderCreated) -> None:
        logger.info("order.event.created", order_id=str(event.aggregate_id))


class OrderStatusChangedHandler(IEventHandler[OrderStatusChanged]):
    def handle(self, event: OrderStatusChanged) -> None:
        logger.info(
            "order.event.status_changed",
            order_id=str(event.aggregate_id),
            previous_status=event.previous_status,
            new_status=event.new_status,
            version=event.version,
        )


class OrderAssignedHandler(IEventHandler[OrderAssigned]):
    def handle(self, event: OrderAssigned) -> None:
        logger.info(
            "order.event.assigned",
            order_id=str(event.aggregate_id),
            installer_id=event.installer_id,
        )


class OrderCancelledHandler(IEventHandler[OrderCancelled]):
    def handle(self, event: OrderCancelled) -> None:
        logger.info(
            "order.event.cancelled",
            order_id=str(event.aggregate_id),
            reason=event.reason,
        )


class OrderRevertedHandler(IEventHandler[OrderReverted]):
    def handle(self, event: OrderReverted) -> None:
        logger.info(
            "order.event.reverted",
            order_id=str(event.aggregate_id),
            restored_status=event.restored_status,
        )


class OrderSplitHandler(IEventHandler[OrderSplit]):
    def handle(self, event: OrderSplit) -> None:
        logger.info(
            "order.event.split",
            order_id=str(event.aggregate_id),
            child_count=event.child_count,
        )


class OrderCompletedHandler(IEventHandler[OrderCompleted]):
    def handle(self, event: OrderCompleted) -> None:
        logger.info(
            "order.event.completed",
            order_id=str(event.aggregate_id),
            status=event.status,
        )


order_created_handler = OrderCreatedHandler()
order_status_changed_handler = OrderStatusChangedHandler()
order_assigned_handler = OrderAssignedHandler()
order_cancelled_handler = OrderCancelledHandler()
order_reverted_handler = OrderRevertedHandler()
order_split_handler = OrderSplitHandler()
order_completed_handler = OrderCompletedHandler()
