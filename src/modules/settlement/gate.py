"""Settlement lock gate.

Consulted by every order-mutating operation, after the row is loaded and
before the version check: an order whose ``appointment_date`` falls in a
LOCKED settlement period of its branch accepts no writes.
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Any, Optional

import structlog

from modules.settlement.exceptions import SettlementLocked

if TYPE_CHECKING:
    from modules.orders.models import Order
    from modules.orders.repositories.interfaces import IOrderRepository
    from modules.settlement.repositories.interfaces import ISettlementPeriodRepository

logger = structlog.get_logger(__name__)


class SettlementLockGate:
    def __init__(
        self,
        period_repository: ISettlementPeriodRepository,
        order_repository: Optional[IOrderRepository] = None,
    ) -> None:
        self._period_repo = period_repository
        self._order_repo = order_repository

    def is_locked(self, branch_id: Any, day: date) -> bool:
        return self._period_repo.find_locked_covering(branch_id, day) is not None

    def is_order_locked(self, order_id: Any) -> bool:
        """Look the order up by id and check its settlement week.

        Raises:
            OrderNotFound: the order does not exist.
        """
        from modules.orders.exceptions import OrderNotFound

        order = self._order_repo.get_by_id(order_id) if self._order_repo else None
        if order is None:
            raise OrderNotFound(details={"orderId": str(order_id)})
        return self.is_locked(order.branch_id, order.appointment_date)

    def ensure_unlocked(self, order: Order) -> None:
        """Raise ``SettlementLocked`` if the order's week is locked."""
        period = self._period_repo.find_locked_covering(
            order.branch_id, order.appointment_date
        )
        if period is None:
            return

        logger.warning(
            "order.settlement_locked",
            order_id=str(order.id),
            branch_id=str(order.branch_id),
            period_start=period.period_start.isoformat(),
        )
        raise SettlementLocked(
            details={
                "branchId": str(order.branch_id),
                "periodStart": period.period_start.isoformat(),
                "periodEnd": period.period_end.isoformat(),
            }
        )
