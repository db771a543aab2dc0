"""Settlement period service (Use Cases).

Manual lock/unlock of periods and the read side used by dashboards.
Automatic weekly locking lives in ``scheduler``; the per-order check
lives in ``gate``.
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Any, List, Optional

import structlog

from modules.core.models import AuditAction
from modules.settlement.constants import PERIOD_HISTORY_DEFAULT_LIMIT
from modules.settlement.dtos import PeriodHistoryDTO, SettlementPeriodDTO
from modules.settlement.exceptions import (
    PeriodAlreadyLocked,
    PeriodAlreadyOpen,
    SettlementPeriodNotFound,
)

if TYPE_CHECKING:
    from modules.core.clock import IClock
    from modules.core.repositories.interfaces import IAuditLogRepository
    from modules.core.transactions import ITransactionManager
    from modules.settlement.models import SettlementPeriod
    from modules.settlement.repositories.interfaces import ISettlementPeriodRepository

logger = structlog.get_logger(__name__)


class SettlementService:
    def __init__(
        self,
        period_repository: ISettlementPeriodRepository,
        audit_repository: IAuditLogRepository,
        clock: IClock,
        transactions: ITransactionManager,
    ) -> None:
        self._period_repo = period_repository
        self._audit_repo = audit_repository
        self._clock = clock
        self._tx = transactions

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_current_period(self, branch_id: Any) -> Optional[SettlementPeriodDTO]:
        period = self._period_repo.latest(branch_id)
        return SettlementPeriodDTO.from_entity(period) if period else None

    def get_period_by_id(self, period_id: Any) -> SettlementPeriodDTO:
        return SettlementPeriodDTO.from_entity(self._get_or_raise(period_id))

    def get_period_history(
        self,
        branch_id: Any,
        limit: int = PERIOD_HISTORY_DEFAULT_LIMIT,
        offset: int = 0,
    ) -> PeriodHistoryDTO:
        periods = self._period_repo.history(branch_id, limit, offset)
        return PeriodHistoryDTO(
            data=[SettlementPeriodDTO.from_entity(p) for p in periods],
            total_count=self._period_repo.count(branch_id),
        )

    def get_locked_periods(self, branch_id: Any) -> List[SettlementPeriodDTO]:
        return [
            SettlementPeriodDTO.from_entity(p)
            for p in self._period_repo.locked_for_branch(branch_id)
        ]

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def get_or_create_period(
        self, branch_id: Any, period_start: date, period_end: date
    ) -> SettlementPeriodDTO:
        period = self._period_repo.get_or_create(branch_id, period_start, period_end)
        return SettlementPeriodDTO.from_entity(period)

    def lock_period(self, period_id: Any, actor: str) -> SettlementPeriodDTO:
        """OPEN -> LOCKED.

        Raises:
            SettlementPeriodNotFound: no such period.
            PeriodAlreadyLocked: the period is already LOCKED.
        """
        log = logger.bind(period_id=str(period_id), actor=actor)
        with self._tx.atomic():
            period = self._get_or_raise(period_id)
            if period.is_locked:
                raise PeriodAlreadyLocked(details={"periodId": str(period_id)})
            self._period_repo.mark_locked(period, actor, self._clock.now())
            self._audit_repo.record(
                table_name="settlement_periods",
                record_id=period.id,
                action=AuditAction.LOCK,
                diff={"status": period.status},
                actor=actor,
            )
        log.info("settlement.period_locked")
        return SettlementPeriodDTO.from_entity(period)

    def unlock_period(self, period_id: Any, actor: str) -> SettlementPeriodDTO:
        """LOCKED -> OPEN.

        Raises:
            SettlementPeriodNotFound: no such period.
            PeriodAlreadyOpen: the period is already OPEN.
        """
        log = logger.bind(period_id=str(period_id), actor=actor)
        with self._tx.atomic():
            period = self._get_or_raise(period_id)
            if not period.is_locked:
                raise PeriodAlreadyOpen(details={"periodId": str(period_id)})
            self._period_repo.mark_open(period, actor, self._clock.now())
            self._audit_repo.record(
                table_name="settlement_periods",
                record_id=period.id,
                action=AuditAction.UNLOCK,
                diff={"status": period.status},
                actor=actor,
            )
        log.info("settlement.period_unlocked")
        return SettlementPeriodDTO.from_entity(period)

    def _get_or_raise(self, period_id: Any) -> SettlementPeriod:
        period = self._period_repo.get_by_id(period_id)
        if period is None:
            raise SettlementPeriodNotFound(details={"periodId": str(period_id)})
        return period
