"""Settlement period repository interface."""

from __future__ import annotations

from abc import abstractmethod
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, List, Optional

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from modules.settlement.models import SettlementPeriod


class ISettlementPeriodRepository(IRepository["SettlementPeriod"]):
    @abstractmethod
    def find_locked_covering(self, branch_id: Any, day: date) -> Optional[SettlementPeriod]:
        """LOCKED period of ``branch_id`` whose range contains ``day``."""

    @abstractmethod
    def get_or_create(
        self, branch_id: Any, period_start: date, period_end: date
    ) -> SettlementPeriod:
        """Existing period for the week, or a new OPEN one."""

    @abstractmethod
    def latest(self, branch_id: Any) -> Optional[SettlementPeriod]:
        """Most recent period of a branch (any status)."""

    @abstractmethod
    def history(self, branch_id: Any, limit: int, offset: int = 0) -> List[SettlementPeriod]:
        """Periods of a branch, newest first."""

    @abstractmethod
    def count(self, branch_id: Any) -> int: ...

    @abstractmethod
    def locked_for_branch(self, branch_id: Any) -> List[SettlementPeriod]: ...

    @abstractmethod
    def mark_locked(
        self, period: SettlementPeriod, actor: str, at: datetime
    ) -> SettlementPeriod: ...

    @abstractmethod
    def mark_open(
        self, period: SettlementPeriod, actor: str, at: datetime
    ) -> SettlementPeriod: ...
