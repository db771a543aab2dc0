"""Weekly settlement lock schedule.

- Monday 09:00: the previous week (Monday..Sunday) is locked for every
  branch.  The ``SettlementPeriod`` row is created if needed and marked
  LOCKED; a Redis marker is written that expires at the next Friday
  17:00; the branch KPI cache is invalidated.
- Friday 17:00: the marker for the previous week is removed and the
  periods the Monday job locked are reopened, so branches can make late
  corrections.  Periods locked by a person stay LOCKED until they are
  reopened through ``SettlementService.unlock_period``.

Both jobs are driven by Celery beat (see ``CELERY_BEAT_SCHEDULE``).
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

import structlog
from django.utils import timezone
from pydantic import ValidationError

from modules.core.models import AuditAction
from modules.settlement.constants import (
    DEFAULT_UNLOCK_HOUR,
    SYSTEM_ACTOR,
    SettlementStatus,
    UNLOCK_WEEKDAY,
)
from modules.settlement.dtos import SettlementMarkerDTO
from modules.settlement.markers import kpi_pattern, settlement_key

if TYPE_CHECKING:
    from modules.core.clock import IClock
    from modules.core.repositories.interfaces import IAuditLogRepository
    from modules.core.transactions import ITransactionManager
    from modules.organization.repositories.interfaces import IBranchRepository
    from modules.settlement.markers import ISettlementMarkerStore
    from modules.settlement.repositories.interfaces import ISettlementPeriodRepository

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------


def week_start(day: date) -> date:
    """Monday of the week containing ``day``."""
    return day - timedelta(days=day.weekday())


def previous_week(day: date) -> Tuple[date, date]:
    """``(monday, sunday)`` of the week before the one containing ``day``."""
    start = week_start(day - timedelta(days=7))
    return start, start + timedelta(days=6)


def next_unlock_time(now: datetime, hour: int = DEFAULT_UNLOCK_HOUR) -> datetime:
    """First Friday ``hour``:00 strictly after ``now`` (same timezone as ``now``)."""
    days_ahead = (UNLOCK_WEEKDAY - now.weekday()) % 7
    candidate = (now + timedelta(days=days_ahead)).replace(
        hour=hour, minute=0, second=0, microsecond=0
    )
    if candidate <= now:
        candidate += timedelta(days=7)
    return candidate


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class SettlementLockScheduler:
    def __init__(
        self,
        branch_repository: IBranchRepository,
        period_repository: ISettlementPeriodRepository,
        marker_store: ISettlementMarkerStore,
        audit_repository: IAuditLogRepository,
        clock: IClock,
        transactions: ITransactionManager,
        unlock_hour: int = DEFAULT_UNLOCK_HOUR,
    ) -> None:
        self._branch_repo = branch_repository
        self._period_repo = period_repository
        self._markers = marker_store
        self._audit_repo = audit_repository
        self._clock = clock
        self._tx = transactions
        self._unlock_hour = unlock_hour

    def _local_now(self) -> datetime:
        return timezone.localtime(self._clock.now())

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def lock_previous_week(self) -> Dict[str, Any]:
        now = self._local_now()
        start, end = previous_week(now.date())
        unlocks_at = next_unlock_time(now, self._unlock_hour)
        ttl_seconds = max(int((unlocks_at - now).total_seconds()), 1)
        branches = self._branch_repo.list()

        log = logger.bind(week_start=start.isoformat(), week_end=end.isoformat())
        log.info("settlement.weekly_lock_started", branch_count=len(branches))

        for branch in branches:
            with self._tx.atomic():
                period = self._period_repo.get_or_create(branch.id, start, end)
                if not period.is_locked:
                    self._period_repo.mark_locked(period, SYSTEM_ACTOR, now)
                    self._audit_repo.record(
                        table_name="settlement_periods",
                        record_id=period.id,
                        action=AuditAction.LOCK,
                        diff={"periodStart": start, "periodEnd": end},
                        actor=SYSTEM_ACTOR,
                    )

            marker = SettlementMarkerDTO(
                locked=True,
                locked_at=now,
                unlocks_at=unlocks_at,
                branch_id=str(branch.id),
            )
            self._markers.set(
                settlement_key(branch.id, start),
                marker.model_dump_json(by_alias=True),
                ttl_seconds,
            )
            evicted = self._markers.delete_matching(kpi_pattern(branch.id))
            log.info(
                "settlement.branch_locked",
                branch_id=str(branch.id),
                branch_code=branch.code,
                kpi_keys_evicted=evicted,
            )

        logger.info(
            "settlement.branches_notified_lock",
            branch_count=len(branches),
            unlocks_at=unlocks_at.isoformat(),
        )
        return {
            "weekStart": start.isoformat(),
            "weekEnd": end.isoformat(),
            "branches": len(branches),
            "unlocksAt": unlocks_at.isoformat(),
        }

    def unlock_for_adjustments(self) -> Dict[str, Any]:
        now = self._local_now()
        start, _ = previous_week(now.date())
        branches = self._branch_repo.list()
        released = 0
        reopened = 0

        for branch in branches:
            if self._markers.delete(settlement_key(branch.id, start)):
                released += 1
            with self._tx.atomic():
                for period in self._period_repo.list(
                    {
                        "branch_id": branch.id,
                        "period_start": start,
                        "status": SettlementStatus.LOCKED,
                        "locked_by": SYSTEM_ACTOR,
                    }
                ):
                    self._period_repo.mark_open(period, SYSTEM_ACTOR, now)
                    self._audit_repo.record(
                        table_name="settlement_periods",
                        record_id=period.id,
                        action=AuditAction.UNLOCK,
                        diff={"periodStart": start, "periodEnd": period.period_end},
                        actor=SYSTEM_ACTOR,
                    )
                    reopened += 1
            logger.info(
                "settlement.branch_unlocked",
                branch_id=str(branch.id),
                week_start=start.isoformat(),
            )

        logger.info("settlement.branches_notified_unlock", branch_count=len(branches))
        return {
            "weekStart": start.isoformat(),
            "branches": len(branches),
            "markersReleased": released,
            "periodsReopened": reopened,
        }

    # ------------------------------------------------------------------
    # Marker queries
    # ------------------------------------------------------------------

    def get_settlement_status(
        self, branch_id: Any, week: Optional[date] = None
    ) -> Optional[SettlementMarkerDTO]:
        """Marker for ``week`` (defaults to the most recently settled week)."""
        if week is None:
            week, _ = previous_week(self._local_now().date())
        raw = self._markers.get(settlement_key(branch_id, week_start(week)))
        if raw is None:
            return None
        try:
            return SettlementMarkerDTO.model_validate_json(raw)
        except ValidationError:
            logger.warning("settlement.marker_unreadable", branch_id=str(branch_id))
            return None

    def is_settlement_locked(self, branch_id: Any, week: Optional[date] = None) -> bool:
        status = self.get_settlement_status(branch_id, week)
        return bool(status and status.locked)

    def get_settlement_unlock_time(
        self, branch_id: Any, week: Optional[date] = None
    ) -> Optional[datetime]:
        status = self.get_settlement_status(branch_id, week)
        return status.unlocks_at if status else None
