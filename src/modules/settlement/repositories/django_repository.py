"""Django ORM implementation of the settlement period repository."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

import structlog
from django.core.exceptions import ValidationError

from modules.settlement.constants import SettlementStatus
from modules.settlement.models import SettlementPeriod
from modules.settlement.repositories.interfaces import ISettlementPeriodRepository

logger = structlog.get_logger(__name__)


class SettlementPeriodDjangoRepository(ISettlementPeriodRepository):
    def get_by_id(self, id: Any) -> Optional[SettlementPeriod]:
        try:
            return SettlementPeriod.objects.filter(id=id).first()
        except (ValueError, ValidationError):
            return None

    def list(self, filters: Optional[Dict[str, Any]] = None) -> List[SettlementPeriod]:
        queryset = SettlementPeriod.objects.all()
        if filters:
            queryset = queryset.filter(**filters)
        return list(queryset)

    def find_locked_covering(
        self, branch_id: Any, day: date
    ) -> Optional[SettlementPeriod]:
        return SettlementPeriod.objects.filter(
            branch_id=branch_id,
            status=SettlementStatus.LOCKED,
            period_start__lte=day,
            period_end__gte=day,
        ).first()

    def get_or_create(
        self, branch_id: Any, period_start: date, period_end: date
    ) -> SettlementPeriod:
        period, created = SettlementPeriod.objects.get_or_create(
            branch_id=branch_id,
            period_start=period_start,
            defaults={"period_end": period_end, "status": SettlementStatus.OPEN},
        )
        if created:
            logger.info(
                "settlement.period_created",
                branch_id=str(branch_id),
                period_start=period_start.isoformat(),
                period_end=period_end.isoformat(),
            )
        return period

    def latest(self, branch_id: Any) -> Optional[SettlementPeriod]:
        return (
            SettlementPeriod.objects.filter(branch_id=branch_id)
            .order_by("-period_start")
            .first()
        )

    def history(
        self, branch_id: Any, limit: int, offset: int = 0
    ) -> List[SettlementPeriod]:
        queryset = SettlementPeriod.objects.filter(branch_id=branch_id).order_by(
            "-period_start"
        )
        return list(queryset[offset : offset + limit])

    def count(self, branch_id: Any) -> int:
        return SettlementPeriod.objects.filter(branch_id=branch_id).count()

    def locked_for_branch(self, branch_id: Any) -> List[SettlementPeriod]:
        return list(
            SettlementPeriod.objects.filter(
                branch_id=branch_id, status=SettlementStatus.LOCKED
            ).order_by("-period_start")
        )

    def mark_locked(
        self, period: SettlementPeriod, actor: str, at: datetime
    ) -> SettlementPeriod:
        period.status = SettlementStatus.LOCKED
        period.locked_by = actor
        period.locked_at = at
        period.save(update_fields=["status", "locked_by", "locked_at"])
        return period

    def mark_open(
        self, period: SettlementPeriod, actor: str, at: datetime
    ) -> SettlementPeriod:
        period.status = SettlementStatus.OPEN
        period.unlocked_by = actor
        period.unlocked_at = at
        period.save(update_fields=["status", "unlocked_by", "unlocked_at"])
        return period
