"""Composition root for the settlement module."""

from __future__ import annotations

from django.conf import settings

from modules.core.clock import SystemClock
from modules.core.redis_client import get_redis_client
from modules.core.repositories.django_repository import AuditLogDjangoRepository
from modules.core.transactions import DjangoTransactionManager
from modules.organization.repositories import BranchDjangoRepository
from modules.settlement.gate import SettlementLockGate
from modules.settlement.markers import RedisSettlementMarkerStore
from modules.settlement.repositories import SettlementPeriodDjangoRepository
from modules.settlement.scheduler import SettlementLockScheduler
from modules.settlement.services import SettlementService


def build_settlement_gate() -> SettlementLockGate:
    from modules.orders.repositories import OrderDjangoRepository

    return SettlementLockGate(
        period_repository=SettlementPeriodDjangoRepository(),
        order_repository=OrderDjangoRepository(),
    )


def build_settlement_scheduler() -> SettlementLockScheduler:
    return SettlementLockScheduler(
        branch_repository=BranchDjangoRepository(),
        period_repository=SettlementPeriodDjangoRepository(),
        marker_store=RedisSettlementMarkerStore(get_redis_client()),
        audit_repository=AuditLogDjangoRepository(),
        clock=SystemClock(),
        transactions=DjangoTransactionManager(),
        unlock_hour=settings.SETTLEMENT_UNLOCK_HOUR,
    )


def build_settlement_service() -> SettlementService:
    return SettlementService(
        period_repository=SettlementPeriodDjangoRepository(),
        audit_repository=AuditLogDjangoRepository(),
        clock=SystemClock(),
        transactions=DjangoTransactionManager(),
    )
