"""Composition root for the orders module.

Views, tasks and management code obtain fully wired services from here;
the services themselves only see interfaces.
"""

from __future__ import annotations

from django.conf import settings

from modules.core.clock import SystemClock
from modules.core.locks import DistributedLock, LockRetryOptions, RedisLockStore
from modules.core.redis_client import get_redis_client
from modules.core.repositories.django_repository import AuditLogDjangoRepository
from modules.core.transactions import DjangoTransactionManager
from modules.orders.completion import CompletionService
from modules.orders.lifecycle import OrderLifecycleService
from modules.orders.repositories import OrderDjangoRepository
from modules.orders.services import OrderService
from modules.orders.split import OrderSplitService
from modules.orders.state_machine import OrderStateMachine
from modules.organization.repositories import (
    BranchDjangoRepository,
    InstallerDjangoRepository,
    PartnerDjangoRepository,
)
from modules.settlement.providers import build_settlement_gate
from shared.infrastructure.bus import event_bus


def build_distributed_lock() -> DistributedLock:
    return DistributedLock(RedisLockStore(get_redis_client()))


def build_order_service() -> OrderService:
    clock = SystemClock()
    return OrderService(
        order_repository=OrderDjangoRepository(),
        branch_repository=BranchDjangoRepository(),
        partner_repository=PartnerDjangoRepository(),
        installer_repository=InstallerDjangoRepository(),
        audit_repository=AuditLogDjangoRepository(),
        settlement_gate=build_settlement_gate(),
        state_machine=OrderStateMachine(clock),
        lock=build_distributed_lock(),
        transactions=DjangoTransactionManager(),
        event_bus=event_bus,
        clock=clock,
        assign_lock_ttl_ms=settings.ORDER_ASSIGN_LOCK_TTL_MS,
        lock_retry=LockRetryOptions.from_settings(),
    )


def build_lifecycle_service() -> OrderLifecycleService:
    clock = SystemClock()
    return OrderLifecycleService(
        order_repository=OrderDjangoRepository(),
        audit_repository=AuditLogDjangoRepository(),
        settlement_gate=build_settlement_gate(),
        state_machine=OrderStateMachine(clock),
        transactions=DjangoTransactionManager(),
        event_bus=event_bus,
        clock=clock,
        order_service=build_order_service(),
    )


def build_split_service() -> OrderSplitService:
    clock = SystemClock()
    return OrderSplitService(
        order_repository=OrderDjangoRepository(),
        installer_repository=InstallerDjangoRepository(),
        audit_repository=AuditLogDjangoRepository(),
        settlement_gate=build_settlement_gate(),
        state_machine=OrderStateMachine(clock),
        transactions=DjangoTransactionManager(),
        event_bus=event_bus,
        clock=clock,
    )


def build_completion_service() -> CompletionService:
    clock = SystemClock()
    return CompletionService(
        order_repository=OrderDjangoRepository(),
        audit_repository=AuditLogDjangoRepository(),
        settlement_gate=build_settlement_gate(),
        state_machine=OrderStateMachine(clock),
        transactions=DjangoTransactionManager(),
        event_bus=event_bus,
        clock=clock,
    )
