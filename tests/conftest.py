from __future__ import annotations

import fnmatch
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import pytest
from django.utils import timezone

from modules.core.clock import IClock
from modules.core.locks import DistributedLock, ILockStore, LockRetryOptions
from modules.core.repositories.django_repository import AuditLogDjangoRepository
from modules.core.transactions import DjangoTransactionManager
from modules.orders.completion import CompletionService
from modules.orders.dtos import CreateOrderDTO, OrderLineInputDTO
from modules.orders.lifecycle import OrderLifecycleService
from modules.orders.models import Order
from modules.orders.repositories import OrderDjangoRepository
from modules.orders.services import OrderService
from modules.orders.split import OrderSplitService
from modules.orders.state_machine import OrderStateMachine
from modules.organization.models import Branch, Installer, Partner
from modules.organization.repositories import (
    BranchDjangoRepository,
    InstallerDjangoRepository,
    PartnerDjangoRepository,
)
from modules.settlement.constants import SettlementStatus
from modules.settlement.gate import SettlementLockGate
from modules.settlement.markers import ISettlementMarkerStore
from modules.settlement.models import SettlementPeriod
from modules.settlement.repositories import SettlementPeriodDjangoRepository
from modules.settlement.scheduler import week_start
from shared.domain.events import DomainEvent
from shared.infrastructure.bus import InMemoryEventBus


@pytest.fixture(autouse=True)
def _use_db(db):
    """Automatically use the test database for all tests."""


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class InMemoryLockStore(ILockStore):
    """Lock store with Redis semantics minus expiry."""

    def __init__(self) -> None:
        self.values: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}

    def set_if_absent(self, key: str, value: str, ttl_ms: int) -> bool:
        if key in self.values:
            return False
        self.values[key] = value
        self.ttls[key] = ttl_ms
        return True

    def delete_if_equals(self, key: str, value: str) -> bool:
        if self.values.get(key) != value:
            return False
        del self.values[key]
        self.ttls.pop(key, None)
        return True

    def expire_if_equals(self, key: str, value: str, ttl_ms: int) -> bool:
        if self.values.get(key) != value:
            return False
        self.ttls[key] = ttl_ms
        return True

    def expire(self, key: str) -> None:
        """Simulate the TTL running out."""
        self.values.pop(key, None)
        self.ttls.pop(key, None)


class InMemoryMarkerStore(ISettlementMarkerStore):
    def __init__(self) -> None:
        self.values: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self.values[key] = value
        self.ttls[key] = ttl_seconds

    def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    def delete(self, key: str) -> bool:
        self.ttls.pop(key, None)
        return self.values.pop(key, None) is not None

    def delete_matching(self, pattern: str) -> int:
        keys = [key for key in self.values if fnmatch.fnmatch(key, pattern)]
        for key in keys:
            self.delete(key)
        return len(keys)


class FrozenClock(IClock):
    def __init__(self, current: datetime) -> None:
        self.current = current

    def now(self) -> datetime:
        return self.current

    def today(self) -> date:
        return timezone.localtime(self.current).date()

    def advance(self, **kwargs: Any) -> None:
        self.current += timedelta(**kwargs)


class ImmediateCommitTransactions(DjangoTransactionManager):
    """Real atomic blocks; commit callbacks run at once.

    Tests run inside an outer transaction that never commits, so Django's
    own ``on_commit`` would never fire.
    """

    def on_commit(self, callback: Callable[[], None]) -> None:
        callback()


class EventRecorder:
    def __init__(self) -> None:
        self.events: List[DomainEvent] = []

    def handle(self, event: DomainEvent) -> None:
        self.events.append(event)

    def names(self) -> List[str]:
        return [event.event_name for event in self.events]


# ---------------------------------------------------------------------------
# Infrastructure fixtures
# ---------------------------------------------------------------------------

# Wednesday, 10:00 in Asia/Seoul
FROZEN_NOW = datetime(2026, 10, 21, 10, 0)


@pytest.fixture()
def clock():
    return FrozenClock(timezone.make_aware(FROZEN_NOW))


@pytest.fixture()
def today(clock):
    return clock.today()


@pytest.fixture()
def lock_store():
    return InMemoryLockStore()


@pytest.fixture()
def sleeps():
    return []


@pytest.fixture()
def lock(lock_store, sleeps):
    return DistributedLock(lock_store, sleep=sleeps.append)


@pytest.fixture()
def marker_store():
    return InMemoryMarkerStore()


@pytest.fixture()
def transactions():
    return ImmediateCommitTransactions()


@pytest.fixture()
def event_recorder():
    return EventRecorder()


@pytest.fixture()
def event_bus(event_recorder):
    bus = InMemoryEventBus()
    bus.subscribe(DomainEvent, event_recorder)
    return bus


@pytest.fixture()
def order_repository():
    return OrderDjangoRepository()


@pytest.fixture()
def audit_repository():
    return AuditLogDjangoRepository()


@pytest.fixture()
def period_repository():
    return SettlementPeriodDjangoRepository()


@pytest.fixture()
def state_machine(clock):
    return OrderStateMachine(clock)


@pytest.fixture()
def settlement_gate(period_repository, order_repository):
    return SettlementLockGate(period_repository, order_repository)


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------


@pytest.fixture()
def branch():
    return Branch.objects.create(code="SEL01", name="Seoul Central", region="Seoul")


@pytest.fixture()
def other_branch():
    return Branch.objects.create(code="BSN01", name="Busan Harbour", region="Busan")


@pytest.fixture()
def partner(branch):
    return Partner.objects.create(code="HANIL", name="Hanil Install Co.", branch=branch)


@pytest.fixture()
def installer(branch):
    return Installer.objects.create(name="Kim Minjun", branch=branch)


@pytest.fixture()
def other_installer(branch):
    return Installer.objects.create(name="Lee Seoyeon", branch=branch)


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture()
def lock_retry():
    return LockRetryOptions(
        max_retries=2, initial_delay_ms=10, max_delay_ms=40, backoff_multiplier=2.0
    )


@pytest.fixture()
def order_service(
    order_repository,
    audit_repository,
    settlement_gate,
    state_machine,
    lock,
    transactions,
    event_bus,
    clock,
    lock_retry,
):
    return OrderService(
        order_repository=order_repository,
        branch_repository=BranchDjangoRepository(),
        partner_repository=PartnerDjangoRepository(),
        installer_repository=InstallerDjangoRepository(),
        audit_repository=audit_repository,
        settlement_gate=settlement_gate,
        state_machine=state_machine,
        lock=lock,
        transactions=transactions,
        event_bus=event_bus,
        clock=clock,
        assign_lock_ttl_ms=3000,
        lock_retry=lock_retry,
    )


@pytest.fixture()
def lifecycle_service(
    order_repository,
    audit_repository,
    settlement_gate,
    state_machine,
    transactions,
    event_bus,
    clock,
    order_service,
):
    return OrderLifecycleService(
        order_repository=order_repository,
        audit_repository=audit_repository,
        settlement_gate=settlement_gate,
        state_machine=state_machine,
        transactions=transactions,
        event_bus=event_bus,
        clock=clock,
        order_service=order_service,
    )


@pytest.fixture()
def split_service(
    order_repository,
    audit_repository,
    settlement_gate,
    state_machine,
    transactions,
    event_bus,
    clock,
):
    return OrderSplitService(
        order_repository=order_repository,
        installer_repository=InstallerDjangoRepository(),
        audit_repository=audit_repository,
        settlement_gate=settlement_gate,
        state_machine=state_machine,
        transactions=transactions,
        event_bus=event_bus,
        clock=clock,
    )


@pytest.fixture()
def completion_service(
    order_repository,
    audit_repository,
    settlement_gate,
    state_machine,
    transactions,
    event_bus,
    clock,
):
    return CompletionService(
        order_repository=order_repository,
        audit_repository=audit_repository,
        settlement_gate=settlement_gate,
        state_machine=state_machine,
        transactions=transactions,
        event_bus=event_bus,
        clock=clock,
    )


# ---------------------------------------------------------------------------
# Order factories
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_order(order_service, branch, today):
    """Create an order through the service; extra kwargs go to the DTO."""

    def _make(lines=None, **overrides) -> Order:
        data = {
            "customer_name": "Park Jiho",
            "customer_phone": "010-1234-5678",
            "address": {"city": "Seoul", "street": "Teheran-ro 152"},
            "vendor": "LG",
            "branch_id": branch.id,
            "appointment_date": today,
            "appointment_time_window": "09-12",
            "lines": lines
            or [
                OrderLineInputDTO(
                    item_code="AC-100", item_name="Air conditioner", quantity=2
                )
            ],
        }
        data.update(overrides)
        return order_service.create_order(CreateOrderDTO(**data), actor="tester")

    return _make


@pytest.fixture()
def move_to(order_repository):
    """Force an order into a status without going through the lifecycle."""

    def _move(order: Order, status: str, **fields: Any) -> Order:
        Order.objects.filter(pk=order.pk).update(status=status, **fields)
        return order_repository.get_by_id(order.id)

    return _move


@pytest.fixture()
def lock_settlement_week(branch):
    """Mark the week containing ``day`` LOCKED for ``branch``."""

    def _lock(day: date, for_branch: Optional[Branch] = None) -> SettlementPeriod:
        start = week_start(day)
        return SettlementPeriod.objects.create(
            branch=for_branch or branch,
            period_start=start,
            period_end=start + timedelta(days=6),
            status=SettlementStatus.LOCKED,
            locked_by="SYSTEM",
            locked_at=timezone.now(),
        )

    return _lock
