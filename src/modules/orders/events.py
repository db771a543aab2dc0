"""Domain events for the Orders bounded context.

Collected on the ``Order`` aggregate during a use case and published on
the in-process bus once the transaction commits.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from shared.domain.events import DomainEvent


@dataclass(frozen=True)
class OrderCreated(DomainEvent):
    """Raised when an order is created."""


@dataclass(frozen=True)
class OrderStatusChanged(DomainEvent):
    previous_status: str = ""
    new_status: str = ""
    version: int = 0


@dataclass(frozen=True)
class OrderAssigned(DomainEvent):
    installer_id: Optional[str] = None
    version: int = 0


@dataclass(frozen=True)
class OrderCancelled(DomainEvent):
    previous_status: str = ""
    reason: str = ""


@dataclass(frozen=True)
class OrderReverted(DomainEvent):
    restored_status: str = ""


@dataclass(frozen=True)
class OrderSplit(DomainEvent):
    child_count: int = 0


@dataclass(frozen=True)
class OrderCompleted(DomainEvent):
    status: str = ""
