"""Domain events primitives for the modular monolith.

Aggregates collect events while a use case runs; the application service
hands them to the bus once the surrounding transaction has committed, so
a rolled-back write never notifies anyone.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict
from uuid import UUID, uuid4

_METADATA_FIELDS = ("aggregate_id", "event_id", "occurred_on", "event_name")


@dataclass(frozen=True)
class DomainEvent:
    """Base domain event (immutable).

    Subclasses add their own fields; those must have defaults because the
    metadata fields here already do.
    """

    aggregate_id: UUID
    event_id: UUID = field(default_factory=uuid4)
    occurred_on: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_name: str = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "event_name", self.__class__.__name__)

    def payload(self) -> Dict[str, Any]:
        """Event-specific fields, without the metadata."""
        return {
            key: value
            for key, value in asdict(self).items()
            if key not in _METADATA_FIELDS
        }


class DomainEventMixin:
    """Mixin for aggregate roots that collect domain events in memory."""

    _domain_events: list[DomainEvent]

    def add_domain_event(self, event: DomainEvent) -> None:
        if not hasattr(self, "_domain_events"):
            self._domain_events = []
        self._domain_events.append(event)

    def clear_domain_events(self) -> None:
        if hasattr(self, "_domain_events"):
            self._domain_events.clear()

    @property
    def domain_events(self) -> list[DomainEvent]:
        if not hasattr(self, "_domain_events"):
            self._domain_events = []
        return list(self._domain_events)
