"""Order repository interface.

Extends ``IRepository[Order]`` with what the lifecycle services need from
the record store: row-locked loads, version-conditional writes and the
append-only satellite records (history, events, split links, appointment
changes, serials, waste pickups).

The service layer depends exclusively on this contract (DIP).
"""

from __future__ import annotations

from abc import abstractmethod
from datetime import date
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from modules.orders.models import (
        AppointmentChange,
        CancellationRecord,
        Order,
        OrderEvent,
        OrderLine,
        OrderStatusHistory,
        SerialNumber,
        SplitOrder,
        WastePickup,
    )


class IOrderRepository(IRepository["Order"]):
    """Repository contract for the Order aggregate root."""

    # ------------------------------------------------------------------
    # Order rows
    # ------------------------------------------------------------------

    @abstractmethod
    def get_for_update(self, id: Any) -> Optional[Order]:
        """Live (not soft-deleted) order with a row-level lock, or ``None``."""

    @abstractmethod
    def create(self, data: Dict[str, Any], lines: Sequence[Dict[str, Any]]) -> Order:
        """Insert an order at version 1 together with its lines."""

    @abstractmethod
    def save_versioned(self, order: Order, fields: Sequence[str]) -> Order:
        """Write ``fields`` and bump ``version`` by one.

        The write is conditional on the version the order was loaded with;
        if another writer got there first, ``VersionConflict`` is raised and
        nothing is written.
        """

    @abstractmethod
    def soft_delete(self, order: Order) -> Order:
        """Stamp ``deleted_at`` (versioned write)."""

    # ------------------------------------------------------------------
    # Lines
    # ------------------------------------------------------------------

    @abstractmethod
    def get_lines(self, order_id: Any) -> List[OrderLine]: ...

    @abstractmethod
    def get_line(self, order_id: Any, line_id: Any) -> Optional[OrderLine]: ...

    # ------------------------------------------------------------------
    # Append-only satellites
    # ------------------------------------------------------------------

    @abstractmethod
    def add_history(
        self,
        order_id: Any,
        previous_status: Optional[str],
        new_status: str,
        changed_by: str = "",
        reason_code: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> OrderStatusHistory:
        """Append one status history row."""

    @abstractmethod
    def get_history(self, order_id: Any) -> List[OrderStatusHistory]: ...

    @abstractmethod
    def add_event(
        self, order_id: Any, event_type: str, note: str, created_by: str
    ) -> OrderEvent: ...

    @abstractmethod
    def count_events(self, order_id: Any) -> int: ...

    @abstractmethod
    def add_split_link(
        self,
        parent_id: Any,
        child_id: Any,
        line_id: Any,
        quantity: int,
        created_by: str,
    ) -> SplitOrder: ...

    @abstractmethod
    def add_appointment_change(
        self,
        order_id: Any,
        old_date: Optional[date],
        new_date: date,
        changed_by: str,
        reason: str = "",
    ) -> AppointmentChange: ...

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    @abstractmethod
    def get_cancellation(self, order_id: Any) -> Optional[CancellationRecord]: ...

    @abstractmethod
    def create_cancellation(
        self,
        order_id: Any,
        reason: str,
        note: str,
        cancelled_by: str,
        previous_status: str,
    ) -> CancellationRecord: ...

    @abstractmethod
    def delete_cancellation(self, order_id: Any) -> bool: ...

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    @abstractmethod
    def add_serials(
        self, line: OrderLine, serials: Sequence[str], recorded_by: str
    ) -> List[SerialNumber]: ...

    @abstractmethod
    def upsert_waste(
        self, order_id: Any, code: str, quantity: int, collected_by: str
    ) -> WastePickup:
        """One row per ``(order, code)``; a second pickup replaces the quantity."""

    @abstractmethod
    def replace_serials(
        self, line: OrderLine, serials: Sequence[str], recorded_by: str
    ) -> List[SerialNumber]:
        """Drop the serials recorded on ``line`` and store ``serials`` instead."""

    @abstractmethod
    def replace_waste(
        self, order_id: Any, entries: Sequence[Tuple[str, int]], collected_by: str
    ) -> List[WastePickup]:
        """Drop every waste row of the order and store ``(code, quantity)`` entries."""

    @abstractmethod
    def get_waste(self, order_id: Any) -> List[WastePickup]: ...

    @abstractmethod
    def get_serials(self, order_id: Any) -> List[SerialNumber]: ...
