"""Generic repository interfaces (Dependency Inversion Principle).

Service-layer code depends on these abstractions, never on the Django
ORM directly.  ``IRepository[T]`` is the base that domain-specific
repository interfaces extend; ``IAuditLogRepository`` is the shared
append-only audit sink.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, Generic, List, Optional, TypeVar

if TYPE_CHECKING:
    from modules.core.models import AuditLog

T = TypeVar("T")


class IRepository(ABC, Generic[T]):
    """Base generic repository contract.

    Type parameter ``T`` represents the entity managed by the repository
    (e.g. ``Order``, ``Installer``).
    """

    @abstractmethod
    def get_by_id(self, id: Any) -> Optional[T]:
        """Retrieve an entity by its primary key (``None`` when absent)."""

    @abstractmethod
    def list(self, filters: Optional[Dict[str, Any]] = None) -> List[T]:
        """List entities with optional filters."""


class IAuditLogRepository(ABC):
    @abstractmethod
    def record(
        self,
        table_name: str,
        record_id: Any,
        action: str,
        diff: Optional[Dict[str, Any]] = None,
        actor: str = "",
    ) -> AuditLog:
        """Append one audit row inside the caller's transaction."""

    @abstractmethod
    def for_record(self, table_name: str, record_id: Any) -> List[AuditLog]:
        """Audit rows for one record, oldest first."""
