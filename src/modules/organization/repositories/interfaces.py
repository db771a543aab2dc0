"""Repository contracts for the organization reference data."""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Any, Optional

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from modules.organization.models import Branch, Installer, Partner


class IBranchRepository(IRepository["Branch"]):
    @abstractmethod
    def exists(self, id: Any) -> bool:
        """Existence check used by validation paths."""


class IPartnerRepository(IRepository["Partner"]):
    @abstractmethod
    def exists(self, id: Any) -> bool: ...


class IInstallerRepository(IRepository["Installer"]):
    @abstractmethod
    def exists(self, id: Any) -> bool: ...

    @abstractmethod
    def get_active(self, id: Any) -> Optional[Installer]:
        """Installer that can still receive work (``is_active``)."""
