"""Django ORM implementations of the organization repositories."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from django.core.exceptions import ValidationError

from modules.organization.models import Branch, Installer, Partner
from modules.organization.repositories.interfaces import (
    IBranchRepository,
    IInstallerRepository,
    IPartnerRepository,
)


class _ReferenceRepository:
    model: Any = None

    def get_by_id(self, id: Any) -> Optional[Any]:
        """Returns ``None`` for non-existent or malformed IDs."""
        if id is None:
            return None
        try:
            return self.model.objects.filter(id=id).first()
        except (ValueError, ValidationError):
            return None

    def list(self, filters: Optional[Dict[str, Any]] = None) -> List[Any]:
        queryset = self.model.objects.all()
        if filters:
            queryset = queryset.filter(**filters)
        return list(queryset)

    def exists(self, id: Any) -> bool:
        return self.get_by_id(id) is not None


class BranchDjangoRepository(_ReferenceRepository, IBranchRepository):
    model = Branch


class PartnerDjangoRepository(_ReferenceRepository, IPartnerRepository):
    model = Partner


class InstallerDjangoRepository(_ReferenceRepository, IInstallerRepository):
    model = Installer

    def get_active(self, id: Any) -> Optional[Installer]:
        installer = self.get_by_id(id)
        if installer is None or not installer.is_active:
            return None
        return installer
