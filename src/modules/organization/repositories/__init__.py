"""Organization repositories package."""

from modules.organization.repositories.django_repository import (
    BranchDjangoRepository,
    InstallerDjangoRepository,
    PartnerDjangoRepository,
)
from modules.organization.repositories.interfaces import (
    IBranchRepository,
    IInstallerRepository,
    IPartnerRepository,
)

__all__ = [
    "BranchDjangoRepository",
    "IBranchRepository",
    "IInstallerRepository",
    "IPartnerRepository",
    "InstallerDjangoRepository",
    "PartnerDjangoRepository",
]
