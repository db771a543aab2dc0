"""Settlement repositories package."""

from modules.settlement.repositories.django_repository import (
    SettlementPeriodDjangoRepository,
)
from modules.settlement.repositories.interfaces import ISettlementPeriodRepository

__all__ = ["ISettlementPeriodRepository", "SettlementPeriodDjangoRepository"]
