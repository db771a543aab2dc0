"""Settlement DTOs (Pydantic v2, immutable)."""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

if TYPE_CHECKING:
    from modules.settlement.models import SettlementPeriod


class SettlementPeriodDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    branch_id: UUID
    period_start: date
    period_end: date
    status: str
    locked_by: Optional[str] = None
    locked_at: Optional[datetime] = None
    unlocked_by: Optional[str] = None
    unlocked_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, period: SettlementPeriod) -> SettlementPeriodDTO:
        return cls(
            id=period.id,
            branch_id=period.branch_id,
            period_start=period.period_start,
            period_end=period.period_end,
            status=period.status,
            locked_by=period.locked_by or None,
            locked_at=period.locked_at,
            unlocked_by=period.unlocked_by or None,
            unlocked_at=period.unlocked_at,
        )


class PeriodHistoryDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    data: List[SettlementPeriodDTO]
    total_count: int


class SettlementMarkerDTO(BaseModel):
    """Payload stored in the Redis marker (camelCase JSON)."""

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )

    locked: bool
    locked_at: datetime
    unlocks_at: datetime
    branch_id: str
