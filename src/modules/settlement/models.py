"""Settlement period model.

One row per (branch, week).  While a period is ``LOCKED`` every order of
that branch whose ``appointment_date`` lies in ``[period_start,
period_end]`` rejects mutation.
"""

from __future__ import annotations

from django.db import models

from modules.core.models import BaseModel
from modules.settlement.constants import SettlementStatus


class SettlementPeriod(BaseModel):
    branch: models.ForeignKey = models.ForeignKey(
        "organization.Branch",
        on_delete=models.PROTECT,
        related_name="settlement_periods",
    )
    period_start: models.DateField = models.DateField()
    period_end: models.DateField = models.DateField()
    status: models.CharField = models.CharField(
        max_length=10,
        choices=SettlementStatus.choices,
        default=SettlementStatus.OPEN,
    )
    locked_by: models.CharField = models.CharField(max_length=64, blank=True, default="")
    locked_at: models.DateTimeField = models.DateTimeField(null=True, blank=True)
    unlocked_by: models.CharField = models.CharField(
        max_length=64, blank=True, default=""
    )
    unlocked_at: models.DateTimeField = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "settlement_periods"
        ordering = ["-period_start"]
        constraints = [
            models.UniqueConstraint(
                fields=["branch", "period_start"],
                name="settlement_branch_start_uniq",
            ),
        ]
        indexes = [
            models.Index(
                fields=["branch", "status", "period_start", "period_end"],
                name="settlement_lookup_idx",
            ),
        ]

    @property
    def is_locked(self) -> bool:
        return self.status == SettlementStatus.LOCKED

    def __str__(self) -> str:
        return f"{self.branch_id} {self.period_start}..{self.period_end} ({self.status})"
