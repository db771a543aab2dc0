"""Settlement domain constants."""

from django.db import models


class SettlementStatus(models.TextChoices):
    OPEN = "OPEN", "Open"
    LOCKED = "LOCKED", "Locked"


SYSTEM_ACTOR = "SYSTEM"

SETTLEMENT_KEY_PREFIX = "settlement:"
KPI_KEY_PREFIX = "kpi:"

# Weekly schedule (weekday numbers follow ``date.weekday()``: Monday == 0)
UNLOCK_WEEKDAY = 4
DEFAULT_UNLOCK_HOUR = 17

PERIOD_HISTORY_DEFAULT_LIMIT = 20
