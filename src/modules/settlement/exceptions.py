"""Settlement domain exceptions."""

from __future__ import annotations

from modules.core.exceptions import Conflict, ErrorCode, NotFound, ValidationFailed


class SettlementLocked(Conflict):
    """The order's settlement week is locked; no mutation is accepted."""

    code = ErrorCode.SETTLEMENT_LOCKED
    message = "error.settlement_locked"


class SettlementPeriodNotFound(NotFound):
    code = ErrorCode.RECORD_NOT_FOUND
    message = "error.settlement_period_not_found"


class PeriodAlreadyLocked(ValidationFailed):
    code = ErrorCode.INVALID_ORDER_STATUS
    message = "error.period_already_locked"


class PeriodAlreadyOpen(ValidationFailed):
    code = ErrorCode.INVALID_ORDER_STATUS
    message = "error.period_already_unlocked"
