"""Order state machine.

Pure decision logic: the transition table lives in ``constants`` and the
guards below are keyed by the exact ``(from, to)`` pair.  Nothing here
touches the database; "today" comes from the injected clock.

Guards:
- UNASSIGNED -> ASSIGNED     needs an installer.
- CONFIRMED  -> RELEASED     needs the appointment to be today.
- DISPATCHED -> COMPLETED    needs serial numbers captured.
- DISPATCHED -> POSTPONED    needs a reason code.
- DISPATCHED -> ABSENT       needs fewer than 3 previous absences.
- DISPATCHED -> CANCELLED    needs a reason code.
- COMPLETED  -> COLLECTED    needs the waste pickup logged.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from modules.core.clock import IClock, SystemClock
from modules.core.exceptions import ErrorCode
from modules.orders.constants import (
    APPOINTMENT_WINDOW_DAYS,
    MAX_ABSENCE_RETRIES,
    REVERT_WINDOW_DAYS,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    OrderStatus,
)

SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class TransitionContext:
    installer_id: Optional[Any] = None
    appointment_date: Optional[date] = None
    serials_captured: bool = False
    reason_code: Optional[str] = None
    waste_pickup_logged: bool = False
    retry_count: int = 0


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error_code: Optional[ErrorCode] = None
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls) -> ValidationResult:
        return cls(valid=True)


Guard = Tuple[str, Callable[[TransitionContext, date], bool]]

GUARDS: Dict[Tuple[str, str], Guard] = {
    (OrderStatus.UNASSIGNED, OrderStatus.ASSIGNED): (
        "installer_required",
        lambda ctx, today: bool(ctx.installer_id),
    ),
    (OrderStatus.CONFIRMED, OrderStatus.RELEASED): (
        "appointment_is_today",
        lambda ctx, today: ctx.appointment_date == today,
    ),
    (OrderStatus.DISPATCHED, OrderStatus.COMPLETED): (
        "serials_captured",
        lambda ctx, today: ctx.serials_captured is True,
    ),
    (OrderStatus.DISPATCHED, OrderStatus.POSTPONED): (
        "reason_code_required",
        lambda ctx, today: bool(ctx.reason_code),
    ),
    (OrderStatus.DISPATCHED, OrderStatus.ABSENT): (
        "absence_retries_remaining",
        lambda ctx, today: ctx.retry_count < MAX_ABSENCE_RETRIES,
    ),
    (OrderStatus.DISPATCHED, OrderStatus.CANCELLED): (
        "reason_code_required",
        lambda ctx, today: bool(ctx.reason_code),
    ),
    (OrderStatus.COMPLETED, OrderStatus.COLLECTED): (
        "waste_pickup_logged",
        lambda ctx, today: ctx.waste_pickup_logged is True,
    ),
}


def _whole_days(delta_seconds: float) -> int:
    return math.floor(delta_seconds / SECONDS_PER_DAY)


class OrderStateMachine:
    """Transition table lookups, guard evaluation and revert windows."""

    def __init__(self, clock: Optional[IClock] = None) -> None:
        self._clock = clock or SystemClock()

    def can_transition(self, from_status: str, to_status: str) -> bool:
        return to_status in VALID_TRANSITIONS.get(from_status, set())

    def get_available_transitions(self, status: str) -> List[str]:
        return sorted(VALID_TRANSITIONS.get(status, set()))

    def is_terminal_state(self, status: str) -> bool:
        return status in TERMINAL_STATES

    def validate_transition(
        self,
        from_status: str,
        to_status: str,
        context: Optional[TransitionContext] = None,
    ) -> ValidationResult:
        """Check the table first, then the guard for the exact pair."""
        if not self.can_transition(from_status, to_status):
            return ValidationResult(
                valid=False,
                error_code=ErrorCode.INVALID_TRANSITION,
                error="error.invalid_status_transition",
                details={"from": str(from_status), "to": str(to_status)},
            )

        guard = GUARDS.get((from_status, to_status))
        if guard is None:
            return ValidationResult.ok()

        guard_key, predicate = guard
        if predicate(context or TransitionContext(), self._clock.today()):
            return ValidationResult.ok()

        return ValidationResult(
            valid=False,
            error_code=ErrorCode.INVALID_TRANSITION,
            error="error.transition_guard_failed",
            details={
                "from": str(from_status),
                "to": str(to_status),
                "guardKey": guard_key,
            },
        )

    def can_revert(
        self,
        completed_at: datetime,
        original_promised_date: date,
        new_appointment_date: Optional[date] = None,
    ) -> ValidationResult:
        """Revert is allowed within 5 whole days of completion.

        When rescheduling, the new appointment may not be more than 15 whole
        days after the originally promised date.  The completion window is
        checked first.
        """
        now = self._clock.now()
        days_since_completion = _whole_days((now - completed_at).total_seconds())
        if days_since_completion > REVERT_WINDOW_DAYS:
            return ValidationResult(
                valid=False,
                error_code=ErrorCode.REVERT_WINDOW_EXCEEDED,
                error="error.revert_window_exceeded",
                details={
                    "daysSinceCompletion": days_since_completion,
                    "maxDays": REVERT_WINDOW_DAYS,
                },
            )

        if new_appointment_date is not None:
            days_since_promised = (new_appointment_date - original_promised_date).days
            if days_since_promised > APPOINTMENT_WINDOW_DAYS:
                return ValidationResult(
                    valid=False,
                    error_code=ErrorCode.REVERT_WINDOW_EXCEEDED,
                    error="error.appointment_date_exceeded",
                    details={
                        "daysSincePromised": days_since_promised,
                        "maxDays": APPOINTMENT_WINDOW_DAYS,
                    },
                )

        return ValidationResult.ok()
