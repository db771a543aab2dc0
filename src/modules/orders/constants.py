"""Order domain constants.

Defines the order status choices, the transition table for the order
state machine and the status sets each lifecycle operation accepts.
"""

from django.db import models


class OrderStatus(models.TextChoices):
    UNASSIGNED = "UNASSIGNED", "Unassigned"
    ASSIGNED = "ASSIGNED", "Assigned"
    CONFIRMED = "CONFIRMED", "Confirmed"
    RELEASED = "RELEASED", "Released"
    DISPATCHED = "DISPATCHED", "Dispatched"
    COMPLETED = "COMPLETED", "Completed"
    PARTIAL = "PARTIAL", "Partially completed"
    POSTPONED = "POSTPONED", "Postponed"
    ABSENT = "ABSENT", "Customer absent"
    REQUEST_CANCEL = "REQUEST_CANCEL", "Cancellation requested"
    CANCELLED = "CANCELLED", "Cancelled"
    COLLECTED = "COLLECTED", "Collected"


# Exhaustive: an edge that is not listed here does not exist.
VALID_TRANSITIONS: dict[str, set[str]] = {
    OrderStatus.UNASSIGNED: {OrderStatus.ASSIGNED},
    OrderStatus.ASSIGNED: {OrderStatus.CONFIRMED, OrderStatus.UNASSIGNED},
    OrderStatus.CONFIRMED: {OrderStatus.RELEASED, OrderStatus.ASSIGNED},
    OrderStatus.RELEASED: {OrderStatus.DISPATCHED, OrderStatus.CONFIRMED},
    OrderStatus.DISPATCHED: {
        OrderStatus.COMPLETED,
        OrderStatus.PARTIAL,
        OrderStatus.POSTPONED,
        OrderStatus.ABSENT,
        OrderStatus.CANCELLED,
    },
    OrderStatus.POSTPONED: {
        OrderStatus.DISPATCHED,
        OrderStatus.ABSENT,
        OrderStatus.CANCELLED,
    },
    OrderStatus.ABSENT: {
        OrderStatus.DISPATCHED,
        OrderStatus.POSTPONED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.COMPLETED: {OrderStatus.COLLECTED},
    OrderStatus.PARTIAL: {OrderStatus.COMPLETED, OrderStatus.COLLECTED},
    OrderStatus.COLLECTED: set(),
    OrderStatus.CANCELLED: set(),
    OrderStatus.REQUEST_CANCEL: set(),
}

TERMINAL_STATES: set[str] = {
    status for status, targets in VALID_TRANSITIONS.items() if not targets
}

# ---------------------------------------------------------------------------
# Per-operation status sets
# ---------------------------------------------------------------------------

CANCELLABLE_STATUSES: set[str] = {
    OrderStatus.UNASSIGNED,
    OrderStatus.ASSIGNED,
    OrderStatus.CONFIRMED,
    OrderStatus.RELEASED,
    OrderStatus.DISPATCHED,
    OrderStatus.POSTPONED,
    OrderStatus.ABSENT,
}

EVENT_ALLOWED_STATUSES: set[str] = set(CANCELLABLE_STATUSES)

SPLITTABLE_STATUSES: set[str] = {
    OrderStatus.UNASSIGNED,
    OrderStatus.ASSIGNED,
    OrderStatus.CONFIRMED,
}

REASSIGNABLE_STATUSES: set[str] = {
    OrderStatus.ASSIGNED,
    OrderStatus.CONFIRMED,
    OrderStatus.RELEASED,
    OrderStatus.DISPATCHED,
    OrderStatus.POSTPONED,
    OrderStatus.ABSENT,
}

FORBIDDEN_REVERT_TARGETS: set[str] = {
    OrderStatus.CANCELLED,
    OrderStatus.COMPLETED,
    OrderStatus.PARTIAL,
    OrderStatus.COLLECTED,
}

COMPLETION_STATUSES: set[str] = {OrderStatus.COMPLETED, OrderStatus.PARTIAL}


class CancellationReason(models.TextChoices):
    CUSTOMER_REQUEST = "CUSTOMER_REQUEST", "Customer request"
    OUT_OF_STOCK = "OUT_OF_STOCK", "Out of stock"
    PAYMENT_FAILED = "PAYMENT_FAILED", "Payment failed"
    DUPLICATE_ORDER = "DUPLICATE_ORDER", "Duplicate order"
    OTHER = "OTHER", "Other"


class OrderEventType(models.TextChoices):
    REMARK = "REMARK", "Remark"
    ISSUE = "ISSUE", "Issue"
    REQUEST = "REQUEST", "Request"
    NOTE = "NOTE", "Note"


class SyncOperationType(models.TextChoices):
    CREATE = "CREATE", "Create"
    UPDATE = "UPDATE", "Update"
    DELETE = "DELETE", "Delete"


# History reason codes written by non-transition operations
REASON_CANCEL = "CANCEL"
REASON_REVERT = "REVERT"
REASON_SPLIT = "SPLIT"
REASON_REASSIGN = "REASSIGN"
REASON_AMEND = "AMEND"

# ---------------------------------------------------------------------------
# Limits
# ---------------------------------------------------------------------------

MAX_ABSENCE_RETRIES = 3
REVERT_WINDOW_DAYS = 5
APPOINTMENT_WINDOW_DAYS = 15
BATCH_SYNC_MAX_ITEMS = 100
ASSIGN_LOCK_PREFIX = "order:assign:"
SPLIT_SUFFIX_LENGTH = 6
WASTE_CODE_PATTERN = r"^P(0[1-9]|1[0-9]|2[01])$"
