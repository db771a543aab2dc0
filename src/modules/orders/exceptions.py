"""Order domain exceptions.

Raised by the service layer when lifecycle rules are violated.  Each
exception pins its error code and message key; ``details`` carries the
values a client needs to react (versions, quantities, day counts).
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from modules.core.exceptions import Conflict, ErrorCode, NotFound, ValidationFailed
from modules.core.locks import ResourceLocked


class OrderNotFound(NotFound):
    """The order does not exist or has been soft-deleted."""

    code = ErrorCode.RECORD_NOT_FOUND
    message = "error.order_not_found"


class InvalidTransition(ValidationFailed):
    """The status change is not in the transition table or its guard failed."""

    code = ErrorCode.INVALID_TRANSITION
    message = "error.invalid_status_transition"


class RevertWindowExceeded(ValidationFailed):
    """Revert requested too long after completion, or rescheduled too far out."""

    code = ErrorCode.REVERT_WINDOW_EXCEEDED
    message = "error.revert_window_exceeded"


class VersionConflict(Conflict):
    """The caller's ``expected_version`` is stale.

    ``server_state`` holds the current order snapshot so the client can
    reconcile without another round trip.
    """

    code = ErrorCode.VERSION_MISMATCH
    message = "error.version_mismatch"

    def __init__(
        self,
        expected_version: int,
        current_version: int,
        server_state: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.expected_version = expected_version
        self.current_version = current_version
        self.server_state = server_state or {}
        super().__init__(
            details={"expected": expected_version, "current": current_version}
        )


class InvalidOrderStatus(ValidationFailed):
    """The operation is not allowed from the order's current status."""

    code = ErrorCode.INVALID_ORDER_STATUS
    message = "error.invalid_order_status"


class AlreadyCancelled(Conflict):
    code = ErrorCode.ALREADY_CANCELLED
    message = "error.already_cancelled"


class SplitQuantityMismatch(ValidationFailed):
    """Split assignments do not add up to the parent line quantities."""

    code = ErrorCode.SPLIT_QUANTITY_MISMATCH
    message = "error.split_quantity_mismatch"


class NoCancellationRecord(NotFound):
    code = ErrorCode.NO_CANCELLATION_RECORD
    message = "error.no_cancellation_record"


class InvalidRevertTarget(ValidationFailed):
    code = ErrorCode.INVALID_REVERT_TARGET
    message = "error.invalid_revert_target"


class InstallerNotFound(NotFound):
    code = ErrorCode.INSTALLER_NOT_FOUND
    message = "error.installer_not_found"


class BranchNotFound(NotFound):
    code = ErrorCode.BRANCH_NOT_FOUND
    message = "error.branch_not_found"


class PartnerNotFound(NotFound):
    code = ErrorCode.PARTNER_NOT_FOUND
    message = "error.partner_not_found"


class AssignmentInProgress(ResourceLocked):
    """Another request is assigning this order right now."""

    code = ErrorCode.ASSIGNMENT_LOCKED
    message = "error.assignment_in_progress"


class UnknownSyncOperation(ValidationFailed):
    code = ErrorCode.UNKNOWN_SYNC_OPERATION
    message = "error.unknown_sync_operation"


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------


class CompletionOrderNotFound(NotFound):
    code = ErrorCode.COMPLETION_ORDER_NOT_FOUND
    message = "error.order_not_found"


class InvalidWasteCode(ValidationFailed):
    """Waste codes must be ``P01`` through ``P21``."""

    code = ErrorCode.INVALID_WASTE_CODE
    message = "error.invalid_waste_code"


class OrderLineNotFound(NotFound):
    code = ErrorCode.ORDER_LINE_NOT_FOUND
    message = "error.order_line_not_found"
