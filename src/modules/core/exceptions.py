"""Domain error hierarchy shared by every module.

Each business failure carries a stable machine-readable ``code`` (the
``E2xxx`` / ``E3xxx`` catalogue), a message key and a ``details`` payload.
``kind`` tells the boundary layer how to classify the failure:

- ``VALIDATION``: the request can never succeed as sent (HTTP 400).
- ``CONFLICT``: the request lost a race or hit a lock (HTTP 409).
- ``NOT_FOUND``: a referenced record does not exist (HTTP 404).

Module exception files subclass ``ValidationFailed`` / ``Conflict`` /
``NotFound`` and pin their own code and message.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    VALIDATION = "VALIDATION"
    CONFLICT = "CONFLICT"
    NOT_FOUND = "NOT_FOUND"


class ErrorCode(str, Enum):
    INVALID_SYNC_PAYLOAD = "E2000"
    INVALID_TRANSITION = "E2001"
    # Missing records share the transition code
    RECORD_NOT_FOUND = "E2001"
    SETTLEMENT_LOCKED = "E2002"
    REVERT_WINDOW_EXCEEDED = "E2003"
    SYNC_VERSION_CONFLICT = "E2006"
    VERSION_MISMATCH = "E2017"
    INVALID_ORDER_STATUS = "E2018"
    ALREADY_CANCELLED = "E2019"
    SPLIT_QUANTITY_MISMATCH = "E2020"
    NO_CANCELLATION_RECORD = "E2022"
    INVALID_REVERT_TARGET = "E2023"
    INSTALLER_NOT_FOUND = "E2025"
    BRANCH_NOT_FOUND = "E2026"
    PARTNER_NOT_FOUND = "E2027"
    ASSIGNMENT_LOCKED = "E2028"
    UNKNOWN_SYNC_OPERATION = "E2030"
    COMPLETION_ORDER_NOT_FOUND = "E3001"
    INVALID_WASTE_CODE = "E3002"
    ORDER_LINE_NOT_FOUND = "E3003"
    INTERNAL_ERROR = "E5000"


class DomainError(Exception):
    """Base class for every business-rule failure."""

    kind: ErrorKind = ErrorKind.VALIDATION
    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    message: str = "error.internal"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[ErrorCode] = None,
    ) -> None:
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        self.details: Dict[str, Any] = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Machine-readable shape handed to the boundary layer."""
        payload: Dict[str, Any] = {
            "code": self.code.value,
            "kind": self.kind.value,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.code.value}, {self.message!r})"


class ValidationFailed(DomainError):
    """The request violates a business rule."""

    kind = ErrorKind.VALIDATION


class Conflict(DomainError):
    """The request conflicts with concurrent state (version, lock, settlement)."""

    kind = ErrorKind.CONFLICT


class NotFound(DomainError):
    """A referenced record does not exist."""

    kind = ErrorKind.NOT_FOUND
