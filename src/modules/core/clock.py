"""Clock abstraction.

Business rules that depend on "today" (release guard, revert windows,
settlement weeks) read time through ``IClock`` so tests can freeze it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime

from django.utils import timezone


class IClock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current aware datetime."""

    @abstractmethod
    def today(self) -> date:
        """Current calendar date in the configured ``TIME_ZONE``."""


class SystemClock(IClock):
    """Wall clock backed by ``django.utils.timezone``."""

    def now(self) -> datetime:
        return timezone.now()

    def today(self) -> date:
        return timezone.localdate()
