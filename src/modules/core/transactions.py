"""Unit-of-work boundary used by the application services.

Services never import ``django.db.transaction`` directly; they receive an
``ITransactionManager`` so the commit hook (domain event publishing) can be
observed in tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Callable

from django.db import transaction


class ITransactionManager(ABC):
    @abstractmethod
    def atomic(self) -> AbstractContextManager:
        """Open (or join) a database transaction."""

    @abstractmethod
    def on_commit(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once the outermost transaction commits."""


class DjangoTransactionManager(ITransactionManager):
    def atomic(self) -> AbstractContextManager:
        return transaction.atomic()

    def on_commit(self, callback: Callable[[], None]) -> None:
        transaction.on_commit(callback)
