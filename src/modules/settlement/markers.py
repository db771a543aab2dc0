"""Settlement markers in Redis.

The weekly job writes ``settlement:<branch_id>:<week_start>`` with an
expiry at the next Friday unlock, and clears the branch KPI cache
(``kpi:<branch_id>:*``).  Markers are a fast, self-expiring signal for
dashboards; the authoritative lock state is the ``SettlementPeriod`` row.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Optional

from modules.settlement.constants import KPI_KEY_PREFIX, SETTLEMENT_KEY_PREFIX


def settlement_key(branch_id: Any, week_start: date) -> str:
    return f"{SETTLEMENT_KEY_PREFIX}{branch_id}:{week_start.isoformat()}"


def kpi_pattern(branch_id: Any) -> str:
    return f"{KPI_KEY_PREFIX}{branch_id}:*"


class ISettlementMarkerStore(ABC):
    @abstractmethod
    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    @abstractmethod
    def get(self, key: str) -> Optional[str]: ...

    @abstractmethod
    def delete(self, key: str) -> bool: ...

    @abstractmethod
    def delete_matching(self, pattern: str) -> int:
        """Delete every key matching a glob ``pattern``; returns the count."""


class RedisSettlementMarkerStore(ISettlementMarkerStore):
    def __init__(self, client: Any) -> None:
        self._client = client

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._client.setex(key, ttl_seconds, value)

    def get(self, key: str) -> Optional[str]:
        raw = self._client.get(key)
        if raw is None:
            return None
        return raw.decode() if isinstance(raw, bytes) else raw

    def delete(self, key: str) -> bool:
        return self._client.delete(key) > 0

    def delete_matching(self, pattern: str) -> int:
        # SCAN, not KEYS
        keys = list(self._client.scan_iter(match=pattern))
        if not keys:
            return 0
        return self._client.delete(*keys)
