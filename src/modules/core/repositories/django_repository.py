"""Django ORM implementation of the audit log repository."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import structlog

from modules.core.models import AuditLog
from modules.core.repositories.interfaces import IAuditLogRepository

logger = structlog.get_logger(__name__)


class AuditLogDjangoRepository(IAuditLogRepository):
    def record(
        self,
        table_name: str,
        record_id: Any,
        action: str,
        diff: Optional[Dict[str, Any]] = None,
        actor: str = "",
    ) -> AuditLog:
        entry = AuditLog.objects.create(
            table_name=table_name,
            record_id=str(record_id),
            action=action,
            diff=diff or {},
            actor=actor or "",
        )
        logger.debug(
            "audit.recorded",
            table=table_name,
            record_id=str(record_id),
            action=action,
        )
        return entry

    def for_record(self, table_name: str, record_id: Any) -> List[AuditLog]:
        return list(
            AuditLog.objects.filter(table_name=table_name, record_id=str(record_id))
        )
